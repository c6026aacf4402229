# backend/wsgi.py
from dangol import create_app

app = create_app()
