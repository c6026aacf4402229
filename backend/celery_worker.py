# backend/celery_worker.py
# Start a worker with: celery -A celery_worker worker --loglevel=INFO
from dangol import create_app

flask_app = create_app()
celery_app = flask_app.extensions["celery"]
