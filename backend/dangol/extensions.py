# Overview: Flask extension instances for database, migrations and background tasks.

from celery import Celery, Task
from flask import Flask, has_app_context
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
migrate = Migrate()


def celery_init_app(app: Flask) -> Celery:
    """Bind a Celery app to this Flask app; tasks run inside an app context."""

    class FlaskTask(Task):
        def __call__(self, *args, **kwargs):
            # Eager calls made inside a request keep the caller's app.
            if has_app_context():
                return self.run(*args, **kwargs)
            with app.app_context():
                return self.run(*args, **kwargs)

    celery_app = Celery(app.name, task_cls=FlaskTask)
    celery_app.config_from_object(app.config["CELERY"])
    celery_app.set_default()
    app.extensions["celery"] = celery_app
    return celery_app
