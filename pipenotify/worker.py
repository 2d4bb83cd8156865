# pipenotify/worker.py
"""
Celery entry point.

    celery -A pipenotify.worker:celery_app worker --loglevel=INFO
    celery -A pipenotify.worker:celery_app beat
"""
from . import create_app

flask_app = create_app()
celery_app = flask_app.extensions["celery"]
