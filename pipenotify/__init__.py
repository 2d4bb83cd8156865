# pipenotify/__init__.py
import logging

from celery import Celery, Task
from celery.schedules import crontab
from flask import Flask

from .chat_client import ChatClient
from .config import Config
from .dispatch import DispatchSettings
from .extensions import Handles, db, migrate
from .queue import NotificationQueue


def celery_init_app(app: Flask) -> Celery:
    class FlaskTask(Task):
        def __call__(self, *args, **kwargs):
            with app.app_context():
                return self.run(*args, **kwargs)

    celery_app = Celery(app.name, task_cls=FlaskTask)
    celery_app.config_from_object(app.config["CELERY"])
    celery_app.conf.beat_schedule = {
        "sweep-delayed-notifications": {
            "task": "pipenotify.sweep_delayed_notifications",
            "schedule": float(app.config["DELAYED_SWEEP_INTERVAL"]),
        },
        "purge-delivery-logs": {
            "task": "pipenotify.purge_delivery_logs",
            "schedule": crontab(hour=2, minute=0),  # daily at 2 AM UTC
        },
    }
    celery_app.set_default()
    app.extensions["celery"] = celery_app
    return celery_app


def create_app(config_object=None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_object or Config)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Initialize database
    db.init_app(app)
    migrate.init_app(app, db)

    # Register models (so SQLAlchemy knows about them)
    with app.app_context():
        from . import models  # noqa: F401

    celery_init_app(app)
    from . import tasks  # noqa: F401

    app.extensions["pipenotify"] = Handles(
        chat_client=ChatClient(timeout=app.config["CHAT_TIMEOUT_SECONDS"]),
        queue=NotificationQueue(),
        settings=DispatchSettings.from_config(app.config),
    )

    from .webhooks import bp as webhooks_bp
    app.register_blueprint(webhooks_bp)

    from .cli import register_cli
    register_cli(app)

    return app
