# pipenotify/extensions.py
from dataclasses import dataclass
from typing import TYPE_CHECKING

from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

if TYPE_CHECKING:
    from .chat_client import ChatClient
    from .dispatch import DispatchSettings
    from .queue import NotificationQueue

db = SQLAlchemy()
migrate = Migrate()


@dataclass
class Handles:
    """Process-wide collaborators built once by create_app, kept in app.extensions["pipenotify"].

    Tests swap in doubles with the same ``post_message``/``test_webhook`` and
    ``enqueue_event``/``enqueue_delivery`` methods.
    """
    chat_client: "ChatClient"
    queue: "NotificationQueue"
    settings: "DispatchSettings"
