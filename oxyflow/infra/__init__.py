"""Store and queue interfaces plus in-process implementations."""

from .base import MessageQueue, NodeStore
from .local_queue import LocalQueue
from .local_store import LocalStore

__all__ = ["MessageQueue", "NodeStore", "LocalQueue", "LocalStore"]
