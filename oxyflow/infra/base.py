"""
Interfaces for the external collaborators the runtime consumes.

The node-record store and the message queue are provided by the hosting
process. Anything implementing these protocols can be plugged into a Mas.
"""

from typing import Any, Dict, Optional, Protocol, runtime_checkable


@runtime_checkable
class NodeStore(Protocol):
    """Document store holding node, trace and history records."""

    async def index(self, collection: str, doc_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """Create or replace a document."""
        ...

    async def update(self, collection: str, doc_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """Merge fields into a document, creating it if missing."""
        ...

    async def exists(self, collection: str, doc_id: str) -> bool:
        """Check whether a document exists."""
        ...

    async def search(self, collection: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """
        Search documents.

        ``body`` follows the Elasticsearch subset ``{"query": ..., "sort": [...],
        "size": n}`` and the result is ``{"hits": {"hits": [{"_id", "_source"}]}}``.
        """
        ...

    async def close(self) -> None:
        """Release resources."""
        ...


@runtime_checkable
class MessageQueue(Protocol):
    """Keyed FIFO queue used to stream notifications to clients."""

    async def push(self, key: str, message: Any) -> None:
        """Append a message to the queue under ``key``."""
        ...

    async def pop(self, key: str, timeout: Optional[float] = None) -> Optional[Any]:
        """Remove the oldest message under ``key``; None when nothing arrives in time."""
        ...

    async def close(self) -> None:
        """Release resources."""
        ...
