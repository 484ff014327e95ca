"""DocumentStore — the storage contract consumed by the ingestion pipeline.

Documents are addressed by a slash-delimited collection path plus a key,
e.g. ``sensors/acme/pria/b1/okupansi`` + ``b1_l2_pria_7``. Adapters decide
how paths map onto physical storage.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional


@dataclass
class Snapshot:
    """A document read back from the store."""
    collection: str
    key: str
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Change:
    """One event from a collection change stream."""
    kind: str  # "insert" | "update" | "replace" | "delete"
    collection: str
    key: str
    data: Optional[Dict[str, Any]] = None


class DocumentStore(ABC):

    @abstractmethod
    async def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        """Return the document's fields, or None if it does not exist."""

    @abstractmethod
    async def merge(self, collection: str, key: str, fields: Dict[str, Any]) -> None:
        """Create the document or overwrite only the given fields."""

    @abstractmethod
    async def delete(self, collection: str, key: str) -> None:
        """Delete the document. Deleting a missing document is not an error."""

    @abstractmethod
    async def query(self, collection: str, **equals: Any) -> List[Snapshot]:
        """Return documents in ``collection`` whose fields equal ``equals``."""

    @abstractmethod
    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        """Append a document under a generated key and return the key."""

    @abstractmethod
    async def increment(self, collection: str, key: str, deltas: Dict[str, int]) -> None:
        """Atomically add ``deltas`` to numeric fields, creating the document if needed."""

    @abstractmethod
    def watch(self, collection_prefix: str) -> AsyncIterator[Change]:
        """Yield changes to documents whose collection path starts with the prefix."""
