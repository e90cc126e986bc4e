"""
Storage backend factory.

Creates the file store, the SQLite index and the registries that live in
it, from a store configuration.
"""

from typing import NamedTuple

from .config import StoreConfig
from .protocol import FileStoreProtocol, IndexStoreProtocol
from .status_registry import StatusRegistry
from .tag_registry import TagRegistry
from .type_registry import TypeRegistry


class StoreBundle(NamedTuple):
    """Collection of storage backends returned by the factory."""
    files: FileStoreProtocol
    index: IndexStoreProtocol
    types: TypeRegistry
    tags: TagRegistry
    statuses: StatusRegistry


def create_stores(config: StoreConfig) -> StoreBundle:
    """
    Create storage backends from configuration.

    Item files live directly under the store directory; the index is a
    SQLite database beside them (``index.db`` unless configured).
    """
    from .file_store import FileStore
    from .index_store import IndexStore

    files = FileStore(config.path)
    index = IndexStore(config.index_path)
    return StoreBundle(
        files=files,
        index=index,
        types=TypeRegistry(index),
        tags=TagRegistry(index),
        statuses=StatusRegistry(index),
    )
