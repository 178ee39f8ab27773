"""
Store factory.

`backend = "local"` in kitchen.toml (the default) opens three SQLite files
in the store directory. Any other name is looked up in the
``kitchen.backends`` entry point group; the entry point is a callable
taking the StoreConfig and returning a StoreBundle::

    [project.entry-points."kitchen.backends"]
    postgres = "kitchen_pg:create_stores"
"""

from typing import NamedTuple

from .config import StoreConfig
from .protocol import (
    EmbeddingStoreProtocol,
    EnrichmentQueueProtocol,
    VersionStoreProtocol,
)

BACKEND_GROUP = "kitchen.backends"

VERSIONS_DB = "recipes.db"
EMBEDDINGS_DB = "embeddings.db"
QUEUE_DB = "enrichment_queue.db"


class StoreBundle(NamedTuple):
    version_store: VersionStoreProtocol
    embedding_store: EmbeddingStoreProtocol
    queue: EnrichmentQueueProtocol
    is_local: bool  # stores live under config.path


def create_stores(config: StoreConfig) -> StoreBundle:
    if config.backend == "local":
        return _local_stores(config)
    return _plugin_stores(config)


def _local_stores(config: StoreConfig) -> StoreBundle:
    from .embedding_store import EmbeddingStore
    from .enrichment_queue import EnrichmentQueue
    from .version_store import VersionStore

    return StoreBundle(
        version_store=VersionStore(config.path / VERSIONS_DB),
        embedding_store=EmbeddingStore(config.path / EMBEDDINGS_DB),
        queue=EnrichmentQueue(config.path / QUEUE_DB),
        is_local=True,
    )


def _plugin_stores(config: StoreConfig) -> StoreBundle:
    from importlib.metadata import entry_points

    plugins = {ep.name: ep for ep in entry_points(group=BACKEND_GROUP)}
    if config.backend not in plugins:
        known = ", ".join(sorted(plugins)) or "none installed"
        raise ValueError(f"Unknown backend {config.backend!r} (known: {known})")
    return plugins[config.backend].load()(config)
