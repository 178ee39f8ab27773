"""
Per-store settings, kept in `<store>/kitchen.toml`.

The file names the embedding and summarization providers (with any
provider parameters inline) and tunes the processor, search and queue.
"""

import os
import tomllib
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import tomli_w


CONFIG_FILENAME = "kitchen.toml"
CONFIG_VERSION = 1

# Provider name meaning "no embedding provider configured"
NO_PROVIDER = "none"


def get_default_store_path() -> Path:
    """Store directory: KITCHEN_STORE_PATH if set, else ~/.kitchen."""
    env = os.environ.get("KITCHEN_STORE_PATH")
    if env:
        return Path(env).expanduser()
    return Path.home() / ".kitchen"


@dataclass
class ProviderConfig:
    """A provider name plus the keyword arguments its constructor takes."""
    name: str
    params: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_section(cls, section: dict) -> "ProviderConfig":
        params = dict(section)
        return cls(name=params.pop("name", ""), params=params)

    def to_section(self) -> dict:
        return {"name": self.name, **self.params}


@dataclass
class ProcessorConfig:
    """Background enrichment settings."""
    interval: float = 5.0  # seconds between ticks
    timeout: float = 60.0  # per provider call
    stale_claim_seconds: int = 600
    max_embed_chars: int = 24000


@dataclass
class SearchConfig:
    threshold: float = 0.3
    limit: int = 10


@dataclass
class QueueConfig:
    retention_days: int = 7


def _utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class StoreConfig:
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=_utc_iso)
    backend: str = "local"

    embedding: ProviderConfig = field(default_factory=lambda: ProviderConfig(NO_PROVIDER))
    summarization: ProviderConfig = field(default_factory=lambda: ProviderConfig("passthrough"))

    processor: ProcessorConfig = field(default_factory=ProcessorConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)

    @property
    def config_path(self) -> Path:
        return self.path / CONFIG_FILENAME

    def exists(self) -> bool:
        return self.config_path.exists()


def _openai_key_present() -> bool:
    return bool(os.environ.get("KITCHEN_OPENAI_API_KEY") or os.environ.get("OPENAI_API_KEY"))


def detect_default_providers() -> dict[str, ProviderConfig]:
    """
    Pick providers for a new store from the credentials in the environment.

    An OpenAI key gives OpenAI for both roles. Otherwise an Anthropic key
    gives Claude summaries, and Anthropic has no embeddings API, so
    embedding stays "none". With neither, summaries are passthrough.
    """
    if _openai_key_present():
        embedding = ProviderConfig("openai", {"model": "text-embedding-3-small"})
        summarization = ProviderConfig("openai")
    elif os.environ.get("ANTHROPIC_API_KEY"):
        embedding = ProviderConfig(NO_PROVIDER)
        summarization = ProviderConfig("anthropic")
    else:
        embedding = ProviderConfig(NO_PROVIDER)
        summarization = ProviderConfig("passthrough")
    return {"embedding": embedding, "summarization": summarization}


def create_default_config(store_path: Path) -> StoreConfig:
    detected = detect_default_providers()
    return StoreConfig(path=store_path, **detected)


# Settings tables, in the order they are written
_SECTIONS = {
    "processor": ProcessorConfig,
    "search": SearchConfig,
    "queue": QueueConfig,
}


def _read_section(data: dict, name: str):
    """Settings dataclass for one table; unknown keys are dropped."""
    cls = _SECTIONS[name]
    table = data.get(name, {})
    return cls(**{k: v for k, v in table.items() if k in cls.__dataclass_fields__})


def load_config(store_path: Path) -> StoreConfig:
    """
    Read `<store_path>/kitchen.toml`.

    Missing tables fall back to defaults. Raises FileNotFoundError when
    there is no file, and ValueError when it was written by a newer
    version or has values of the wrong type.
    """
    path = store_path / CONFIG_FILENAME
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")
    with open(path, "rb") as f:
        data = tomllib.load(f)

    store = data.get("store", {})
    version = store.get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(
            f"{path}: config version {version} is newer than supported ({CONFIG_VERSION})"
        )

    try:
        return StoreConfig(
            path=store_path,
            version=version,
            created=store.get("created", ""),
            backend=store.get("backend", "local"),
            embedding=ProviderConfig.from_section(data.get("embedding", {"name": NO_PROVIDER})),
            summarization=ProviderConfig.from_section(
                data.get("summarization", {"name": "passthrough"})
            ),
            **{name: _read_section(data, name) for name in _SECTIONS},
        )
    except TypeError as e:
        raise ValueError(f"Invalid config {path}: {e}") from e


def save_config(config: StoreConfig) -> None:
    """Write kitchen.toml, creating the store directory as needed."""
    config.path.mkdir(parents=True, exist_ok=True)
    data = {
        "store": {"version": config.version, "created": config.created, "backend": config.backend},
        "embedding": config.embedding.to_section(),
        "summarization": config.summarization.to_section(),
    }
    for name in _SECTIONS:
        data[name] = asdict(getattr(config, name))

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Optional[Path] = None) -> StoreConfig:
    """
    Config for `store_path` (default: the KITCHEN_STORE_PATH / ~/.kitchen store).

    A store without kitchen.toml gets one written from detected defaults.
    """
    store_path = Path(store_path) if store_path else get_default_store_path()
    if (store_path / CONFIG_FILENAME).exists():
        return load_config(store_path)
    config = create_default_config(store_path)
    save_config(config)
    return config
