"""
Configuration management for vault index stores.

The configuration is stored as a TOML file in the store directory.
It specifies which providers to use and their parameters, and the
indexing and retrieval settings passed to every component.
"""

import logging
import os
import tomllib
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import tomli_w

logger = logging.getLogger(__name__)


CONFIG_FILENAME = "vaultrag.toml"
CONFIG_VERSION = 1
VECTORS_FILENAME = "vectors.json"
HASHES_FILENAME = "content_hashes.json"

# Local OpenAI-compatible server (LM Studio default port)
DEFAULT_LOCAL_ENDPOINT = "http://localhost:1234"


@dataclass
class ProviderConfig:
    """Configuration for a single provider."""
    name: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class EmbeddingIdentity:
    """
    Identity of the embedding model that produced the stored vectors.

    Vectors from different models are not comparable, even when the
    dimensions happen to match.
    """
    provider: str
    model: str
    dimension: int

    def key(self) -> str:
        return f"{self.provider}:{self.model}:{self.dimension}"


@dataclass
class RagConfig:
    """
    Indexing and retrieval settings.

    One instance is passed to each component at construction; components
    take a replacement through their ``update(config)`` method.
    """
    chunk_size: int = 200
    chunk_overlap: int = 30
    top_k: int = 6
    similarity_threshold: float = 0.4
    excluded_folders: list[str] = field(default_factory=lambda: ["Templates", ".obsidian"])
    auto_index: bool = True
    embed_batch_size: int = 10
    embed_batch_delay: float = 0.1
    persist_delay: float = 1.0
    history_turns: int = 3
    rewrite_max_tokens: int = 100
    rewrite_temperature: float = 0.0

    def validate(self) -> "RagConfig":
        """Raise ValueError for settings no component can work with."""
        if self.chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {self.chunk_size}")
        if self.chunk_overlap < 0:
            raise ValueError(f"chunk_overlap must be >= 0, got {self.chunk_overlap}")
        if self.top_k < 1:
            raise ValueError(f"top_k must be >= 1, got {self.top_k}")
        if not -1.0 <= self.similarity_threshold <= 1.0:
            raise ValueError(
                f"similarity_threshold must be in [-1, 1], got {self.similarity_threshold}"
            )
        if self.embed_batch_size < 1:
            raise ValueError(f"embed_batch_size must be >= 1, got {self.embed_batch_size}")
        if self.embed_batch_delay < 0 or self.persist_delay < 0:
            raise ValueError("Delays must be non-negative")
        if self.history_turns < 0:
            raise ValueError(f"history_turns must be >= 0, got {self.history_turns}")
        return self

    def with_changes(self, **changes: Any) -> "RagConfig":
        """Return a validated copy with some settings replaced."""
        return replace(self, **changes).validate()

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RagConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning("Ignoring unknown [rag] settings: %s", ", ".join(sorted(unknown)))
        return cls(**{k: v for k, v in data.items() if k in known}).validate()


@dataclass
class StoreConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    # Provider configurations
    embedding: ProviderConfig = field(default_factory=lambda: ProviderConfig("local"))
    llm: Optional[ProviderConfig] = field(default_factory=lambda: ProviderConfig("local"))

    rag: RagConfig = field(default_factory=RagConfig)

    # Recorded on first embedding; None until then
    embedding_identity: Optional[EmbeddingIdentity] = None

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def vectors_path(self) -> Path:
        """Path to the vector snapshot."""
        return self.path / VECTORS_FILENAME

    @property
    def hashes_path(self) -> Path:
        """Path to the content-hash registry."""
        return self.path / HASHES_FILENAME

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def detect_default_providers() -> dict[str, ProviderConfig]:
    """
    Detect the best default providers for the current environment.

    Priority:
    1. Gemini (if GEMINI_API_KEY or GOOGLE_API_KEY is set)
    2. OpenAI (if OPENAI_API_KEY is set)
    3. Fallback: a local OpenAI-compatible server such as LM Studio

    Returns provider configs for: embedding, llm
    """
    if os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY"):
        return {"embedding": ProviderConfig("gemini"), "llm": ProviderConfig("gemini")}
    if os.environ.get("VAULTRAG_OPENAI_API_KEY") or os.environ.get("OPENAI_API_KEY"):
        return {"embedding": ProviderConfig("openai"), "llm": ProviderConfig("openai")}
    return {
        "embedding": ProviderConfig("local", {"base_url": DEFAULT_LOCAL_ENDPOINT}),
        "llm": ProviderConfig("local", {"base_url": DEFAULT_LOCAL_ENDPOINT}),
    }


def create_default_config(store_path: Path) -> StoreConfig:
    """Create a new config with auto-detected defaults."""
    providers = detect_default_providers()
    return StoreConfig(
        path=store_path,
        embedding=providers["embedding"],
        llm=providers["llm"],
    )


def load_config(store_path: Path) -> StoreConfig:
    """
    Load configuration from a store directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    version = data.get("store", {}).get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    def parse_provider(section: dict) -> ProviderConfig:
        return ProviderConfig(
            name=section.get("name", ""),
            params={k: v for k, v in section.items() if k != "name"},
        )

    llm = None
    llm_section = data.get("llm", {"name": "local"})
    if llm_section.get("name", "none") != "none":
        llm = parse_provider(llm_section)

    identity = None
    if "embedding_identity" in data:
        ident = data["embedding_identity"]
        identity = EmbeddingIdentity(
            provider=ident.get("provider", ""),
            model=ident.get("model", ""),
            dimension=int(ident.get("dimension", 0)),
        )

    return StoreConfig(
        path=store_path,
        version=version,
        created=data.get("store", {}).get("created", ""),
        embedding=parse_provider(data.get("embedding", {"name": "local"})),
        llm=llm,
        rag=RagConfig.from_dict(data.get("rag", {})),
        embedding_identity=identity,
    )


def save_config(config: StoreConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    def provider_to_dict(p: ProviderConfig) -> dict:
        d = {"name": p.name}
        d.update(p.params)
        return d

    data: dict[str, Any] = {
        "store": {
            "version": config.version,
            "created": config.created,
        },
        "embedding": provider_to_dict(config.embedding),
        "llm": provider_to_dict(config.llm) if config.llm else {"name": "none"},
        "rag": config.rag.to_dict(),
    }
    if config.embedding_identity is not None:
        data["embedding_identity"] = asdict(config.embedding_identity)

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Path) -> StoreConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_path = store_path / CONFIG_FILENAME

    if config_path.exists():
        return load_config(store_path)
    config = create_default_config(store_path)
    save_config(config)
    return config
