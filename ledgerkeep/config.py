"""
Configuration management for ledgerkeep stores.

The configuration is stored as a TOML file in the store directory.
It names the ledger, blob store and policy backends and the providers
used for embedding and answer generation, along with their parameters.
"""

import os
import tomllib
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import tomli_w


CONFIG_FILENAME = "ledgerkeep.toml"
CONFIG_VERSION = 1

DEFAULT_STORE_DIR = ".ledgerkeep"

DEFAULT_SUI_RPC_URL = "https://fullnode.testnet.sui.io:443"
DEFAULT_WALRUS_PUBLISHER_URL = "https://publisher.walrus-testnet.walrus.space"
DEFAULT_WALRUS_AGGREGATOR_URL = "https://aggregator.walrus-testnet.walrus.space"

LEDGER_BACKENDS = ("sui", "memory")
BLOB_BACKENDS = ("walrus", "local", "memory")
ACCESS_BACKENDS = ("sui", "local")


def default_store_path() -> Path:
    """Resolve the store directory, respecting LEDGERKEEP_STORE_PATH."""
    env = os.environ.get("LEDGERKEEP_STORE_PATH")
    if env:
        return Path(env).expanduser()
    return Path.home() / DEFAULT_STORE_DIR


@dataclass
class ProviderConfig:
    """Configuration for a single provider."""
    name: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class LedgerConfig:
    name: str = "memory"
    rpc_url: str = DEFAULT_SUI_RPC_URL
    package_id: str = ""
    module: str = "metadata_registry"
    event: str = "MetadataUpdated"
    function: str = "update_metadata"
    query_limit: int = 1000
    timeout: float = 10.0
    gas_budget: int = 10_000_000


@dataclass
class BlobsConfig:
    name: str = "local"
    publisher_url: str = DEFAULT_WALRUS_PUBLISHER_URL
    aggregator_url: str = DEFAULT_WALRUS_AGGREGATOR_URL
    epochs: int = 5
    timeout: float = 30.0


@dataclass
class AccessConfig:
    """``local`` keeps policies in policies.json; ``sui`` reads policy objects."""
    name: str = "local"


@dataclass
class LeaseConfig:
    renewal_window_days: int = 7
    recency_window_days: int = 30
    max_period: int = 365
    standard_period: int = 30
    initial_period: int = 30


@dataclass
class QueryConfig:
    top_k: int = 4
    chunk_size: int = 1000
    chunk_overlap: int = 200
    max_workers: int = 8
    max_tokens: int = 1024


@dataclass
class StoreConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    blobs: BlobsConfig = field(default_factory=BlobsConfig)
    access: AccessConfig = field(default_factory=AccessConfig)
    lease: LeaseConfig = field(default_factory=LeaseConfig)
    query: QueryConfig = field(default_factory=QueryConfig)

    # Provider configurations
    embedding: ProviderConfig = field(default_factory=lambda: ProviderConfig("openai"))
    generation: ProviderConfig = field(default_factory=lambda: ProviderConfig("openai"))

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def _parse_section(cls, section: dict):
    """Build a section dataclass, ignoring keys it does not know."""
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in section.items() if k in known})


def _parse_provider(section: dict, default: str) -> ProviderConfig:
    return ProviderConfig(
        name=section.get("name", default),
        params={k: v for k, v in section.items() if k != "name"},
    )


def _validate(config: StoreConfig) -> None:
    if config.ledger.name not in LEDGER_BACKENDS:
        raise ValueError(
            f"Unknown ledger '{config.ledger.name}'. Choose from: {', '.join(LEDGER_BACKENDS)}"
        )
    if config.blobs.name not in BLOB_BACKENDS:
        raise ValueError(
            f"Unknown blob store '{config.blobs.name}'. Choose from: {', '.join(BLOB_BACKENDS)}"
        )
    if config.access.name not in ACCESS_BACKENDS:
        raise ValueError(
            f"Unknown access backend '{config.access.name}'. Choose from: {', '.join(ACCESS_BACKENDS)}"
        )
    if config.query.chunk_overlap >= config.query.chunk_size:
        raise ValueError("query.chunk_overlap must be smaller than query.chunk_size")
    if config.query.top_k <= 0:
        raise ValueError("query.top_k must be positive")


def apply_env_overrides(config: StoreConfig) -> StoreConfig:
    """Endpoint overrides from the environment win over the file."""
    rpc = os.environ.get("LEDGERKEEP_SUI_RPC_URL")
    if rpc:
        config.ledger.rpc_url = rpc
    publisher = os.environ.get("LEDGERKEEP_WALRUS_PUBLISHER_URL")
    if publisher:
        config.blobs.publisher_url = publisher
    aggregator = os.environ.get("LEDGERKEEP_WALRUS_AGGREGATOR_URL")
    if aggregator:
        config.blobs.aggregator_url = aggregator
    return config


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

    # Validate version
    version = data.get("store", {}).get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    config = StoreConfig(
        path=store_path,
        version=version,
        created=data.get("store", {}).get("created", ""),
        ledger=_parse_section(LedgerConfig, data.get("ledger", {})),
        blobs=_parse_section(BlobsConfig, data.get("blobs", {})),
        access=_parse_section(AccessConfig, data.get("access", {})),
        lease=_parse_section(LeaseConfig, data.get("lease", {})),
        query=_parse_section(QueryConfig, data.get("query", {})),
        embedding=_parse_provider(data.get("embedding", {}), "openai"),
        generation=_parse_provider(data.get("generation", {}), "openai"),
    )
    _validate(config)
    return apply_env_overrides(config)


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

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
        },
        "ledger": asdict(config.ledger),
        "blobs": asdict(config.blobs),
        "access": asdict(config.access),
        "lease": asdict(config.lease),
        "query": asdict(config.query),
        "embedding": provider_to_dict(config.embedding),
        "generation": provider_to_dict(config.generation),
    }

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
    config = StoreConfig(path=store_path)
    save_config(config)
    return apply_env_overrides(config)
