"""Configuration loading and Pydantic models for BlobDB."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


class CollectionNames(BaseModel):
    """Names of the three local collections and of the record key."""

    info: str = "blob_info"
    cache: str = "blob_cache"
    queue: str = "blob_queue"
    key: str = "path"


class StoreConfig(BaseModel):
    """Local persistent store configuration."""

    engine: str = "sqlite"
    sqlite_path: str = "./data/blobdb.db"
    names: CollectionNames = Field(default_factory=CollectionNames)


class RemoteConfig(BaseModel):
    """Remote transfer client configuration."""

    backend: str = "memory"
    chunk_size: int = 256 * 1024
    memory_bucket: str = "blobdb"
    s3_bucket: str = ""
    s3_region: str = "us-east-1"
    s3_prefix: str = ""
    s3_endpoint_url: str = ""
    s3_public_base_url: str = ""
    s3_access_key_id: str = ""
    s3_secret_access_key: str = ""


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "text"


class MetricsConfig(BaseModel):
    """Prometheus metrics configuration."""

    enabled: bool = False


class BlobDBConfig(BaseModel):
    """Top-level BlobDB configuration."""

    store: StoreConfig = Field(default_factory=StoreConfig)
    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)


def _parse_store(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the store section from YAML data.

    Handles nested structure: store.sqlite.path -> sqlite_path
    """
    if data is None:
        return {}
    result: dict[str, Any] = {"engine": data.get("engine", "sqlite")}
    sqlite_section = data.get("sqlite")
    if isinstance(sqlite_section, dict):
        result["sqlite_path"] = sqlite_section.get("path", "./data/blobdb.db")
    names_section = data.get("names")
    if isinstance(names_section, dict):
        result["names"] = CollectionNames(**names_section)
    return result


def _parse_remote(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the remote section from YAML data.

    Handles nested structure: remote.s3.bucket -> s3_bucket, etc.
    """
    if data is None:
        return {}

    result: dict[str, Any] = {"backend": data.get("backend", "memory")}
    if "chunk_size" in data:
        result["chunk_size"] = data["chunk_size"]

    memory_section = data.get("memory")
    if isinstance(memory_section, dict):
        result["memory_bucket"] = memory_section.get("bucket", "blobdb")

    s3_section = data.get("s3")
    if isinstance(s3_section, dict):
        result["s3_bucket"] = s3_section.get("bucket", "")
        result["s3_region"] = s3_section.get("region", "us-east-1")
        result["s3_prefix"] = s3_section.get("prefix", "")
        result["s3_endpoint_url"] = s3_section.get("endpoint_url", "")
        result["s3_public_base_url"] = s3_section.get("public_base_url", "")
        result["s3_access_key_id"] = s3_section.get("access_key_id", "")
        result["s3_secret_access_key"] = s3_section.get("secret_access_key", "")

    return result


def _parse_logging(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the logging section from YAML data."""
    if data is None:
        return {}
    return {
        "level": data.get("level", "INFO"),
        "format": data.get("format", "text"),
    }


def _parse_metrics(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the metrics section from YAML data."""
    if data is None:
        return {}
    return {"enabled": data.get("enabled", False)}


def load_config(path: Path) -> BlobDBConfig:
    """Load a BlobDBConfig from a YAML file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        A fully populated BlobDBConfig validated by Pydantic.

    Raises:
        FileNotFoundError: If the config file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
    """
    with open(path, "r") as fh:
        raw: dict[str, Any] = yaml.safe_load(fh) or {}

    return BlobDBConfig(
        store=StoreConfig(**_parse_store(raw.get("store"))),
        remote=RemoteConfig(**_parse_remote(raw.get("remote"))),
        logging=LoggingConfig(**_parse_logging(raw.get("logging"))),
        metrics=MetricsConfig(**_parse_metrics(raw.get("metrics"))),
    )
