from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf
from pydantic import BaseModel, Field, model_validator

load_dotenv()

_HERE = Path(__file__).resolve()
_CANDIDATE_CONFIG_PATHS = [parent / "config/config.yaml" for parent in _HERE.parents[:5]]
_CANDIDATE_CONFIG_PATHS.insert(0, Path.cwd() / "config/config.yaml")


def _locate_config() -> Path:
    explicit = os.environ.get("PUBLICATION_CONFIG")
    if explicit:
        return Path(explicit)
    path = next((path for path in _CANDIDATE_CONFIG_PATHS if path.exists()), None)
    if path is None:  # pragma: no cover - fail fast in misconfigured environments
        raise FileNotFoundError("config/config.yaml could not be located; set PUBLICATION_CONFIG to its path.")
    return path


class DatabaseSettings(BaseModel):
    path: Path = Path("data/publications.db")


class StorageSettings(BaseModel):
    backend: Literal["file", "inline", "remote"] = "file"
    artifacts_dir: Path = Path("uploads")
    chunk_size: int = Field(default=1024 * 1024, gt=0)


class RemoteSettings(BaseModel):
    base_url: Optional[str] = None
    timeout_seconds: float = Field(default=30.0, gt=0)


class SidecarSettings(BaseModel):
    enabled: bool = True
    output_dir: Optional[Path] = None


class ServerSettings(BaseModel):
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])


class LoggingSettings(BaseModel):
    level: str = "INFO"


class Settings(BaseModel):
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    remote: RemoteSettings = Field(default_factory=RemoteSettings)
    sidecar: SidecarSettings = Field(default_factory=SidecarSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @model_validator(mode="after")
    def _check_backend(self) -> "Settings":
        if self.storage.backend == "remote" and not self.remote.base_url:
            raise ValueError("remote.base_url is required when storage.backend is 'remote'")
        if self.sidecar.output_dir is None:
            self.sidecar.output_dir = self.storage.artifacts_dir
        return self


@lru_cache(maxsize=1)
def _load_default_config() -> DictConfig:
    config_path = _locate_config()
    if not config_path.exists():
        raise FileNotFoundError(f"Default config not found at {config_path}")
    return OmegaConf.load(config_path)


def get_default_config_container(resolve: bool = False) -> Dict[str, Any]:
    config = _load_default_config()
    return OmegaConf.to_container(config, resolve=resolve)  # type: ignore[return-value]


def make_runtime_config(overrides: Dict[str, Any]) -> DictConfig:
    base = OmegaConf.create(get_default_config_container(resolve=False))
    OmegaConf.set_struct(base, True)

    override_config = OmegaConf.create(overrides)
    return DictConfig(OmegaConf.merge(base, override_config))


def load_settings(overrides: Optional[Dict[str, Any]] = None) -> Settings:
    """
    Build validated settings from config.yaml, the environment and overrides.

    Args:
        overrides: Nested mapping merged over the YAML defaults, e.g.
            ``{"storage": {"backend": "inline"}}``

    Returns:
        Settings with environment interpolations resolved

    Raises:
        pydantic.ValidationError: If the merged configuration is invalid
    """
    runtime_config = make_runtime_config(overrides or {})
    container = OmegaConf.to_container(runtime_config, resolve=True)
    return Settings.model_validate(container)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
