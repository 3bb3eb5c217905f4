from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from omegaconf import OmegaConf

# Load environment variables from .env file before any interpolation runs
load_dotenv()

logger = logging.getLogger(__name__)

DEFAULTS_PATH = Path(__file__).resolve().parent / "config" / "defaults.yaml"
CONFIG_ENV_VAR = "PDF_TOOLKIT_CONFIG"

GHOSTSCRIPT_PRESETS = {
    "screen": "/screen",
    "ebook": "/ebook",
    "printer": "/printer",
    "prepress": "/prepress",
}


@dataclass
class ServiceSettings:
    name: str = "PDF Toolkit API"
    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])


@dataclass
class LimitSettings:
    max_source_mb: float = 150.0
    request_deadline_seconds: float = 120.0
    download_timeout_seconds: float = 60.0

    @property
    def max_source_bytes(self) -> int:
        return int(self.max_source_mb * 1024 * 1024)

    @property
    def deadline(self) -> Optional[float]:
        """The per-request deadline, or None when disabled."""
        return self.request_deadline_seconds if self.request_deadline_seconds > 0 else None


@dataclass
class WorkspaceSettings:
    root: Optional[str] = None

    @property
    def path(self) -> Path:
        if self.root:
            return Path(self.root)
        return Path(tempfile.gettempdir()) / "pdf-toolkit"


@dataclass
class StorageSettings:
    bucket: str = ""
    prefix: str = "pdf-outputs"
    region: Optional[str] = None
    endpoint_url: Optional[str] = None
    public_base_url: Optional[str] = None
    presign_expiration: int = 3600
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None

    @property
    def enabled(self) -> bool:
        return bool(self.bucket)


@dataclass
class GhostscriptSettings:
    binary: str = "gs"
    preset: str = "ebook"
    timeout_seconds: float = 120.0

    @property
    def pdf_settings(self) -> str:
        return GHOSTSCRIPT_PRESETS.get(self.preset, "/ebook")


@dataclass
class Settings:
    service: ServiceSettings = field(default_factory=ServiceSettings)
    limits: LimitSettings = field(default_factory=LimitSettings)
    workspace: WorkspaceSettings = field(default_factory=WorkspaceSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    ghostscript: GhostscriptSettings = field(default_factory=GhostscriptSettings)


def load_settings(overrides: Optional[Dict[str, Any]] = None, config_path: Optional[Path] = None) -> Settings:
    """
    Build typed settings from the packaged defaults, an optional YAML file and overrides.

    Merge order (later wins):
        1. Dataclass defaults
        2. ``config/defaults.yaml`` (with ``${oc.env:...}`` interpolations)
        3. The YAML file at ``config_path`` or ``$PDF_TOOLKIT_CONFIG``
        4. ``overrides``

    Raises:
        FileNotFoundError: If an explicitly requested config file does not exist
        omegaconf.errors.ValidationError: If a value cannot be converted to its field type
    """
    schema = OmegaConf.structured(Settings)
    layers = [schema, OmegaConf.load(DEFAULTS_PATH)]

    extra_path = config_path or (Path(os.environ[CONFIG_ENV_VAR]) if os.environ.get(CONFIG_ENV_VAR) else None)
    if extra_path is not None:
        if not extra_path.exists():
            raise FileNotFoundError(f"Config file not found at {extra_path}")
        logger.info(f"Loading configuration overrides from {extra_path}")
        layers.append(OmegaConf.load(extra_path))

    if overrides:
        layers.append(OmegaConf.create(overrides))

    merged = OmegaConf.merge(*layers)
    return OmegaConf.to_object(merged)  # type: ignore[return-value]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()


def describe_settings(settings: Settings) -> Dict[str, Any]:
    """Settings as a plain dict with secrets masked, for logging and diagnostics."""
    container = OmegaConf.to_container(OmegaConf.structured(settings), resolve=True)
    storage = container["storage"]  # type: ignore[index]
    for key in ("access_key_id", "secret_access_key"):
        if storage.get(key):
            storage[key] = "***"
    return container  # type: ignore[return-value]
