"""YAML configuration and persisted package selection."""
from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from common.errors import ConfigError
from constants import Constants, SignaturePolicy

logger = logging.getLogger(__name__)

ENV_PACKAGE_DIR = "ELPM_PACKAGE_DIR"
ENV_CACHE_DIR = "ELPM_CACHE_DIR"
ENV_SIGNATURE_POLICY = "ELPM_SIGNATURE_POLICY"
ENV_CONFIG = "ELPM_CONFIG"

DEFAULT_CONFIG_FILE = "~/.config/elpm/config.yml"

_KNOWN_KEYS = {
    "archives",
    "archive_priorities",
    "pinned",
    "hold",
    "signature_policy",
    "unsigned_archives",
    "keyring",
    "package_dir",
    "package_directory_list",
    "cache_dir",
    "state_file",
    "host",
    "builtin_packages",
}


def parse_signature_policy(value: Any) -> SignaturePolicy:
    try:
        return SignaturePolicy(str(value).strip().lower())
    except ValueError as exc:
        choices = ", ".join(p.value for p in SignaturePolicy)
        raise ConfigError(f"Invalid signature policy '{value}' (expected one of: {choices})") from exc


@dataclass
class Settings:
    """Effective configuration after file, environment and CLI overrides."""

    archives: List[Tuple[str, str]] = field(default_factory=lambda: list(Constants.DEFAULT_ARCHIVES))
    archive_priorities: Dict[str, int] = field(default_factory=dict)
    pinned: Dict[str, str] = field(default_factory=dict)
    hold: Dict[str, Any] = field(default_factory=dict)
    signature_policy: SignaturePolicy = SignaturePolicy(Constants.SIGNATURE_POLICY)
    unsigned_archives: List[str] = field(default_factory=list)
    keyring: Optional[Path] = None
    package_dir: Path = Path(Constants.DEFAULT_PACKAGE_DIR).expanduser()
    package_directory_list: List[Path] = field(default_factory=list)
    cache_dir: Path = Path(Constants.DEFAULT_CACHE_DIR).expanduser()
    state_file: Path = Path(Constants.DEFAULT_STATE_FILE).expanduser()
    host_name: str = Constants.HOST_NAME
    host_version: str = Constants.HOST_VERSION
    builtin_packages: Dict[str, str] = field(default_factory=dict)
    offline: bool = False

    @property
    def package_directories(self) -> List[Path]:
        """User directory first, then read-only system directories."""
        return [self.package_dir] + [p for p in self.package_directory_list if p != self.package_dir]


def _path(value: Any, key: str) -> Path:
    if not isinstance(value, str) or not value:
        raise ConfigError(f"'{key}' must be a path string")
    return Path(value).expanduser()


def _mapping(value: Any, key: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"'{key}' must be a mapping")
    return {str(k): v for k, v in value.items()}


def _archives(value: Any) -> List[Tuple[str, str]]:
    """Accept ``{name: location}`` or a list of ``{name:, location:}`` items."""
    if isinstance(value, Mapping):
        return [(str(k), str(v)) for k, v in value.items()]
    if isinstance(value, list):
        out = []
        for item in value:
            if not isinstance(item, Mapping) or "name" not in item or "location" not in item:
                raise ConfigError("Each archive entry needs 'name' and 'location'")
            out.append((str(item["name"]), str(item["location"])))
        return out
    raise ConfigError("'archives' must be a mapping or a list")


def settings_from_mapping(data: Mapping[str, Any]) -> Settings:
    """Build ``Settings`` from a parsed YAML document."""
    settings = Settings()
    for key in data:
        if key not in _KNOWN_KEYS:
            logger.warning("Ignoring unknown configuration key '%s'", key)
    if "archives" in data:
        settings.archives = _archives(data["archives"])
    if "archive_priorities" in data:
        try:
            settings.archive_priorities = {
                k: int(v) for k, v in _mapping(data["archive_priorities"], "archive_priorities").items()
            }
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Archive priorities must be integers: {exc}") from exc
    if "pinned" in data:
        settings.pinned = {k: str(v) for k, v in _mapping(data["pinned"], "pinned").items()}
    if "hold" in data:
        settings.hold = _mapping(data["hold"], "hold")
    if "signature_policy" in data:
        settings.signature_policy = parse_signature_policy(data["signature_policy"])
    if "unsigned_archives" in data:
        value = data["unsigned_archives"] or []
        if not isinstance(value, list):
            raise ConfigError("'unsigned_archives' must be a list")
        settings.unsigned_archives = [str(v) for v in value]
    if data.get("keyring"):
        settings.keyring = _path(data["keyring"], "keyring")
    if "package_dir" in data:
        settings.package_dir = _path(data["package_dir"], "package_dir")
    if "package_directory_list" in data:
        value = data["package_directory_list"] or []
        if not isinstance(value, list):
            raise ConfigError("'package_directory_list' must be a list")
        settings.package_directory_list = [_path(v, "package_directory_list") for v in value]
    if "cache_dir" in data:
        settings.cache_dir = _path(data["cache_dir"], "cache_dir")
    if "state_file" in data:
        settings.state_file = _path(data["state_file"], "state_file")
    if "host" in data:
        host = _mapping(data["host"], "host")
        settings.host_name = str(host.get("name", settings.host_name))
        settings.host_version = str(host.get("version", settings.host_version))
    if "builtin_packages" in data:
        settings.builtin_packages = {
            k: str(v) for k, v in _mapping(data["builtin_packages"], "builtin_packages").items()
        }
    return settings


def apply_env_overrides(settings: Settings, env: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if env is None else env
    if env.get(ENV_PACKAGE_DIR):
        settings.package_dir = Path(env[ENV_PACKAGE_DIR]).expanduser()
    if env.get(ENV_CACHE_DIR):
        settings.cache_dir = Path(env[ENV_CACHE_DIR]).expanduser()
    if env.get(ENV_SIGNATURE_POLICY):
        settings.signature_policy = parse_signature_policy(env[ENV_SIGNATURE_POLICY])
    return settings


def load_settings(path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> Settings:
    """Load settings from ``path`` (or ``$ELPM_CONFIG``, or the default file).

    A missing default file yields defaults; a missing explicit file is an error.

    Raises:
        ConfigError: The file is unreadable or holds invalid values.
    """
    env = os.environ if env is None else env
    explicit = path or env.get(ENV_CONFIG)
    config_path = Path(explicit or DEFAULT_CONFIG_FILE).expanduser()
    data: Dict[str, Any] = {}
    if config_path.is_file():
        try:
            with open(config_path, "r", encoding="utf-8") as fh:
                loaded = yaml.safe_load(fh)
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigError(f"Failed to load config {config_path}: {exc}") from exc
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigError(f"Config {config_path} must contain a mapping")
        data = loaded or {}
        logger.debug("Loaded configuration from %s", config_path)
    elif explicit:
        raise ConfigError(f"Config file not found: {config_path}")
    return apply_env_overrides(settings_from_mapping(data), env)


class SelectionStore:
    """Persists the explicitly selected package names to a YAML state file."""

    def __init__(self, path: Path):
        self.path = Path(path).expanduser()

    def load(self) -> List[str]:
        if not self.path.is_file():
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                data = yaml.safe_load(fh) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigError(f"Failed to read state file {self.path}: {exc}") from exc
        selected = data.get("selected") if isinstance(data, dict) else None
        if selected is None:
            return []
        if not isinstance(selected, list):
            raise ConfigError(f"'selected' in {self.path} must be a list")
        out: List[str] = []
        for name in selected:
            if str(name) not in out:
                out.append(str(name))
        return out

    def save(self, names: List[str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(self.path.parent), prefix=".state-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                yaml.safe_dump({"selected": list(names)}, fh, default_flow_style=False)
            os.replace(tmp, self.path)
        except OSError as exc:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise ConfigError(f"Failed to write state file {self.path}: {exc}") from exc
