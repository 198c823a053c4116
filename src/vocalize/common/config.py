"""
Client configuration management for Vocalize.

Handles loading and saving client configuration from:
- Platform-specific config directories (vocalize.yaml)
- Environment variables (VOCALIZE_API_URL, VOCALIZE_API_KEY)
- Command line arguments (applied by the caller via set())

Thread/process safety:
- Uses file locking (fcntl on Linux, skipped on Windows)
- Uses atomic writes (write to temp file, then rename)
"""

import copy
import logging
import os
import platform
from pathlib import Path
from typing import Any

import yaml

# File locking support (Linux/Unix only)
fcntl = None  # type: ignore[assignment]
try:
    import fcntl as _fcntl

    fcntl = _fcntl
except ImportError:
    pass

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "vocalize.yaml"
STORE_FILENAME = "storage.json"

ENV_API_URL = "VOCALIZE_API_URL"
ENV_API_KEY = "VOCALIZE_API_KEY"


def get_config_dir() -> Path:
    """
    Get platform-specific configuration directory.

    Returns:
        Path to user config directory:
        - Linux: ~/.config/Vocalize/
        - Windows: ~/Documents/Vocalize/
        - macOS: ~/Library/Application Support/Vocalize/
    """
    system = platform.system()

    if system == "Windows":
        config_dir = Path.home() / "Documents" / "Vocalize"
    elif system == "Darwin":
        config_dir = Path.home() / "Library" / "Application Support" / "Vocalize"
    else:
        xdg_config = os.environ.get("XDG_CONFIG_HOME")
        if xdg_config:
            config_dir = Path(xdg_config) / "Vocalize"
        else:
            config_dir = Path.home() / ".config" / "Vocalize"

    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_default_config() -> dict[str, Any]:
    """Get default client configuration."""
    return {
        "api": {
            "base_url": "http://localhost:8000",
            "api_key": "",
            "timeout": 30,  # seconds, total per request
        },
        "storage": {
            "path": "",  # empty = <config dir>/storage.json
        },
        "cache": {
            "ttl_hours": 24,
        },
        "connectivity": {
            "probe_timeout": 2.0,
        },
    }


class ClientConfig:
    """Client configuration manager."""

    def __init__(self, config_path: Path | None = None, use_env: bool = True):
        """
        Initialize client configuration.

        Args:
            config_path: Optional path to config file
            use_env: Apply VOCALIZE_* environment overrides after loading
        """
        if config_path:
            self.config_path = Path(config_path)
        else:
            self.config_path = get_config_dir() / CONFIG_FILENAME

        self.config = get_default_config()
        self._load()
        if use_env:
            self._apply_env()

    def _load(self) -> None:
        """Load configuration from file with shared lock for thread/process safety."""
        if not self.config_path.exists():
            return
        try:
            with open(self.config_path) as f:
                if fcntl is not None:
                    fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                try:
                    loaded = yaml.safe_load(f) or {}
                finally:
                    if fcntl is not None:
                        fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Could not load config {self.config_path}: {e}")
            return

        if not isinstance(loaded, dict):
            logger.warning(f"Ignoring config {self.config_path}: not a mapping")
            return
        self._deep_merge(self.config, loaded)

    def _apply_env(self) -> None:
        api_url = os.environ.get(ENV_API_URL)
        if api_url:
            self.set("api", "base_url", value=api_url)
        api_key = os.environ.get(ENV_API_KEY)
        if api_key:
            self.set("api", "api_key", value=api_key)

    def _deep_merge(self, base: dict, override: dict) -> None:
        """Deep merge override into base dict."""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    def save(self) -> bool:
        """
        Save configuration to file with exclusive lock and atomic write.

        The API key is written as-is; keep the file private.
        """
        tmp_path = self.config_path.with_suffix(".tmp")
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w") as f:
                if fcntl is not None:
                    fcntl.flock(f.fileno(), fcntl.LOCK_EX)
                try:
                    yaml.safe_dump(self.config, f, default_flow_style=False)
                finally:
                    if fcntl is not None:
                        fcntl.flock(f.fileno(), fcntl.LOCK_UN)
            os.replace(tmp_path, self.config_path)
            return True
        except OSError as e:
            logger.error(f"Error saving config: {e}")
            if tmp_path.exists():
                try:
                    tmp_path.unlink()
                except OSError:
                    pass
            return False

    def get(self, *keys: str, default: Any = None) -> Any:
        """Get a configuration value by path."""
        value: Any = self.config
        for key in keys:
            if isinstance(value, dict):
                value = value.get(key)
            else:
                return default
            if value is None:
                return default
        return value

    def set(self, *keys: str, value: Any) -> None:
        """Set a configuration value by path."""
        d = self.config
        for key in keys[:-1]:
            if key not in d:
                d[key] = {}
            d = d[key]
        d[keys[-1]] = value

    def as_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self.config)

    @property
    def base_url(self) -> str:
        """API base URL without trailing slash."""
        return str(self.get("api", "base_url", default="http://localhost:8000")).rstrip("/")

    @property
    def api_key(self) -> str:
        return str(self.get("api", "api_key", default=""))

    @property
    def timeout(self) -> float:
        return float(self.get("api", "timeout", default=30))

    @property
    def store_path(self) -> Path:
        """Location of the persistent key-value store."""
        configured = self.get("storage", "path", default="")
        if configured:
            return Path(configured).expanduser()
        return self.config_path.parent / STORE_FILENAME

    @property
    def cache_window_ms(self) -> int:
        hours = float(self.get("cache", "ttl_hours", default=24))
        return int(hours * 60 * 60 * 1000)

    @property
    def probe_timeout(self) -> float:
        return float(self.get("connectivity", "probe_timeout", default=2.0))
