"""
Client configuration management for Mirror Play.

Handles loading and saving client configuration from:
- Platform-specific config directories
- Environment variables (MIRRORPLAY_BASE_URL, MIRRORPLAY_TOKEN)
- Command line arguments (applied by the caller via set())

Thread/process safety:
- Uses file locking (fcntl on Linux, skipped on Windows)
- Uses atomic writes (write to temp file, then rename)
"""

import logging
import os
import platform
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# File locking support (Linux/Unix only)
fcntl = None  # type: ignore[assignment]
try:
    import fcntl as _fcntl

    fcntl = _fcntl
except ImportError:
    pass

APP_DIR_NAME = "MirrorPlay"
CONFIG_FILENAME = "client.yaml"


def get_config_dir() -> Path:
    """
    Get platform-specific configuration directory.

    Returns:
        Path to user config directory:
        - Linux: ~/.config/MirrorPlay/
        - Windows: ~/Documents/MirrorPlay/
        - macOS: ~/Library/Application Support/MirrorPlay/
    """
    system = platform.system()

    if system == "Windows":
        config_dir = Path.home() / "Documents" / APP_DIR_NAME
    elif system == "Darwin":
        config_dir = Path.home() / "Library" / "Application Support" / APP_DIR_NAME
    else:
        xdg_config = os.environ.get("XDG_CONFIG_HOME")
        if xdg_config:
            config_dir = Path(xdg_config) / APP_DIR_NAME
        else:
            config_dir = Path.home() / ".config" / APP_DIR_NAME

    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_default_config() -> dict[str, Any]:
    """Get default client configuration."""
    return {
        "server": {
            "base_url": "http://localhost:5000",
            "token": "",
            "timeout": 30,
            "transcription_timeout": 120,
        },
        "recording": {
            "sample_rate": 16000,
            "channels": 1,
            "chunk_size": 1024,
            "device_index": None,
        },
        "voice": {
            "silence_threshold_ms": 4000,
            "loudness_floor": 0.05,
            "sample_interval_ms": 50,
            "max_duration_ms": 90000,  # 0 disables the cap
            "require_speech": False,
        },
        "duo": {
            "min_messages_to_complete": 4,
        },
        "logging": {
            "verbose": False,
        },
    }


class ClientConfig:
    """Client configuration manager."""

    _ENV_OVERRIDES: dict[str, tuple[str, ...]] = {
        "MIRRORPLAY_BASE_URL": ("server", "base_url"),
        "MIRRORPLAY_TOKEN": ("server", "token"),
    }

    def __init__(self, config_path: Path | None = None):
        """
        Initialize client configuration.

        Args:
            config_path: Optional path to config file
        """
        if config_path:
            self.config_path = config_path
        else:
            self.config_path = get_config_dir() / CONFIG_FILENAME

        self.config = get_default_config()
        self._load()
        self._apply_env_overrides()

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
            logger.warning(f"Ignoring config {self.config_path}: top level is not a mapping")
            return
        self._deep_merge(self.config, loaded)

    def _apply_env_overrides(self) -> None:
        for env_name, keys in self._ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value:
                self.set(*keys, value=value)

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

        Uses atomic write pattern (write to temp file, then rename) to prevent
        file corruption if the process is interrupted during write.
        """
        tmp_path = None
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)

            tmp_path = self.config_path.with_suffix(".tmp")
            with open(tmp_path, "w") as f:
                if fcntl is not None:
                    fcntl.flock(f.fileno(), fcntl.LOCK_EX)
                try:
                    yaml.dump(self.config, f, default_flow_style=False)
                finally:
                    if fcntl is not None:
                        fcntl.flock(f.fileno(), fcntl.LOCK_UN)

            os.replace(tmp_path, self.config_path)
            return True
        except OSError as e:
            logger.error(f"Error saving config: {e}")
            if tmp_path and tmp_path.exists():
                try:
                    tmp_path.unlink()
                except OSError:
                    pass
            return False

    def get(self, *keys: str, default: Any = None) -> Any:
        """Get a configuration value by path."""
        value = self.config
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

    @property
    def base_url(self) -> str:
        """Get the API base URL without a trailing slash."""
        url = self.get("server", "base_url", default="http://localhost:5000")
        return str(url).strip().rstrip("/")

    @property
    def token(self) -> str:
        """Get authentication token."""
        return str(self.get("server", "token", default="")).strip()

    @token.setter
    def token(self, value: str) -> None:
        """Set authentication token."""
        self.set("server", "token", value=value)
        self.save()

    @property
    def silence_threshold_ms(self) -> int:
        return int(self.get("voice", "silence_threshold_ms", default=4000))

    @property
    def loudness_floor(self) -> float:
        return float(self.get("voice", "loudness_floor", default=0.05))

    @property
    def sample_interval_ms(self) -> int:
        return int(self.get("voice", "sample_interval_ms", default=50))

    @property
    def max_duration_ms(self) -> int:
        return int(self.get("voice", "max_duration_ms", default=90000))

    @property
    def require_speech(self) -> bool:
        return bool(self.get("voice", "require_speech", default=False))

    @property
    def verbose(self) -> bool:
        return bool(self.get("logging", "verbose", default=False))

    @property
    def min_duo_messages(self) -> int:
        """Messages required before a duo session may be completed."""
        return int(self.get("duo", "min_messages_to_complete", default=4))
