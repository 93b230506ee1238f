"""
spacesync Configuration

Environment-driven settings for the window manager backends, the
synchronizer and the HTTP surface.
"""

import os
import logging
from dataclasses import dataclass, asdict
from typing import Dict, Optional

logger = logging.getLogger(__name__)

ENV_PREFIX = "SPACESYNC_"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(ENV_PREFIX + name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"Invalid value for {ENV_PREFIX}{name}: {raw!r}, using {default}")
        return default
    if value < 0:
        logger.warning(f"Negative value for {ENV_PREFIX}{name}: {raw!r}, using {default}")
        return default
    return value


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(ENV_PREFIX + name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid value for {ENV_PREFIX}{name}: {raw!r}, using {default}")
        return default


@dataclass
class SpacesConfig:
    """Settings shared by the backends, the synchronizer and the API"""
    yabai_path: str = "/opt/homebrew/bin/yabai"
    aerospace_path: str = "/opt/homebrew/bin/aerospace"
    yabai_socket_path: str = "/tmp/spacesync-yabai.sock"
    poll_interval: float = 1.0  # seconds
    window_focus_delay: float = 0.1  # seconds
    command_timeout: float = 5.0  # seconds
    api_host: str = "127.0.0.1"
    api_port: int = 8765
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "SpacesConfig":
        """
        Build a configuration from SPACESYNC_* environment variables.

        Unset variables keep their defaults; malformed numbers are logged
        and replaced by the default.
        """
        defaults = cls()
        return cls(
            yabai_path=os.getenv(ENV_PREFIX + "YABAI_PATH", defaults.yabai_path),
            aerospace_path=os.getenv(ENV_PREFIX + "AEROSPACE_PATH", defaults.aerospace_path),
            yabai_socket_path=os.getenv(ENV_PREFIX + "YABAI_SOCKET", defaults.yabai_socket_path),
            poll_interval=_env_float("POLL_INTERVAL", defaults.poll_interval),
            window_focus_delay=_env_float("WINDOW_FOCUS_DELAY", defaults.window_focus_delay),
            command_timeout=_env_float("COMMAND_TIMEOUT", defaults.command_timeout),
            api_host=os.getenv(ENV_PREFIX + "API_HOST", defaults.api_host),
            api_port=_env_int("API_PORT", defaults.api_port),
            log_level=os.getenv(ENV_PREFIX + "LOG_LEVEL", defaults.log_level).upper(),
        )

    def to_dict(self) -> Dict:
        """Convert to dictionary for JSON serialization"""
        return asdict(self)


# Global configuration instance
_config: Optional[SpacesConfig] = None


def get_config() -> SpacesConfig:
    """Get global configuration, loading it from the environment on first use"""
    global _config
    if _config is None:
        _config = SpacesConfig.from_env()
    return _config


def reload_config() -> SpacesConfig:
    """Reload configuration from the environment (useful for testing)"""
    global _config
    _config = None
    return get_config()
