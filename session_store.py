# Interactive Feedback MCP Session Store
# Developed by Fábio Ferreira (https://x.com/fabiomlferreira)
# Inspired by/related to dotcursorrules.com (https://dotcursorrules.com/)
import os
import json
import hashlib
import logging
import tempfile
from pathlib import Path
from typing import Any, Optional, TypedDict

from platformdirs import PlatformDirs

logger = logging.getLogger(__name__)

APP_NAME = "interactive-feedback-mcp"


class SessionConfig(TypedDict):
    run_command: str
    execute_automatically: bool
    command_section_visible: bool
    window_geometry: Optional[Any]


DEFAULT_CONFIG: SessionConfig = {
    "run_command": "",
    "execute_automatically": False,
    "command_section_visible": False,
    "window_geometry": None,
}


def _platform_dirs() -> PlatformDirs:
    return PlatformDirs(appname=APP_NAME, appauthor=False)


def default_config_dir() -> Path:
    override = os.getenv("INTERACTIVE_FEEDBACK_CONFIG_DIR")
    if override:
        return Path(override)
    return Path(_platform_dirs().user_config_path)


def default_log_dir() -> Path:
    return Path(_platform_dirs().user_log_path)


def get_project_settings_group(project_dir: str) -> str:
    # Create a safe, unique group name from the project directory path
    # Using only the last component + hash of full path to keep it somewhat readable but unique
    basename = os.path.basename(os.path.normpath(project_dir))
    full_hash = hashlib.md5(project_dir.encode("utf-8")).hexdigest()[:8]
    return f"{basename}_{full_hash}"


def atomic_write_json(path: Path, data: Any) -> None:
    """Write JSON to ``path`` through a temp file in the same directory."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            try:
                tmp_path.unlink()
            except OSError:
                pass


class SessionStore:
    """Per-project SessionConfig persisted as one JSON file.

    Loading never fails: a missing or corrupt file yields the defaults.
    Saving propagates OSError to the caller.
    """

    def __init__(self, project_directory: str, config_dir: Optional[Path] = None):
        self.project_directory = project_directory
        self.config_dir = Path(config_dir) if config_dir else default_config_dir()

    @property
    def path(self) -> Path:
        return self.config_dir / f"{get_project_settings_group(self.project_directory)}.json"

    def load(self) -> SessionConfig:
        config: dict[str, Any] = dict(DEFAULT_CONFIG)
        path = self.path
        if not path.exists():
            logger.info("Config file doesn't exist, using defaults: %s", path)
            return config  # type: ignore[return-value]
        try:
            with open(path, "r", encoding="utf-8") as f:
                stored = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Error reading config file %s: %s. Using defaults.", path, e)
            return config  # type: ignore[return-value]
        if not isinstance(stored, dict):
            logger.warning("Config file %s does not hold an object. Using defaults.", path)
            return config  # type: ignore[return-value]
        config.update(stored)
        return config  # type: ignore[return-value]

    def save(self, updates: dict[str, Any]) -> SessionConfig:
        merged: dict[str, Any] = dict(self.load())
        merged.update(updates)
        atomic_write_json(self.path, merged)
        logger.info("Configuration saved to %s", self.path)
        return merged  # type: ignore[return-value]
