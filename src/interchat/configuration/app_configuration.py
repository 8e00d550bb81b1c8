from __future__ import annotations
from pathlib import Path
import fcntl
from typing import Any, Dict
import yaml

from interchat.configuration.settings_sections import CallingSettings, NetworkSettings, StorageSettings
from interchat.util.logger import get_logger

logger = get_logger("app_configuration")


CONFIG_PATH = Path("./config/app_config.yml").resolve()


class AppConfig:
    """File-lock based accessor around the YAML application configuration.

    The class caches the contents of ``./config/app_config.yml`` and exposes
    typed section helpers for the userphone, hub network and storage layers.
    Reads take an fcntl shared lock so a concurrent editor never yields a
    half-written document.
    """

    def __init__(self, config_path: Path = CONFIG_PATH) -> None:
        self.config_path = config_path
        self._data: Dict[str, Any] = {}
        self.reload()

    # --------------------------
    # Private helpers
    # --------------------------
    def load_from_disk(self) -> Dict[str, Any]:
        try:
            with self.config_path.open("r", encoding="utf-8") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                try:
                    data = yaml.safe_load(f)
                finally:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
                return data if isinstance(data, dict) else {}
        except FileNotFoundError:
            logger.error("[APP CONFIGURATION] Config file %s not found.", self.config_path)
        except Exception as exc:
            logger.error("[APP CONFIGURATION] Failed to load config %s: %s", self.config_path, exc)
        return {}

    # --------------------------
    # Public API
    # --------------------------
    def reload(self) -> Dict[str, Any]:
        """Reload configuration from disk and return the loaded mapping.

        Returns an empty dict when the file is missing or unreadable, in which
        case every section falls back to its defaults.
        """
        self._data = self.load_from_disk()
        return self._data

    @property
    def data(self) -> Dict[str, Any]:
        """Return the current cached configuration mapping (do not mutate)."""
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        """Safe lookup for top-level configuration keys."""
        return self._data.get(key, default)

    # --------------------------
    # Sections
    # --------------------------
    @property
    def calling(self) -> CallingSettings:
        """Userphone settings from the ``calling`` section."""
        return CallingSettings(self._data.get("calling"))

    @property
    def network(self) -> NetworkSettings:
        """Hub relay settings from the ``network`` section."""
        return NetworkSettings(self._data.get("network"))

    @property
    def storage(self) -> StorageSettings:
        """Database and cache backend settings from the ``storage`` section."""
        return StorageSettings(self._data.get("storage"))
