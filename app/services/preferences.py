"""
Preferences Service - Unified persistence for all configuration
Stores identity, backends, call transport and UI preferences
"""

import json
import logging
import os
import shutil
import threading
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Any, Optional

from app.providers.base import MediaConstraints
from app.services.peer_connection import DEFAULT_CANDIDATE_POOL_SIZE, DEFAULT_ICE_SERVERS, TransportConfig
from app.services.presence_service import Identity

logger = logging.getLogger(__name__)

# Environment variable -> (section, key)
ENV_OVERRIDES = {
    "PEERCHAT_UID": ("identity", "uid"),
    "PEERCHAT_DISPLAY_NAME": ("identity", "display_name"),
    "PEERCHAT_PHOTO_URL": ("identity", "photo_url"),
    "PEERCHAT_STORE_BACKEND": ("store", "backend"),
    "FIREBASE_DATABASE_URL": ("store", "database_url"),
}


@dataclass
class StoreConfig:
    backend: str = "memory"
    database_url: str = ""
    latency: float = 0.0

    def provider_options(self) -> Dict[str, Any]:
        return {"database_url": self.database_url, "latency": self.latency}


@dataclass
class MediaConfig:
    backend: str = "device"
    video_device: str = "/dev/video0"
    video_format: str = "v4l2"
    audio_device: str = "default"
    audio_format: str = "pulse"
    width: int = 640
    height: int = 480
    max_framerate: int = 30
    echo_cancellation: bool = True
    noise_suppression: bool = True

    def constraints(self) -> MediaConstraints:
        return MediaConstraints(
            width=self.width,
            height=self.height,
            max_framerate=self.max_framerate,
            echo_cancellation=self.echo_cancellation,
            noise_suppression=self.noise_suppression,
        )

    def provider_options(self) -> Dict[str, Any]:
        return {
            "video_device": self.video_device,
            "video_format": self.video_format,
            "audio_device": self.audio_device,
            "audio_format": self.audio_format,
        }


@dataclass
class CallsConfig:
    timeout_seconds: float = 30.0
    ice_servers: List[str] = field(default_factory=lambda: list(DEFAULT_ICE_SERVERS))
    ice_candidate_pool_size: int = DEFAULT_CANDIDATE_POOL_SIZE

    def transport(self) -> TransportConfig:
        return TransportConfig(
            ice_servers=list(self.ice_servers), ice_candidate_pool_size=self.ice_candidate_pool_size
        ).validated()


@dataclass
class UploadConfig:
    backend: str = "cloudinary"
    cloud_name: str = ""
    upload_preset: str = "ml_default"

    def provider_options(self) -> Dict[str, Any]:
        return {"cloud_name": self.cloud_name, "upload_preset": self.upload_preset}


class PreferencesService:
    """
    Unified preferences and configuration persistence.
    Single source of truth for all configuration.
    """

    PREFERENCES_FILE = "preferences.json"

    def __init__(self, config_path: str = None, environ: Optional[Dict[str, str]] = None):
        self._lock = threading.RLock()  # RLock allows re-entrant locking from same thread
        self._environ = os.environ if environ is None else environ
        self._preferences: Dict[str, Any] = self._default_preferences()
        self._config_path = config_path or self._environ.get("PEERCHAT_PREFERENCES") or self._get_config_path()
        self._load()

    def _get_config_path(self) -> str:
        """Get path to preferences file (project root)."""
        base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
        return os.path.join(base_dir, "..", self.PREFERENCES_FILE)

    def _default_preferences(self) -> Dict[str, Any]:
        """Return default preferences structure."""
        return {
            "identity": {"uid": "", "display_name": "", "photo_url": None},
            "store": asdict(StoreConfig()),
            "media": asdict(MediaConfig()),
            "calls": asdict(CallsConfig()),
            "upload": asdict(UploadConfig()),
            "ui": {"language": "en"},
        }

    def _load(self):
        """Load preferences from file."""
        try:
            if os.path.exists(self._config_path):
                with open(self._config_path, "r") as f:
                    loaded = json.load(f)

                # Merge with defaults (to add any new fields)
                defaults = self._default_preferences()
                self._deep_merge(defaults, loaded)
                self._preferences = defaults
                logger.info(f"Loaded preferences from {self._config_path}")
            else:
                logger.info(f"First run detected - creating preferences file at {self._config_path}")
                self._preferences = self._default_preferences()
                self._save()
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load preferences: {e}")
            self._preferences = self._default_preferences()

    def _deep_merge(self, base: dict, override: dict):
        """Deep merge override into base (modifies base in place)."""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    def _save(self) -> bool:
        """Save preferences to file with synchronization."""
        try:
            with self._lock:
                with open(self._config_path, "w") as f:
                    json.dump(self._preferences, f, indent=2)
                    # Force OS to write to disk while file is still open
                    f.flush()
                    os.fsync(f.fileno())
            return True
        except OSError as e:
            logger.warning(f"Failed to save preferences: {e}")
            return False

    def _section(self, name: str) -> Dict[str, Any]:
        """Section with environment overrides applied (overrides are never persisted)"""
        with self._lock:
            section = dict(self._preferences.get(name, {}))
        for env_name, (env_section, key) in ENV_OVERRIDES.items():
            if env_section == name and self._environ.get(env_name):
                section[key] = self._environ[env_name]
        return section

    @staticmethod
    def _view(config_type, section: Dict[str, Any]):
        known = config_type.__dataclass_fields__
        return config_type(**{key: value for key, value in section.items() if key in known})

    # ==================== Identity ====================

    def get_identity(self) -> Identity:
        cfg = self._section("identity")
        uid = cfg.get("uid") or ""
        return Identity(uid=uid, display_name=cfg.get("display_name") or uid, photo_url=cfg.get("photo_url"))

    def set_identity(self, uid: str, display_name: str = "", photo_url: Optional[str] = None):
        with self._lock:
            self._preferences["identity"] = {"uid": uid, "display_name": display_name, "photo_url": photo_url}
            saved = self._save()
        logger.info(f"Identity saved: {uid}")
        return saved

    # ==================== Backends ====================

    def get_store_config(self) -> StoreConfig:
        return self._view(StoreConfig, self._section("store"))

    def get_media_config(self) -> MediaConfig:
        return self._view(MediaConfig, self._section("media"))

    def get_upload_config(self) -> UploadConfig:
        return self._view(UploadConfig, self._section("upload"))

    # ==================== Calls ====================

    def get_calls_config(self) -> CallsConfig:
        return self._view(CallsConfig, self._section("calls"))

    def set_calls_config(self, config: Dict[str, Any]):
        """Update call settings."""
        with self._lock:
            self._preferences.setdefault("calls", {}).update(config)
            return self._save()

    # ==================== UI Preferences ====================

    def get_ui_preferences(self) -> Dict[str, Any]:
        """Get UI preferences."""
        return self._section("ui")

    def get_language(self) -> str:
        return self.get_ui_preferences().get("language", "en")

    def set_ui_preference(self, key: str, value: Any):
        """Set a UI preference."""
        with self._lock:
            self._preferences.setdefault("ui", {})[key] = value
            return self._save()

    # ==================== System Info ====================

    def get_all_preferences(self) -> Dict[str, Any]:
        """Get all preferences (for debugging/export)."""
        with self._lock:
            return json.loads(json.dumps(self._preferences))

    def reset_preferences(self) -> bool:
        """Reset all preferences to defaults and save."""
        with self._lock:
            if os.path.exists(self._config_path):
                backup_path = self._config_path + ".backup"
                try:
                    shutil.copy2(self._config_path, backup_path)
                    logger.info(f"Backed up preferences to {backup_path}")
                except OSError as e:
                    logger.warning(f"Failed to reset preferences: {e}")
                    return False

            self._preferences = self._default_preferences()
            self._save()
            logger.info("Preferences reset to defaults")
            return True


# Singleton instance
_preferences_service: Optional[PreferencesService] = None


def get_preferences() -> PreferencesService:
    """Get the singleton preferences service instance."""
    global _preferences_service
    if _preferences_service is None:
        _preferences_service = PreferencesService()
    return _preferences_service
