"""User preferences for quest helper.

Preferences live in a JSON file under ``~/.config/quest_helper``. Any field
can be overridden from the environment with ``QUEST_HELPER_<SECTION>__<KEY>``,
for example ``QUEST_HELPER_GAME__MODE=heartbeat``.

The orchestrator reads the video speed multiplier, the heartbeat interval,
the polling interval and the game task mode at startup, and writes them back
whenever the user changes one of them.

Example:
    >>> from quest_helper.core.config import Config
    >>> config = Config.load()
    >>> config.simulation.speed_multiplier
    7
    >>> config.game.mode = "heartbeat"
    >>> config.save()
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)
from pydantic_settings.sources import JsonConfigSettingsSource

from quest_helper import __version__
from quest_helper.core.types import GameMode
from quest_helper.utils.constants import (
    DEFAULT_ENROLL_DELAY,
    DEFAULT_GAME_INSTALL_DIR,
    DEFAULT_GAME_MODE,
    DEFAULT_GAME_PLATFORM,
    DEFAULT_HEARTBEAT_INTERVAL,
    DEFAULT_POLLING_INTERVAL,
    DEFAULT_SETTLE_DELAY,
    DEFAULT_SPEED_MULTIPLIER,
    DEFAULT_STATE_DIR,
    DEFAULT_TICK_INTERVAL,
    MAX_HEARTBEAT_INTERVAL,
    MAX_POLLING_INTERVAL,
    MAX_SPEED_MULTIPLIER,
    MIN_HEARTBEAT_INTERVAL,
    MIN_POLLING_INTERVAL,
    MIN_SPEED_MULTIPLIER,
)

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "quest_helper"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.json"

# Kept outside the model so pydantic never tries to serialize them
_config_lock: threading.Lock = threading.Lock()
_config_instance: Config | None = None


def _expand_user(value: str | Path) -> Path:
    return Path(value).expanduser()


class SimulationConfig(BaseModel):
    """Progress simulation settings.

    Attributes:
        speed_multiplier: Video playback speed multiplier (user-chosen).
        heartbeat_interval: Seconds between remote video progress heartbeats.
        tick_interval: Seconds between local progress simulator ticks.
    """

    speed_multiplier: int = Field(
        default=DEFAULT_SPEED_MULTIPLIER,
        ge=MIN_SPEED_MULTIPLIER,
        le=MAX_SPEED_MULTIPLIER,
    )
    heartbeat_interval: int = Field(
        default=DEFAULT_HEARTBEAT_INTERVAL,
        ge=MIN_HEARTBEAT_INTERVAL,
        le=MAX_HEARTBEAT_INTERVAL,
    )
    tick_interval: float = Field(default=DEFAULT_TICK_INTERVAL, gt=0.0, le=5.0)


class PollingConfig(BaseModel):
    """Authoritative status polling settings.

    Attributes:
        interval_seconds: Seconds between silent task-list refreshes.
        poll_push_sessions: Also poll video and stream sessions as a
            fallback when push completion signals are unreliable.
    """

    interval_seconds: int = Field(
        default=DEFAULT_POLLING_INTERVAL,
        ge=MIN_POLLING_INTERVAL,
        le=MAX_POLLING_INTERVAL,
    )
    poll_push_sessions: bool = False


class GameConfig(BaseModel):
    """Game task settings.

    Attributes:
        mode: "simulate" launches a fake executable and opens an activity
            presence; "heartbeat" asks the backend to heartbeat directly.
        platform: Platform identifier used to pick the executable.
        install_dir: Directory where fake executables are materialized.
    """

    mode: GameMode = DEFAULT_GAME_MODE
    platform: str = DEFAULT_GAME_PLATFORM
    install_dir: Path = Field(default=DEFAULT_GAME_INSTALL_DIR, validate_default=True)

    @field_validator("install_dir", mode="before")
    @classmethod
    def expand_install_dir(cls, value: str | Path) -> Path:
        return _expand_user(value)


class QueueConfig(BaseModel):
    """Batch queue settings.

    Attributes:
        settle_delay: Seconds to wait after a finished item before starting
            the next one.
        enroll_delay: Seconds between enrollment calls in accept-all.
    """

    settle_delay: float = Field(default=DEFAULT_SETTLE_DELAY, ge=0.0, le=60.0)
    enroll_delay: float = Field(default=DEFAULT_ENROLL_DELAY, ge=0.0, le=60.0)


class PathsConfig(BaseModel):
    """Path settings.

    Attributes:
        state_dir: Directory for the live session snapshot.
    """

    state_dir: Path = Field(default=DEFAULT_STATE_DIR, validate_default=True)

    @field_validator("state_dir", mode="before")
    @classmethod
    def expand_state_dir(cls, value: str | Path) -> Path:
        return _expand_user(value)


class Config(BaseSettings):
    """All quest helper preferences.

    Values are resolved in this order, first match wins: constructor
    arguments, ``QUEST_HELPER_*`` environment variables, the JSON config
    file, field defaults.

    Attributes:
        version: Version that last wrote the file.
        simulation: Progress simulation settings.
        polling: Status polling settings.
        game: Game task settings.
        queue: Batch queue settings.
        paths: Path settings.
    """

    model_config = SettingsConfigDict(
        env_prefix="QUEST_HELPER_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    version: str = Field(default_factory=lambda: __version__)
    simulation: SimulationConfig = Field(default_factory=SimulationConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    game: GameConfig = Field(default_factory=GameConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # No .env or secrets directory support
        _ = dotenv_settings, file_secret_settings
        return (
            init_settings,
            env_settings,
            JsonConfigSettingsSource(settings_cls, json_file=cls.get_default_config_path()),
        )

    @classmethod
    def load(cls, *, force_reload: bool = False) -> Config:
        """Return the shared preferences, reading them on first use.

        Args:
            force_reload: Read the file and environment again even when
                preferences were already loaded.

        Returns:
            Config: The shared instance.

        Raises:
            pydantic.ValidationError: If the file or environment holds an
                out-of-range value.
        """
        global _config_instance

        with _config_lock:
            if _config_instance is None or force_reload:
                _config_instance = cls()
            return _config_instance

    @classmethod
    def reset(cls) -> None:
        """Forget the shared instance so the next load reads from scratch."""
        global _config_instance

        with _config_lock:
            _config_instance = None

    @classmethod
    def get_default_config_path(cls) -> Path:
        """Get the user config file path."""
        return DEFAULT_CONFIG_FILE

    def save(self, config_path: Path | None = None) -> None:
        """Write the preferences as JSON.

        Args:
            config_path: Target file. Defaults to the user config file.

        Raises:
            OSError: If the file cannot be written.
        """
        save_path = config_path or self.get_default_config_path()
        save_path.parent.mkdir(parents=True, exist_ok=True)

        with save_path.open("w", encoding="utf-8") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2, ensure_ascii=False)
            f.write("\n")


__all__ = [
    "Config",
    "SimulationConfig",
    "PollingConfig",
    "GameConfig",
    "QueueConfig",
    "PathsConfig",
    "DEFAULT_CONFIG_DIR",
    "DEFAULT_CONFIG_FILE",
]
