"""Centralized constants for quest_helper.

This module contains the default values and limits used throughout the
application. Import from here to ensure consistency between the
configuration layer, the orchestrator and the CLI.

Example:
    >>> from quest_helper.utils.constants import (
    ...     DEFAULT_SPEED_MULTIPLIER,
    ...     DEFAULT_POLLING_INTERVAL,
    ... )
    >>> print(f"Speed: {DEFAULT_SPEED_MULTIPLIER}x")
"""

from __future__ import annotations

from pathlib import Path

# =============================================================================
# Progress Simulation
# =============================================================================
DEFAULT_SPEED_MULTIPLIER = 7
MIN_SPEED_MULTIPLIER = 1
MAX_SPEED_MULTIPLIER = 20

# Seconds between remote video progress heartbeats
DEFAULT_HEARTBEAT_INTERVAL = 3
MIN_HEARTBEAT_INTERVAL = 1
MAX_HEARTBEAT_INTERVAL = 60

# Local simulator tick (seconds)
DEFAULT_TICK_INTERVAL = 0.25

# =============================================================================
# Polling
# =============================================================================
DEFAULT_POLLING_INTERVAL = 60
MIN_POLLING_INTERVAL = 5
MAX_POLLING_INTERVAL = 3600

# =============================================================================
# Queue
# =============================================================================
# Let the backend register a finished task before the next start call
DEFAULT_SETTLE_DELAY = 2.0
DEFAULT_ENROLL_DELAY = 0.5

# =============================================================================
# Game Tasks
# =============================================================================
DEFAULT_GAME_MODE = "simulate"
DEFAULT_GAME_PLATFORM = "win32"
DEFAULT_GAME_INSTALL_DIR = Path("~/Documents/QuestGames")

# Activity presence action sent when a simulated game starts
PRESENCE_CONNECT = "connect"

# =============================================================================
# Stream Tasks
# =============================================================================
STREAM_HEARTBEAT_INTERVAL = 30

# Presence-detected play time is credited on this cadence
PROCESS_HEARTBEAT_INTERVAL = 30

# =============================================================================
# Progress
# =============================================================================
PROGRESS_MIN = 0.0
PROGRESS_MAX = 100.0

# Task type names that map to process-backed tasks
PLAY_TASK_TYPES = frozenset({"PLAY_ON_DESKTOP", "PLAY_ON_XBOX", "PLAY_ON_PLAYSTATION", "PLAY_ACTIVITY"})
STREAM_TASK_TYPES = frozenset({"STREAM_ON_DESKTOP"})
VIDEO_TASK_TYPES = frozenset({"WATCH_VIDEO", "WATCH_VIDEO_ON_MOBILE"})

# =============================================================================
# Storage
# =============================================================================
DEFAULT_STATE_DIR = Path("~/.local/share/quest_helper/sessions")
SESSION_STATE_FILE = "current_session.json"
# Minimum seconds between snapshot writes driven by local progress
SNAPSHOT_SAVE_INTERVAL = 5.0


__all__ = [
    "DEFAULT_SPEED_MULTIPLIER",
    "MIN_SPEED_MULTIPLIER",
    "MAX_SPEED_MULTIPLIER",
    "DEFAULT_HEARTBEAT_INTERVAL",
    "MIN_HEARTBEAT_INTERVAL",
    "MAX_HEARTBEAT_INTERVAL",
    "DEFAULT_TICK_INTERVAL",
    "DEFAULT_POLLING_INTERVAL",
    "MIN_POLLING_INTERVAL",
    "MAX_POLLING_INTERVAL",
    "DEFAULT_SETTLE_DELAY",
    "DEFAULT_ENROLL_DELAY",
    "DEFAULT_GAME_MODE",
    "DEFAULT_GAME_PLATFORM",
    "DEFAULT_GAME_INSTALL_DIR",
    "PRESENCE_CONNECT",
    "STREAM_HEARTBEAT_INTERVAL",
    "PROCESS_HEARTBEAT_INTERVAL",
    "PROGRESS_MIN",
    "PROGRESS_MAX",
    "PLAY_TASK_TYPES",
    "STREAM_TASK_TYPES",
    "VIDEO_TASK_TYPES",
    "DEFAULT_STATE_DIR",
    "SESSION_STATE_FILE",
    "SNAPSHOT_SAVE_INTERVAL",
]
