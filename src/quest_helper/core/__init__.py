"""Core module for quest lifecycle orchestration.

This module provides the session state machine, its collaborators and the
type definitions shared across the package.

Note:
    The Orchestrator ties every collaborator together and is imported
    separately:
    >>> from quest_helper.core.orchestrator import Orchestrator
"""

from quest_helper.core.config import (
    Config,
    GameConfig,
    PathsConfig,
    PollingConfig,
    QueueConfig,
    SimulationConfig,
)
from quest_helper.core.errors import (
    CatalogMiss,
    ExecutorError,
    QuestError,
    RecoveryMiss,
    SessionStateError,
    StartFailure,
    StopFailure,
)
from quest_helper.core.events import (
    EventEmitter,
    ListenerSlots,
    Signal,
    SignalChannel,
    SignalKind,
)
from quest_helper.core.logger import (
    bind_task,
    configure_logging,
    get_log_file_path,
    get_logger,
    set_log_level,
    unbind_task,
)
from quest_helper.core.polling import PollingController
from quest_helper.core.queue import QueueDriver
from quest_helper.core.recovery import SessionStore, StopController
from quest_helper.core.scheduler import PeriodicTimer
from quest_helper.core.session import SessionStateMachine
from quest_helper.core.simulator import ProgressSimulator
from quest_helper.core.types import (
    DetectableApplication,
    Executable,
    GameMode,
    ProgressCounter,
    Session,
    SessionPhase,
    StopReason,
    Task,
    TaskKind,
    TeardownReport,
    UserStatus,
)

__all__ = [
    # Config
    "Config",
    "GameConfig",
    "PathsConfig",
    "PollingConfig",
    "QueueConfig",
    "SimulationConfig",
    # Errors
    "CatalogMiss",
    "ExecutorError",
    "QuestError",
    "RecoveryMiss",
    "SessionStateError",
    "StartFailure",
    "StopFailure",
    # Events
    "EventEmitter",
    "ListenerSlots",
    "Signal",
    "SignalChannel",
    "SignalKind",
    # Logger
    "bind_task",
    "configure_logging",
    "get_log_file_path",
    "get_logger",
    "set_log_level",
    "unbind_task",
    # Session
    "PeriodicTimer",
    "PollingController",
    "ProgressSimulator",
    "QueueDriver",
    "SessionStateMachine",
    "SessionStore",
    "StopController",
    # Types
    "DetectableApplication",
    "Executable",
    "GameMode",
    "ProgressCounter",
    "Session",
    "SessionPhase",
    "StopReason",
    "Task",
    "TaskKind",
    "TeardownReport",
    "UserStatus",
]
