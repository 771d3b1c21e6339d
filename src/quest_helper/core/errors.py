"""Exception hierarchy for quest orchestration.

Failures while a session is starting propagate to the caller and leave the
state machine idle. Failures while a session is stopping never propagate;
they are logged and recorded on the teardown report instead.

Error Categories:
    | Error          | Raised during | Propagates |
    |----------------|---------------|------------|
    | StartFailure   | Starting      | Yes        |
    | CatalogMiss    | Starting      | Yes        |
    | ExecutorError  | Active        | No (state) |
    | StopFailure    | Stopping      | No         |
    | RecoveryMiss   | Stopping      | No         |
"""

from __future__ import annotations


class QuestError(Exception):
    """Base exception for quest orchestration errors."""

    pass


class StartFailure(QuestError):
    """Raised when the remote side rejects starting a task."""

    pass


class CatalogMiss(StartFailure):
    """Raised when an application or a matching executable is not in the catalog."""

    pass


class ExecutorError(QuestError):
    """Error pushed by the task executor while a session is active."""

    pass


class StopFailure(QuestError):
    """A teardown step failed. Recorded, never raised to callers."""

    pass


class RecoveryMiss(QuestError):
    """The process handle of a session could not be reconstructed."""

    pass


class SessionStateError(QuestError):
    """Raised when an operation is not allowed in the current session phase."""

    pass


__all__ = [
    "QuestError",
    "StartFailure",
    "CatalogMiss",
    "ExecutorError",
    "StopFailure",
    "RecoveryMiss",
    "SessionStateError",
]
