"""Task executor backends.

:class:`TaskBackend` is the interface the orchestrator consumes.
:class:`LocalBackend` simulates the remote side in-process from JSON
fixtures and is what the CLI runs against.
"""

from quest_helper.backends.base import TaskBackend
from quest_helper.backends.local import LocalBackend, LocalBackendError

__all__ = ["LocalBackend", "LocalBackendError", "TaskBackend"]
