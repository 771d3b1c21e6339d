"""Quest Helper - Client-side quest lifecycle orchestration."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("quest-helper")
except PackageNotFoundError:
    __version__ = "0.0.0.dev"

__author__ = "Quest Helper Team"
