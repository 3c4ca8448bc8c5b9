"""
Exception types raised by the cloning pipeline
"""

from typing import Optional


class CloneError(Exception):
    """Base class for every failure surfaced by the cloner"""


class CloneValidationError(CloneError, ValueError):
    """The clone request is malformed (bad source URL, missing identity name)"""


class CloneTimeoutError(CloneError):
    """The clone operation exceeded its wall-clock ceiling"""

    def __init__(self, url: str, timeout: float):
        self.url = url
        self.timeout = timeout
        super().__init__(f"Clone of {url} timed out after {timeout:g} seconds")


class DownloadError(CloneError):
    """A single asset could not be downloaded"""

    def __init__(self, url: str, cause: str, status_code: Optional[int] = None):
        self.url = url
        self.cause = cause
        self.status_code = status_code
        super().__init__(f"{cause} ({url})")
