# wmata_errors.py
#
# Error kinds shared by the WMATA alert bot modules.
# - Every failure the bot reports carries a structured `kind`
# - Callers branch on kind/type, never on message text
#
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    CONFIG = "config"
    FETCH = "fetch"
    VALIDATION = "validation"
    PUBLISH = "publish"


class AlertBotError(Exception):
    kind: Optional[ErrorKind] = None

    def __init__(self, message: str, *, status: Optional[int] = None, category: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.category = category

    def __str__(self) -> str:
        if self.status is not None:
            return f"{self.message} (HTTP {self.status})"
        return self.message


class ConfigError(AlertBotError):
    """Required configuration is missing or malformed. Raised before any network call."""

    kind = ErrorKind.CONFIG

    def __init__(self, message: str, missing: Optional[list] = None) -> None:
        super().__init__(message)
        self.missing = list(missing or [])


class FetchError(AlertBotError):
    kind = ErrorKind.FETCH


class ValidationError(AlertBotError):
    kind = ErrorKind.VALIDATION


class PublishError(AlertBotError):
    kind = ErrorKind.PUBLISH
