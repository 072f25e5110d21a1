"""Error kinds, exceptions and the result type threaded through a rename."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")

MESSAGE_PREFIX = "[inc-rename]"


class ErrorKind(str, Enum):
    NO_CAPABLE_PROVIDER = "no_capable_provider"
    FETCH_FAILED = "fetch_failed"
    NOTHING_TO_RENAME = "nothing_to_rename"
    RENAME_FAILED = "rename_failed"
    NOTHING_RENAMED = "nothing_renamed"
    PREVIEW_FAILED = "preview_failed"

    @property
    def level(self) -> int:
        """Notification level used when this kind reaches the user."""
        if self in (ErrorKind.NOTHING_TO_RENAME, ErrorKind.NOTHING_RENAMED):
            return logging.WARNING
        return logging.ERROR


class RenameError(Exception):
    """Terminal error for one rename interaction."""

    def __init__(self, kind: ErrorKind, message: str):
        self.kind = kind
        self.message = message
        super().__init__(message)

    @property
    def level(self) -> int:
        return self.kind.level


class NoCapableProviderError(Exception):
    """Raised when no language server with rename support is attached."""


class LSPRequestError(Exception):
    """Raised when the language server answers a request with an error."""


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def is_ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    message: str

    @property
    def is_ok(self) -> bool:
        return False

    @property
    def level(self) -> int:
        return self.kind.level

    def to_exception(self) -> RenameError:
        return RenameError(self.kind, self.message)


Result = Union[Ok[T], Err]


def format_message(message: str) -> str:
    """Prefix a user-facing message with the plugin tag."""
    if message.startswith(MESSAGE_PREFIX):
        return message
    return f"{MESSAGE_PREFIX} {message}"


__all__ = [
    "MESSAGE_PREFIX",
    "ErrorKind",
    "RenameError",
    "NoCapableProviderError",
    "LSPRequestError",
    "Ok",
    "Err",
    "Result",
    "format_message",
]
