"""
Operation results for the contract lifecycle.

Every lifecycle operation returns either ``Success`` or ``Failure``. Expected
outcomes (expired link, wrong state, bad payload) and dependency failures
(storage, rendering, mail) are both values, so a caller has to look at the
kind instead of catching exceptions.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Union


class ErrorKind(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    TERMINAL = "terminal"
    INVALID_STATE = "invalid_state"
    VALIDATION = "validation"
    RATE_LIMITED = "rate_limited"
    DEPENDENCY = "dependency"


HTTP_STATUS = {
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.AUTHORIZATION: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.EXPIRED: 410,
    ErrorKind.TERMINAL: 410,
    ErrorKind.INVALID_STATE: 400,
    ErrorKind.VALIDATION: 400,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.DEPENDENCY: 500,
}


@dataclass(frozen=True)
class Success:
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    kind: ErrorKind
    message: str

    @property
    def ok(self) -> bool:
        return False

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.kind]


Result = Union[Success, Failure]


class DependencyError(Exception):
    """An external collaborator (storage, renderer, mail) failed."""


class StorageError(DependencyError):
    pass


class RenderError(DependencyError):
    pass


class NotificationError(DependencyError):
    pass


class ContractStateError(Exception):
    """A contract row would be persisted with an illegal status/token combination."""
