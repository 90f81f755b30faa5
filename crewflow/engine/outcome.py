"""
crewflow.engine.outcome — Result of a User-Facing Operation
============================================================

Every social-graph and attendance operation returns an :class:`Outcome`
instead of raising: the caller (bot command, HTTP route) needs a message to
show the user whether the call worked, was refused, or was a friendly no-op.

``kind`` carries the error taxonomy so front-ends can map it (the API turns
``not_found`` into 404, ``forbidden`` into 403, and so on).  ``conflict``
outcomes are successes: "already a member" is not an error.
"""

from __future__ import annotations

import enum
import functools
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, ParamSpec

from crewflow.database.store import StoreError

logger = logging.getLogger(__name__)

P = ParamSpec("P")


class OutcomeKind(enum.StrEnum):
    OK = "ok"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    CONFLICT = "conflict"
    FAILURE = "failure"


@dataclass(frozen=True, slots=True)
class Outcome:
    ok: bool
    message: str
    kind: OutcomeKind = OutcomeKind.OK
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, message: str, **data: Any) -> Outcome:
        return cls(True, message, OutcomeKind.OK, data)

    @classmethod
    def noop(cls, message: str, **data: Any) -> Outcome:
        return cls(True, message, OutcomeKind.CONFLICT, data)

    @classmethod
    def invalid(cls, message: str) -> Outcome:
        return cls(False, message, OutcomeKind.VALIDATION)

    @classmethod
    def not_found(cls, message: str) -> Outcome:
        return cls(False, message, OutcomeKind.NOT_FOUND)

    @classmethod
    def forbidden(cls, message: str) -> Outcome:
        return cls(False, message, OutcomeKind.FORBIDDEN)

    @classmethod
    def failure(cls, message: str = "Something went wrong. Try again.") -> Outcome:
        return cls(False, message, OutcomeKind.FAILURE)


def guarded(func: Callable[P, Outcome]) -> Callable[P, Outcome]:
    """Turn a :class:`StoreError` escaping *func* into ``Outcome.failure()``.

    For operations the caller waits on: the user sees a retryable message,
    the traceback goes to the log.
    """

    @functools.wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> Outcome:
        try:
            return func(*args, **kwargs)
        except StoreError:
            logger.exception("%s failed on a store call", func.__name__)
            return Outcome.failure()

    return wrapper
