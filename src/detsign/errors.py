"""Typed error model with stable, machine-readable error codes."""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum
from typing import ClassVar


class ErrorCode(StrEnum):
    """Stable error identifiers, one per failure category."""

    CONFIGURATION = "E_CONFIGURATION"
    STATE = "E_STATE"
    PRECONDITION = "E_PRECONDITION"
    SANDBOX_UNAVAILABLE = "E_SANDBOX_UNAVAILABLE"
    INVOCATION = "E_INVOCATION"


class DetsignError(Exception):
    """Base error for every failure that ends a run.

    Subclasses pick their category through ``error_code``.  The rendered text
    leads with the message and its code so that an operator reading stderr can
    grep for the category, followed by the hint and the non-empty context.
    """

    error_code: ClassVar[ErrorCode] = ErrorCode.CONFIGURATION
    exit_status: ClassVar[int] = 1

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = self.error_code.value
        self.hint = hint
        self.context = dict(context or {})

    def __str__(self) -> str:
        head, _, listing = self.message.partition("\n")
        lines = [f"{head} ({self.code})"]
        if listing:
            lines.append(listing)
        if self.hint:
            lines.append(f"Hint: {self.hint}")
        lines.extend(f"  {key}: {value}" for key, value in self.context.items() if value)
        return "\n".join(lines)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "code": self.code,
            "message": self.message,
            "exit_status": self.exit_status,
            "context": dict(self.context),
        }
        if self.hint is not None:
            payload["hint"] = self.hint
        return payload


class ConfigurationError(DetsignError):
    """Missing or invalid environment input, detected before any work."""

    error_code = ErrorCode.CONFIGURATION


class StateError(DetsignError):
    """Stale build directories or dirty trees; fixed by operator cleanup."""

    error_code = ErrorCode.STATE


class PreconditionError(DetsignError):
    error_code = ErrorCode.PRECONDITION


class SandboxUnavailableError(DetsignError):
    """The sandbox daemon did not answer; usually transient."""

    error_code = ErrorCode.SANDBOX_UNAVAILABLE


class InvocationError(DetsignError):
    error_code = ErrorCode.INVOCATION


__all__ = [
    "ConfigurationError",
    "DetsignError",
    "ErrorCode",
    "InvocationError",
    "PreconditionError",
    "SandboxUnavailableError",
    "StateError",
]
