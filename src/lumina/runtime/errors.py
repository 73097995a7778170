from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class StakingError(Exception):
    """Canonical error type for staking operations.

    Every subclass aborts the whole operation: the pool restores its state
    before the error reaches the caller.
    """

    code: str
    reason: str
    details: Any | None = None

    def __str__(self) -> str:  # pragma: no cover
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


class AuthorizationError(StakingError):
    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("forbidden", reason, details)


class StateConflictError(StakingError):
    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("invalid_state", reason, details)


class BoundsError(StakingError):
    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("invalid_payload", reason, details)


class ThrottleError(StakingError):
    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("throttled", reason, details)


class NotFoundError(StakingError):
    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("not_found", reason, details)


class ReentrancyError(StakingError):
    def __init__(self, reason: str = "operation_in_progress", details: Any | None = None) -> None:
        super().__init__("reentrancy", reason, details)


class InvariantViolation(StakingError):
    """Internal-consistency fault. Never expected under correct operation."""

    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("invariant_violation", reason, details)


__all__ = [
    "AuthorizationError",
    "BoundsError",
    "InvariantViolation",
    "NotFoundError",
    "ReentrancyError",
    "StakingError",
    "StateConflictError",
    "ThrottleError",
]
