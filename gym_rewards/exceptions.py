"""Exceptions raised by the Gym Rewards engine."""
from typing import Any, Optional


class RewardsError(Exception):
    """Base class for every engine error."""

    def __init__(self, message: str = '', *args):
        self.message = message
        super().__init__(message, *args)

    def __str__(self) -> str:
        return self.message


class ValidationError(RewardsError, ValueError):
    """A roulette configuration or record payload is malformed."""

    def __init__(self, message: str = '', payload: Optional[Any] = None):
        super().__init__(message)
        self.payload = payload if payload is not None else {}


class NotFoundError(RewardsError, LookupError):
    """A prize, client, roulette, scan gate or winning does not exist."""


class IneligibleError(RewardsError):
    """A business rule rejected a draw. ``reason`` is meant for the client."""

    def __init__(self, reason: str = '', code: str = 'ineligible'):
        super().__init__(reason)
        self.reason = reason
        self.code = code


class LimitExceededError(IneligibleError):
    """A daily, weekly, per-client, global or usage cap was reached."""

    def __init__(self, reason: str = '', code: str = 'limit'):
        super().__init__(reason, code=code)


class StateConflictError(RewardsError):
    """Illegal lifecycle transition for a won prize."""


class ExpiredError(RewardsError):
    """The won prize or scan gate is past its expiration."""


class CodeGenerationExhausted(RewardsError):
    """No unique code could be produced within the attempt budget."""


class DuplicateCodeError(RewardsError):
    """Storage rejected a redemption code that is already in use."""
