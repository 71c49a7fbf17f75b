"""Error taxonomy shared by the engine, the chat gateway and the HTTP facade.

None of these are fatal to the process: validation errors go back to the
caller, the rest are logged where they are caught and the engine carries on.
"""

from __future__ import annotations

from typing import Literal

ValidationReason = Literal["empty", "too_long"]


class DucklingError(Exception):
    """Base class for all duckling errors."""


class ValidationError(DucklingError, ValueError):
    """Chat input rejected before any request is made."""

    def __init__(self, reason: ValidationReason, message: str) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message


class CredentialMissing(DucklingError):
    """No API key configured; the AI call is skipped."""


class TransportFailure(DucklingError):
    """The chat-completion request failed or returned an unusable reply."""


class PersistenceFailure(DucklingError):
    """A read or write against the preference store failed."""
