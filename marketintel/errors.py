"""Exception types and validation results shared across the package."""

from __future__ import annotations

from dataclasses import dataclass, field


class MarketIntelError(Exception):
    """Base class for all package errors."""


class BackendError(MarketIntelError):
    """A backend query, insert, update or storage call failed."""


class MarketDataError(MarketIntelError):
    """The joint market fetch failed; no partial aggregates are produced."""


class AccessDeniedError(MarketIntelError):
    """The current role may not open the requested page."""


class BillingError(MarketIntelError):
    """A payment endpoint failed or a payment could not be verified."""


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a user-facing validation check.

    Validation failures are returned, not raised, so the caller can show the
    message inline and carry on.

    Attributes:
        ok: True when the input was accepted.
        message: Reason for rejection; empty when ok.
        errors: Per-field messages, for forms.
    """

    ok: bool
    message: str = ""
    errors: dict[str, str] = field(default_factory=dict)

    @classmethod
    def accepted(cls) -> ValidationResult:
        return cls(ok=True)

    @classmethod
    def rejected(
        cls, message: str, errors: dict[str, str] | None = None,
    ) -> ValidationResult:
        return cls(ok=False, message=message, errors=dict(errors or {}))
