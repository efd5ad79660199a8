"""Run-aborting error taxonomy for the ledger pipeline."""

from __future__ import annotations

from typing import Optional


class LedgerError(Exception):
    """Base class for failures that abort a reconciliation run."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class TransportError(LedgerError):
    """Network or TLS failure that survived every retry."""


class AuthFailed(LedgerError):
    """The usage API rejected the credentials or returned no token."""


class ApiFailed(LedgerError):
    """An upstream answered with a non-success status or an unreadable body."""


class ExtractionFailed(LedgerError):
    """No extraction strategy recovered the spot price table."""


class IdentityNotFound(LedgerError):
    """Configured meter identities are not registered on the site."""

    def __init__(self, site_id: int, missing: list[int], available: list[int]) -> None:
        super().__init__(
            f"Easee userId(s) not found on site {site_id}. "
            f"Missing: {', '.join(str(uid) for uid in missing)}. "
            f"Available: {', '.join(str(uid) for uid in available)}"
        )
        self.site_id = site_id
        self.missing = missing
        self.available = available


class MissingCredentials(LedgerError):
    """Neither a token nor a username/password pair was supplied."""
