# Overview: Outcome taxonomy for the deal engine; every expected failure maps to one class.

from __future__ import annotations


class DealEngineError(Exception):
    """Expected, locally-recoverable outcome reported back to the caller."""

    code = "error"
    status_code = 400

    def __init__(self, message: str | None = None, **details):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.details = details

    def to_dict(self) -> dict:
        payload = {"success": False, "error": self.code, "message": str(self)}
        if self.details:
            payload["details"] = self.details
        return payload


class NotFoundError(DealEngineError):
    """Unknown deal, claim or code."""
    code = "not_found"
    status_code = 404


class SoldOutError(DealEngineError):
    """Deal has no remaining capacity."""
    code = "sold_out"
    status_code = 409


class ExpiredError(DealEngineError):
    """Deal or claim is past its deadline."""
    code = "expired"
    status_code = 410


class AlreadyClaimedError(DealEngineError):
    """This device already holds a claim on the deal."""
    code = "already_claimed"
    status_code = 409


class AlreadyRedeemedError(DealEngineError):
    """Claim code has already been redeemed."""
    code = "already_redeemed"
    status_code = 409


class UnauthorizedError(DealEngineError):
    """Merchant does not own the deal."""
    code = "unauthorized"
    status_code = 403


class ValidationError(DealEngineError, ValueError):
    """400-level input problem."""
    code = "validation_error"
    status_code = 400


class ConflictError(DealEngineError, ValueError):
    """409-level business rule conflict (e.g., confirming a confirmed deal)."""
    code = "conflict"
    status_code = 409


class StorageUnavailableError(DealEngineError):
    """Database could not complete the operation; the caller may retry."""
    code = "storage_unavailable"
    status_code = 503
