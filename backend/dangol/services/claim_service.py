# Overview: Claim ledger; issues single-use codes against deal capacity and redeems them exactly once.

"""
Claim Ledger

WHY: This is the concurrency-critical core. Two customers racing for the last
slot of a deal must not both receive a code, and two cashiers scanning the same
code must not both redeem it.

DESIGN PRINCIPLES:
- Capacity is taken with a conditional UPDATE (current_claims < max_claims)
  and the outcome is decided by its row count. This is linearizable on every
  backend, including SQLite, which ignores SELECT ... FOR UPDATE.
- Redemption is compare-and-set on redeemed_at IS NULL.
- (deal_id, device_id) and claim_code are unique in the schema. A unique
  violation rolls the whole attempt back (including the capacity increment)
  and the attempt is re-run, so the checks see the committed winner.
- Claim timestamps are naive UTC. The redemption window is fixed at 30 minutes
  from issuance and does not depend on the deal's own deadline.
"""

from __future__ import annotations

import re
import secrets
import string
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import (
    AlreadyClaimedError,
    AlreadyRedeemedError,
    ExpiredError,
    NotFoundError,
    SoldOutError,
    StorageUnavailableError,
    UnauthorizedError,
    ValidationError,
)
from ..extensions import db
from ..models import Claim, Deal
from ..time_utils import as_naive_utc, resolve_now
from .concurrency import lock_for_update, run_with_retry
from .expiry_service import is_claim_expired, is_deal_expired


CLAIM_WINDOW = timedelta(minutes=30)

CLAIM_CODE_LENGTH = 6
CLAIM_CODE_ALPHABET = string.ascii_uppercase + string.digits
CLAIM_CODE_PATTERN = re.compile(r"^[A-Z0-9]{6}$")

# Unique-violation reruns before giving up (code collisions are ~1 in 2 billion)
MAX_ISSUE_ATTEMPTS = 5

CLAIM_STATE_ISSUED = "issued"
CLAIM_STATE_REDEEMED = "redeemed"
CLAIM_STATE_EXPIRED = "expired"


# =============================================================================
# CODES
# =============================================================================

def generate_claim_code() -> str:
    return "".join(secrets.choice(CLAIM_CODE_ALPHABET) for _ in range(CLAIM_CODE_LENGTH))


def normalize_claim_code(code) -> str:
    """Strip and uppercase a code typed or scanned at the counter."""
    if not isinstance(code, str):
        raise ValidationError("claim_code is required")
    normalized = code.strip().upper()
    if not CLAIM_CODE_PATTERN.match(normalized):
        raise ValidationError("claim_code must be 6 letters or digits")
    return normalized


def _normalize_device_id(device_id) -> str:
    if not isinstance(device_id, str) or not device_id.strip():
        raise ValidationError("device_id is required")
    device_id = device_id.strip()
    if len(device_id) > 255:
        raise ValidationError("device_id exceeds max length 255")
    return device_id


# =============================================================================
# ISSUANCE
# =============================================================================

def issue_claim(deal_id: int, device_id: str, *, now: Optional[datetime] = None) -> Claim:
    """
    Reserve one slot of a deal for a device and return the new Claim.

    Failure order: NotFound, SoldOut, Expired, AlreadyClaimed. The capacity
    check is repeated atomically by the conditional increment, so a stale read
    can only turn into SoldOut, never into an oversold deal.

    Raises:
        NotFoundError, SoldOutError, ExpiredError, AlreadyClaimedError,
        ValidationError, StorageUnavailableError
    """
    device_id = _normalize_device_id(device_id)
    issued_at = as_naive_utc(resolve_now(now))

    def _op():
        deal = lock_for_update(db.session.query(Deal).filter_by(id=deal_id)).first()
        if deal is None:
            raise NotFoundError(f"Deal {deal_id} not found")

        if deal.current_claims >= deal.max_claims:
            raise SoldOutError("This deal is sold out")

        if is_deal_expired(deal, now):
            raise ExpiredError("This deal has expired")

        existing = (
            db.session.query(Claim.id)
            .filter_by(deal_id=deal_id, device_id=device_id)
            .first()
        )
        if existing is not None:
            raise AlreadyClaimedError("This device has already claimed the deal")

        result = db.session.execute(
            update(Deal)
            .where(Deal.id == deal_id, Deal.current_claims < Deal.max_claims)
            .values(
                current_claims=Deal.current_claims + 1,
                version_id=Deal.version_id + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise SoldOutError("This deal is sold out")

        claim = Claim(
            deal_id=deal_id,
            device_id=device_id,
            claim_code=generate_claim_code(),
            claimed_at=issued_at,
            expires_at=issued_at + CLAIM_WINDOW,
        )
        db.session.add(claim)
        db.session.commit()
        return claim

    for _ in range(MAX_ISSUE_ATTEMPTS):
        try:
            return run_with_retry(_op)
        except IntegrityError:
            # Lost a race on (deal, device) or drew a taken code; re-check from scratch.
            continue
    raise StorageUnavailableError("Could not allocate a unique claim code")


# =============================================================================
# REDEMPTION
# =============================================================================

def redeem_claim(
    claim_code: str,
    *,
    merchant_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Claim:
    """
    Consume a claim code exactly once.

    When merchant_id is given, the claim's deal must belong to that merchant.

    Raises:
        ValidationError, NotFoundError, UnauthorizedError,
        AlreadyRedeemedError, ExpiredError, StorageUnavailableError
    """
    code = normalize_claim_code(claim_code)
    redeemed_at = as_naive_utc(resolve_now(now))

    def _op():
        claim = lock_for_update(db.session.query(Claim).filter_by(claim_code=code)).first()
        if claim is None:
            raise NotFoundError("Claim code not found")

        if merchant_id is not None and claim.deal.merchant_id != merchant_id:
            raise UnauthorizedError("This code belongs to another merchant's deal")

        if claim.redeemed_at is not None:
            raise AlreadyRedeemedError("This code has already been used")

        if is_claim_expired(claim, now):
            raise ExpiredError("This code has expired")

        result = db.session.execute(
            update(Claim)
            .where(Claim.id == claim.id, Claim.redeemed_at.is_(None))
            .values(redeemed_at=redeemed_at)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise AlreadyRedeemedError("This code has already been used")

        db.session.commit()
        return claim

    return run_with_retry(_op)


# =============================================================================
# READS
# =============================================================================

def claim_state(claim: Claim, now: Optional[datetime] = None) -> str:
    """Derived at read time; there is no status column."""
    if claim.redeemed_at is not None:
        return CLAIM_STATE_REDEEMED
    if is_claim_expired(claim, now):
        return CLAIM_STATE_EXPIRED
    return CLAIM_STATE_ISSUED


def claims_for_device(
    device_id: str,
    *,
    include_inactive: bool = False,
    now: Optional[datetime] = None,
) -> list[Claim]:
    """
    Claims held by a device, newest first.

    By default only redeemable claims (unredeemed and inside their window) are
    returned; include_inactive=True returns the full history.
    """
    device_id = _normalize_device_id(device_id)
    query = db.session.query(Claim).filter(Claim.device_id == device_id)
    if not include_inactive:
        cutoff = as_naive_utc(resolve_now(now))
        query = query.filter(Claim.redeemed_at.is_(None), Claim.expires_at >= cutoff)
    return query.order_by(Claim.claimed_at.desc(), Claim.id.desc()).all()


def serialize_claim(claim: Claim, now: Optional[datetime] = None) -> dict:
    """Claim plus its derived state and enough deal context for a coupon card."""
    payload = claim.to_dict()
    payload["state"] = claim_state(claim, now)
    deal = claim.deal
    payload["deal"] = {
        "id": deal.id,
        "title": deal.title,
        "merchant_id": deal.merchant_id,
        "business_name": deal.merchant.business_name,
        "address": deal.merchant.address,
    }
    return payload
