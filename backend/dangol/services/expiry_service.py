# Overview: Single authority for "has this deal/claim passed its deadline".

"""
Expiry resolution for deals and claims.

WHY: Deal deadlines were historically stored in two representations. Deals
with an id below LEGACY_EXPIRY_CUTOFF_DEAL_ID hold naive UTC values; deals at
or above it hold naive wall-clock values in the deal timezone (KST). Every
comparison here converts the stored value to an aware instant first, then
compares in the deal timezone, so the two frames never mix.

Claims were introduced after the change and always store naive UTC.

The cutoff branch should eventually be retired by a one-time migration that
rewrites legacy rows into the wall-clock representation (see
`flask deals legacy-report`).

All functions are pure: they read the entity and the given instant and never
touch the session.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from flask import current_app, has_app_context

from ..models import Claim, Deal
from ..time_utils import (
    as_utc,
    deal_timezone,
    local_wall_clock_to_utc,
    resolve_now,
    utc_to_local_wall_clock,
)


# First deal id stored in deal-timezone wall clock. Lower ids are naive UTC.
LEGACY_EXPIRY_CUTOFF_DEAL_ID = 21


def legacy_cutoff_deal_id() -> int:
    if has_app_context():
        return current_app.config.get("LEGACY_EXPIRY_CUTOFF_DEAL_ID", LEGACY_EXPIRY_CUTOFF_DEAL_ID)
    return LEGACY_EXPIRY_CUTOFF_DEAL_ID


def uses_legacy_representation(deal_id: Optional[int]) -> bool:
    # Unflushed deals get an id above every legacy row.
    return deal_id is not None and deal_id < legacy_cutoff_deal_id()


def decode_deal_time(deal_id: Optional[int], stored: Optional[datetime]) -> Optional[datetime]:
    """Stored deal timestamp -> aware UTC instant."""
    if stored is None:
        return None
    if stored.tzinfo is not None:
        return as_utc(stored)
    if uses_legacy_representation(deal_id):
        return as_utc(stored)
    return local_wall_clock_to_utc(stored, deal_timezone())


def encode_deal_time(deal_id: Optional[int], instant: Optional[datetime]) -> Optional[datetime]:
    """Aware instant -> naive value in the representation used for this deal id."""
    if instant is None:
        return None
    if uses_legacy_representation(deal_id):
        return as_utc(instant).replace(tzinfo=None)
    return utc_to_local_wall_clock(instant, deal_timezone())


def deal_deadline(deal: Deal) -> datetime:
    return decode_deal_time(deal.id, deal.expires_at)


def deal_start(deal: Deal) -> Optional[datetime]:
    return decode_deal_time(deal.id, deal.starts_at)


def is_deal_expired(deal: Deal, now: Optional[datetime] = None) -> bool:
    """A deal stays claimable up to and including its deadline."""
    tz = deal_timezone()
    deadline = deal_deadline(deal).astimezone(tz)
    current = resolve_now(now).astimezone(tz)
    return current > deadline


def is_claim_expired(claim: Claim, now: Optional[datetime] = None) -> bool:
    """A claim is redeemable until exactly claimed_at + window."""
    return resolve_now(now) > as_utc(claim.expires_at)


def is_expired(entity, now: Optional[datetime] = None) -> bool:
    if isinstance(entity, Deal):
        return is_deal_expired(entity, now)
    if isinstance(entity, Claim):
        return is_claim_expired(entity, now)
    raise TypeError(f"Cannot resolve expiry for {type(entity).__name__}")


def time_remaining(entity, now: Optional[datetime] = None) -> timedelta:
    """Time left before expiry; zero once expired."""
    if isinstance(entity, Deal):
        deadline = deal_deadline(entity)
    else:
        deadline = as_utc(entity.expires_at)
    remaining = deadline - resolve_now(now)
    return max(remaining, timedelta(0))
