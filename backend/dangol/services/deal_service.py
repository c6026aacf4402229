# Overview: Deal lifecycle; creation, owner edits, confirmation and derived state.

"""
Deal Lifecycle Service

WHY: Merchants publish deals as drafts, confirm them, and may keep tuning the
quantity afterwards. Everything about a deal's validity window is computed
here so that no relative duration is ever persisted.

LIFECYCLE:
- draft: every field may change (expires_at must stay in the future)
- confirmed: only max_claims may change
- active / expired / exhausted are derived at read time, never stored

Draft deals are claimable. Confirmation only narrows what the merchant may edit.

max_claims = 0 is a cancellation: it is the only value allowed below
current_claims and it stops further claims immediately.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from flask import current_app

from ..errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from ..extensions import db
from ..models import Deal, Merchant
from ..time_utils import local_wall_clock_to_utc, resolve_now, to_utc_z
from ..validation import (
    ModelValidationPolicy,
    coerce_int,
    enforce_rules_deal_capacity,
    validate_payload,
)
from .concurrency import lock_for_update, run_with_retry
from .expiry_service import (
    deal_deadline,
    deal_start,
    encode_deal_time,
    is_deal_expired,
)


DEAL_STATUS_DRAFT = "draft"
DEAL_STATUS_CONFIRMED = "confirmed"

DEAL_STATE_DRAFT = "draft"
DEAL_STATE_CONFIRMED = "confirmed"
DEAL_STATE_ACTIVE = "active"
DEAL_STATE_EXPIRED = "expired"
DEAL_STATE_EXHAUSTED = "exhausted"

DEAL_TEXT_POLICY = ModelValidationPolicy(
    writable_fields={"title", "description"},
    required_on_create={"title", "description"},
)

DEAL_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"title", "description", "starts_at", "expires_at", "max_claims"},
)

CONFIRMED_EDITABLE_FIELDS = {"max_claims"}


# =============================================================================
# VALIDITY WINDOW
# =============================================================================

def _as_instant(value: datetime) -> datetime:
    """Naive input is deal-local wall clock; aware input is an absolute instant."""
    return local_wall_clock_to_utc(value)


@dataclass(frozen=True)
class ValidityWindow:
    """
    Either an explicit (starts_at, expires_at) pair or a legacy duration
    anchored to the moment of creation.
    """
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    hours: Optional[int] = None
    minutes: Optional[int] = None

    @classmethod
    def between(cls, starts_at: Optional[datetime], expires_at: datetime) -> "ValidityWindow":
        if expires_at is None:
            raise ValidationError("expires_at is required")
        return cls(starts_at=starts_at, expires_at=expires_at)

    @classmethod
    def from_duration(cls, hours, minutes) -> "ValidityWindow":
        hours = coerce_int("hours", 0 if hours is None else hours)
        minutes = coerce_int("minutes", 0 if minutes is None else minutes)
        if not 0 <= hours <= 23:
            raise ValidationError("hours must be between 0 and 23")
        if not 0 <= minutes <= 59:
            raise ValidationError("minutes must be between 0 and 59")
        if hours == 0 and minutes == 0:
            raise ValidationError("Duration must be at least one minute")
        return cls(hours=hours, minutes=minutes)

    @property
    def is_duration(self) -> bool:
        return self.expires_at is None

    def resolve(self, now: Optional[datetime] = None) -> tuple[datetime, datetime]:
        """Absolute (start, end) as aware UTC instants."""
        current = resolve_now(now)
        if self.is_duration:
            return current, current + timedelta(hours=self.hours, minutes=self.minutes)

        end = _as_instant(self.expires_at)
        start = _as_instant(self.starts_at) if self.starts_at is not None else current
        if end <= start:
            raise ValidationError("expires_at must be after starts_at")
        return start, end


# =============================================================================
# CREATE / UPDATE / CONFIRM
# =============================================================================

def create_deal(
    merchant_id: int,
    title: str,
    description: str,
    window: ValidityWindow,
    max_claims: Optional[int] = None,
    *,
    now: Optional[datetime] = None,
) -> Deal:
    """
    Create a draft deal and schedule the new-deal notification once committed.

    Raises:
        NotFoundError: unknown merchant
        ValidationError: blank text, bad window, capacity < 1
    """
    text = validate_payload(
        model=Deal,
        payload={"title": title, "description": description},
        policy=DEAL_TEXT_POLICY,
        partial=False,
    )

    if max_claims is None:
        max_claims = current_app.config.get("DEFAULT_MAX_CLAIMS", 999)
    max_claims = coerce_int("max_claims", max_claims)
    enforce_rules_deal_capacity(max_claims, allow_zero=False)

    current = resolve_now(now)
    start, end = window.resolve(current)
    if end <= current:
        raise ValidationError("expires_at must be in the future")

    def _op():
        merchant = db.session.get(Merchant, merchant_id)
        if merchant is None:
            raise NotFoundError(f"Merchant {merchant_id} not found")

        deal = Deal(
            merchant_id=merchant_id,
            title=text["title"],
            description=text["description"],
            starts_at=encode_deal_time(None, start),
            expires_at=encode_deal_time(None, end),
            max_claims=max_claims,
            current_claims=0,
            status=DEAL_STATUS_DRAFT,
        )
        db.session.add(deal)
        db.session.flush()

        # The stored frame depends on the id, known only after the insert.
        deal.starts_at = encode_deal_time(deal.id, start)
        deal.expires_at = encode_deal_time(deal.id, end)

        db.session.commit()
        return deal

    deal = run_with_retry(_op)

    from .notification_service import schedule_new_deal_notification
    schedule_new_deal_notification(deal.id, now=current)

    return deal


def _load_owned_deal(deal_id: int, merchant_id: int) -> Deal:
    deal = lock_for_update(db.session.query(Deal).filter_by(id=deal_id)).first()
    if deal is None:
        raise NotFoundError(f"Deal {deal_id} not found")
    if deal.merchant_id != merchant_id:
        raise UnauthorizedError("You do not own this deal")
    return deal


def update_deal(
    deal_id: int,
    merchant_id: int,
    patch: dict,
    *,
    now: Optional[datetime] = None,
) -> Deal:
    """
    Apply an owner edit to a deal.

    Concurrent claims bump the deal's version, so an edit racing a claim is
    re-read and re-validated instead of overwriting the counter.

    Raises:
        NotFoundError, UnauthorizedError, ValidationError
    """
    if not patch:
        raise ValidationError("Nothing to update")
    changes = validate_payload(model=Deal, payload=patch, policy=DEAL_UPDATE_POLICY, partial=True)
    current = resolve_now(now)

    def _op():
        deal = _load_owned_deal(deal_id, merchant_id)

        if deal.status == DEAL_STATUS_CONFIRMED:
            locked = set(changes) - CONFIRMED_EDITABLE_FIELDS
            if locked:
                raise ValidationError("Only max_claims can be changed on a confirmed deal")

        if "max_claims" in changes:
            new_max = changes["max_claims"]
            enforce_rules_deal_capacity(new_max, allow_zero=True)
            if 0 < new_max < deal.current_claims:
                raise ValidationError(
                    f"max_claims cannot be below the {deal.current_claims} claims already issued; "
                    "use 0 to cancel the deal"
                )
            deal.max_claims = new_max

        if "title" in changes:
            deal.title = changes["title"]
        if "description" in changes:
            deal.description = changes["description"]

        if "starts_at" in changes or "expires_at" in changes:
            start = deal_start(deal)
            end = deal_deadline(deal)
            if "starts_at" in changes:
                start = _as_instant(changes["starts_at"]) if changes["starts_at"] is not None else None
            if "expires_at" in changes:
                end = _as_instant(changes["expires_at"])
                if end <= current:
                    raise ValidationError("expires_at must be in the future")
            if start is not None and end <= start:
                raise ValidationError("expires_at must be after starts_at")
            deal.starts_at = encode_deal_time(deal.id, start)
            deal.expires_at = encode_deal_time(deal.id, end)

        db.session.commit()
        return deal

    return run_with_retry(_op)


def confirm_deal(deal_id: int, merchant_id: int) -> Deal:
    """
    Move a draft deal to confirmed.

    Raises:
        NotFoundError, UnauthorizedError
        ConflictError: the deal is not a draft
    """
    def _op():
        deal = _load_owned_deal(deal_id, merchant_id)
        if deal.status != DEAL_STATUS_DRAFT:
            raise ConflictError(f"Deal {deal_id} is already {deal.status}; only drafts can be confirmed")
        deal.status = DEAL_STATUS_CONFIRMED
        db.session.commit()
        return deal

    return run_with_retry(_op)


# =============================================================================
# READS
# =============================================================================

def get_deal(deal_id: int) -> Deal:
    deal = db.session.get(Deal, deal_id)
    if deal is None:
        raise NotFoundError(f"Deal {deal_id} not found")
    return deal


def list_merchant_deals(merchant_id: int) -> list[Deal]:
    return (
        db.session.query(Deal)
        .filter(Deal.merchant_id == merchant_id)
        .order_by(Deal.created_at.desc(), Deal.id.desc())
        .all()
    )


def deal_state(deal: Deal, now: Optional[datetime] = None) -> str:
    if is_deal_expired(deal, now):
        return DEAL_STATE_EXPIRED
    if deal.current_claims >= deal.max_claims:
        return DEAL_STATE_EXHAUSTED
    if deal.status == DEAL_STATUS_DRAFT:
        return DEAL_STATE_DRAFT
    start = deal_start(deal)
    if start is not None and resolve_now(now) < start:
        return DEAL_STATE_CONFIRMED
    return DEAL_STATE_ACTIVE


def serialize_deal(deal: Deal, now: Optional[datetime] = None) -> dict:
    """Deal row plus resolved (UTC) validity window and derived state."""
    payload = deal.to_dict()
    payload["starts_at"] = to_utc_z(deal_start(deal))
    payload["expires_at"] = to_utc_z(deal_deadline(deal))
    payload["state"] = deal_state(deal, now)
    return payload
