"""Deal lifecycle: validity windows, owner edits, confirmation and derived state."""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import NOW
from dangol.errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from dangol.extensions import db
from dangol.models import Deal
from dangol.services import claim_service, deal_service
from dangol.services.deal_service import ValidityWindow, create_deal, deal_state, serialize_deal
from dangol.time_utils import to_utc_z


KST = timezone(timedelta(hours=9))


# =============================================================================
# VALIDITY WINDOWS
# =============================================================================

def test_zero_duration_rejected():
    with pytest.raises(ValidationError):
        ValidityWindow.from_duration(0, 0)


@pytest.mark.parametrize("hours,minutes", [(24, 0), (-1, 30), (0, 60), (1.5, 0)])
def test_duration_out_of_range(hours, minutes):
    with pytest.raises(ValidationError):
        ValidityWindow.from_duration(hours, minutes)


def test_one_minute_duration_expires_one_minute_after_creation(db_session, merchant):
    deal = create_deal(merchant.id, "Flash", "One minute only", ValidityWindow.from_duration(0, 1), 5, now=NOW)

    payload = serialize_deal(deal, NOW)
    assert payload["expires_at"] == to_utc_z(NOW + timedelta(minutes=1))
    assert payload["starts_at"] == to_utc_z(NOW)


def test_explicit_window_naive_values_are_local_time(db_session, merchant):
    window = ValidityWindow.between(datetime(2026, 3, 2, 12, 0), datetime(2026, 3, 2, 18, 0))
    deal = create_deal(merchant.id, "Lunch", "Noon to six", window, 5, now=NOW)

    payload = serialize_deal(deal, NOW)
    assert payload["starts_at"] == "2026-03-02T03:00:00Z"
    assert payload["expires_at"] == "2026-03-02T09:00:00Z"


def test_explicit_window_end_before_start(db_session, merchant):
    window = ValidityWindow.between(datetime(2026, 3, 2, 18, 0), datetime(2026, 3, 2, 12, 0))

    with pytest.raises(ValidationError):
        create_deal(merchant.id, "Backwards", "Nope", window, 5, now=NOW)


def test_expiry_must_be_in_the_future(db_session, merchant):
    window = ValidityWindow.between(None, NOW - timedelta(minutes=1))

    with pytest.raises(ValidationError):
        create_deal(merchant.id, "Past", "Too late", window, 5, now=NOW)


def test_stored_frame_follows_deal_id(app, db_session, merchant, monkeypatch):
    end = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    monkeypatch.setitem(app.config, "LEGACY_EXPIRY_CUTOFF_DEAL_ID", 1)
    local = create_deal(merchant.id, "Local", "KST", ValidityWindow.between(None, end), 5, now=NOW)
    monkeypatch.setitem(app.config, "LEGACY_EXPIRY_CUTOFF_DEAL_ID", 10 ** 9)
    legacy = create_deal(merchant.id, "Legacy", "UTC", ValidityWindow.between(None, end), 5, now=NOW)

    db.session.expire_all()
    assert db.session.get(Deal, legacy.id).expires_at == datetime(2026, 3, 2, 9, 0)
    assert db.session.get(Deal, local.id).expires_at == datetime(2026, 3, 2, 18, 0)


# =============================================================================
# CREATE
# =============================================================================

def test_create_defaults(db_session, merchant):
    deal = create_deal(merchant.id, " Coffee ", " Free refill ", ValidityWindow.from_duration(1, 0), now=NOW)

    assert deal.status == "draft"
    assert deal.max_claims == 999
    assert deal.current_claims == 0
    assert deal.title == "Coffee"
    assert deal.description == "Free refill"


@pytest.mark.parametrize("max_claims", [0, -3, "ten", 2.5])
def test_create_rejects_bad_capacity(db_session, merchant, max_claims):
    with pytest.raises(ValidationError):
        create_deal(merchant.id, "Deal", "Desc", ValidityWindow.from_duration(1, 0), max_claims, now=NOW)


def test_create_rejects_blank_title(db_session, merchant):
    with pytest.raises(ValidationError):
        create_deal(merchant.id, "   ", "Desc", ValidityWindow.from_duration(1, 0), 5, now=NOW)


def test_create_for_unknown_merchant(db_session):
    with pytest.raises(NotFoundError):
        create_deal(424242, "Deal", "Desc", ValidityWindow.from_duration(1, 0), 5, now=NOW)


# =============================================================================
# UPDATE / CONFIRM
# =============================================================================

def test_draft_accepts_any_field(db_session, merchant, deal):
    new_end = (NOW + timedelta(hours=5)).astimezone(KST).replace(tzinfo=None)
    updated = deal_service.update_deal(
        deal.id, merchant.id,
        {"title": "Latte 30% off", "description": "Weekdays", "expires_at": new_end.isoformat(), "max_claims": 50},
        now=NOW,
    )

    assert updated.title == "Latte 30% off"
    assert updated.max_claims == 50
    assert serialize_deal(updated, NOW)["expires_at"] == to_utc_z(NOW + timedelta(hours=5))


def test_draft_expiry_must_stay_in_future(db_session, merchant, deal):
    with pytest.raises(ValidationError):
        deal_service.update_deal(deal.id, merchant.id, {"expires_at": "2020-01-01T00:00:00Z"}, now=NOW)


def test_confirmed_deal_only_accepts_quantity(db_session, merchant, deal):
    deal_service.confirm_deal(deal.id, merchant.id)

    with pytest.raises(ValidationError) as excinfo:
        deal_service.update_deal(deal.id, merchant.id, {"title": "Renamed"}, now=NOW)
    assert "max_claims" in str(excinfo.value)

    updated = deal_service.update_deal(deal.id, merchant.id, {"max_claims": 20}, now=NOW)
    assert updated.max_claims == 20
    assert updated.title == "Americano 50% off"


def test_quantity_cannot_drop_below_claims_unless_cancelling(db_session, merchant, make_deal):
    deal = make_deal(merchant, max_claims=5)
    for device in ("a", "b", "c"):
        claim_service.issue_claim(deal.id, f"device-{device}", now=NOW)

    with pytest.raises(ValidationError):
        deal_service.update_deal(deal.id, merchant.id, {"max_claims": 2}, now=NOW)

    assert deal_service.update_deal(deal.id, merchant.id, {"max_claims": 3}, now=NOW).max_claims == 3
    cancelled = deal_service.update_deal(deal.id, merchant.id, {"max_claims": 0}, now=NOW)
    assert cancelled.max_claims == 0
    assert cancelled.current_claims == 3
    assert deal_state(cancelled, NOW) == "exhausted"


def test_update_requires_owner(db_session, make_merchant, make_deal):
    owner = make_merchant()
    intruder = make_merchant()
    deal = make_deal(owner)

    with pytest.raises(UnauthorizedError):
        deal_service.update_deal(deal.id, intruder.id, {"max_claims": 1}, now=NOW)
    with pytest.raises(UnauthorizedError):
        deal_service.confirm_deal(deal.id, intruder.id)


@pytest.mark.parametrize("patch", [{}, {"status": "confirmed"}, {"current_claims": 0}, {"max_claims": -1}])
def test_update_rejects_bad_patch(db_session, merchant, deal, patch):
    with pytest.raises(ValidationError):
        deal_service.update_deal(deal.id, merchant.id, patch, now=NOW)


def test_update_unknown_deal(db_session, merchant):
    with pytest.raises(NotFoundError):
        deal_service.update_deal(999999, merchant.id, {"max_claims": 1}, now=NOW)


def test_confirm_only_from_draft(db_session, merchant, deal):
    confirmed = deal_service.confirm_deal(deal.id, merchant.id)
    assert confirmed.status == "confirmed"

    with pytest.raises(ConflictError):
        deal_service.confirm_deal(deal.id, merchant.id)


# =============================================================================
# DERIVED STATE
# =============================================================================

def test_deal_states(db_session, merchant, make_deal):
    draft = make_deal(merchant)
    assert deal_state(draft, NOW) == "draft"

    deal_service.confirm_deal(draft.id, merchant.id)
    assert deal_state(draft, NOW) == "active"
    assert deal_state(draft, NOW + timedelta(hours=3)) == "expired"

    future = create_deal(
        merchant.id, "Tomorrow", "Opens later",
        ValidityWindow.between(NOW + timedelta(days=1), NOW + timedelta(days=1, hours=2)),
        5, now=NOW,
    )
    deal_service.confirm_deal(future.id, merchant.id)
    assert deal_state(future, NOW) == "confirmed"

    full = make_deal(merchant, max_claims=1)
    claim_service.issue_claim(full.id, "device-a", now=NOW)
    db.session.expire_all()
    assert deal_state(db.session.get(Deal, full.id), NOW) == "exhausted"


def test_list_merchant_deals_newest_first(db_session, make_merchant, make_deal):
    owner = make_merchant()
    other = make_merchant()
    first = make_deal(owner, title="First")
    second = make_deal(owner, title="Second")
    make_deal(other)

    assert [d.id for d in deal_service.list_merchant_deals(owner.id)] == [second.id, first.id]
