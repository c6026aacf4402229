"""Merchant directory and address labels."""

import pytest

from conftest import NOW
from dangol.errors import ConflictError, NotFoundError, ValidationError
from dangol.services import claim_service, merchant_service
from dangol.services.merchant_service import summarize_address


def test_create_and_get(db_session):
    merchant = merchant_service.create_merchant(
        business_name="Dangol Bakery",
        address="서울시 마포구 서교동 와우산로 21",
        latitude="37.5509",
        longitude=126.9227,
        email="Owner@Bakery.KR",
        phone="02-123-4567",
    )

    fetched = merchant_service.get_merchant(merchant.id)
    assert fetched.business_name == "Dangol Bakery"
    assert fetched.latitude == pytest.approx(37.5509)
    assert fetched.email == "owner@bakery.kr"


def test_duplicate_email_conflicts(db_session, merchant):
    with pytest.raises(ConflictError):
        merchant_service.create_merchant(
            business_name="Copy", address="somewhere", latitude=0, longitude=0, email=merchant.email,
        )


@pytest.mark.parametrize("lat,lng", [(90.5, 0), (0, 180.5), ("north", 0)])
def test_invalid_coordinates(db_session, lat, lng):
    with pytest.raises(ValidationError):
        merchant_service.create_merchant(
            business_name="Nowhere", address="-", latitude=lat, longitude=lng, email="x@y.z",
        )


def test_get_unknown_merchant(db_session):
    with pytest.raises(NotFoundError):
        merchant_service.get_merchant(123456)


def test_location_frozen_once_claimed(db_session, merchant, deal):
    moved = merchant_service.update_merchant_location(merchant.id, 37.57, 126.98)
    assert moved.latitude == pytest.approx(37.57)

    claim_service.issue_claim(deal.id, "device-a", now=NOW)

    with pytest.raises(ConflictError):
        merchant_service.update_merchant_location(merchant.id, 37.58, 126.99)


def test_move_command_refuses_once_claimed(app, db_session, merchant, deal):
    runner = app.test_cli_runner()

    moved = runner.invoke(args=[
        "merchants", "move", "--merchant-id", str(merchant.id), "--lat", "37.57", "--lng", "126.98",
    ])
    assert moved.exit_code == 0
    assert "PASS Moved Dangol Cafe" in moved.output
    assert merchant_service.get_merchant(merchant.id).latitude == pytest.approx(37.57)

    claim_service.issue_claim(deal.id, "device-a", now=NOW)

    refused = runner.invoke(args=[
        "merchants", "move", "--merchant-id", str(merchant.id), "--lat", "37.58", "--lng", "126.99",
    ])
    assert refused.exit_code == 1
    assert "FAIL" in refused.output
    assert merchant_service.get_merchant(merchant.id).latitude == pytest.approx(37.57)


def test_move_command_unknown_merchant(app, db_session):
    result = app.test_cli_runner().invoke(args=[
        "merchants", "move", "--merchant-id", "999999", "--lat", "37.5", "--lng", "127.0",
    ])
    assert result.exit_code == 1
    assert "FAIL Merchant 999999 not found" in result.output


@pytest.mark.parametrize("address,label", [
    ("서울특별시 강남구 역삼동 123-45", "역삼동"),
    ("서울시 서초구 서초동 서초대로 123", "서초동 서초대로"),
    ("부산광역시 해운대구 우동 중동로 456", "우동 중동로"),
    ("대구광역시 중구 동성로 123", "동성로"),
    ("서울 마포구 홍대입구역 2번 출구", "출구"),
    ("", ""),
    (None, ""),
])
def test_summarize_address(address, label):
    assert summarize_address(address) == label
