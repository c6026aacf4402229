from __future__ import annotations

from ..extensions import db
from dangol.time_utils import to_utc_z


class Deal(db.Model):
    """
    Time-bounded, capacity-limited offer published by a merchant.

    starts_at/expires_at hold naive values whose frame depends on the deal id
    (legacy rows are UTC, later rows are deal-timezone wall clock); always read
    them through expiry_service.

    max_claims = 0 is a cancellation and the only case where current_claims may
    exceed max_claims.
    """
    __tablename__ = "deals"
    __table_args__ = (
        db.CheckConstraint("current_claims >= 0", name="ck_deals_current_claims_nonneg"),
        db.CheckConstraint("max_claims >= 0", name="ck_deals_max_claims_nonneg"),
        db.CheckConstraint(
            "current_claims <= max_claims OR max_claims = 0",
            name="ck_deals_capacity",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    merchant_id = db.Column(db.Integer, db.ForeignKey("merchants.id"), nullable=False, index=True)

    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False)

    starts_at = db.Column(db.DateTime, nullable=True)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)

    max_claims = db.Column(db.Integer, nullable=False, default=999)
    current_claims = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="draft", index=True)  # draft, confirmed

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    merchant = db.relationship("Merchant", back_populates="deals")
    claims = db.relationship("Claim", back_populates="deal", lazy="dynamic")

    def __repr__(self) -> str:
        return f"<Deal id={self.id} {self.current_claims}/{self.max_claims} {self.status}>"

    @property
    def remaining_claims(self) -> int:
        return max(self.max_claims - self.current_claims, 0)

    def to_dict(self):
        return {
            "id": self.id,
            "merchant_id": self.merchant_id,
            "title": self.title,
            "description": self.description,
            "max_claims": self.max_claims,
            "current_claims": self.current_claims,
            "remaining_claims": self.remaining_claims,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Claim(db.Model):
    """
    A device's reservation against a deal, materialized as a single-use code.

    All timestamps are naive UTC. There is no status column: a claim is
    redeemed when redeemed_at is set, expired when expires_at has passed.
    """
    __tablename__ = "claims"
    __table_args__ = (
        db.UniqueConstraint("deal_id", "device_id", name="uq_claims_deal_device"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    deal_id = db.Column(db.Integer, db.ForeignKey("deals.id"), nullable=False, index=True)
    device_id = db.Column(db.String(255), nullable=False, index=True)

    claim_code = db.Column(db.String(6), nullable=False, unique=True, index=True)

    claimed_at = db.Column(db.DateTime, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    redeemed_at = db.Column(db.DateTime, nullable=True)

    deal = db.relationship("Deal", back_populates="claims")

    def __repr__(self) -> str:
        return f"<Claim {self.claim_code} deal={self.deal_id} device={self.device_id!r}>"

    def to_dict(self):
        return {
            "id": self.id,
            "deal_id": self.deal_id,
            "device_id": self.device_id,
            "claim_code": self.claim_code,
            "claimed_at": to_utc_z(self.claimed_at),
            "expires_at": to_utc_z(self.expires_at),
            "redeemed_at": to_utc_z(self.redeemed_at),
        }
