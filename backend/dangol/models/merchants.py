from __future__ import annotations

from ..extensions import db
from dangol.time_utils import to_utc_z


class Merchant(db.Model):
    """
    A business that publishes deals.

    Location drives every proximity query; it is frozen once any of the
    merchant's deals has been claimed (see merchant_service).
    """
    __tablename__ = "merchants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    business_name = db.Column(db.String(255), nullable=False)
    address = db.Column(db.Text, nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=False, unique=True)

    latitude = db.Column(db.Float, nullable=False, index=True)
    longitude = db.Column(db.Float, nullable=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    deals = db.relationship("Deal", back_populates="merchant", lazy="dynamic")

    def __repr__(self) -> str:
        return f"<Merchant id={self.id} name={self.business_name!r}>"

    def to_dict(self):
        return {
            "id": self.id,
            "business_name": self.business_name,
            "address": self.address,
            "phone": self.phone,
            "email": self.email,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "created_at": to_utc_z(self.created_at),
        }
