"""
Patient (customer) records with membership benefits.

Membership discount is a flat percentage the patient may receive on
eligible items; it can be time boxed with start/end dates.
"""

from datetime import datetime
from decimal import Decimal
from sqlalchemy import Column, Integer, String, Boolean, Date, DateTime, Text, DECIMAL

from clinicpos.db.base import Base

MEMBERSHIP_TIERS = ["standard", "silver", "gold", "platinum", "vip"]
GENDERS = ["male", "female", "other", "prefer-not-to-say"]


class Patient(Base):
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(100), nullable=False, index=True)
    middle_name = Column(String(100))
    last_name = Column(String(100), nullable=False, index=True)
    nric = Column(String(20), unique=True, index=True, comment="National ID, optional")
    date_of_birth = Column(Date)
    gender = Column(String(20), comment="male/female/other/prefer-not-to-say")
    email = Column(String(120), index=True)
    phone = Column(String(30), index=True)
    address = Column(String(255))
    city = Column(String(100))
    state = Column(String(100))
    postal_code = Column(String(20))
    status = Column(String(20), nullable=False, default="active", index=True, comment="active/inactive")
    has_consent = Column(Boolean, default=False)
    legacy_customer_no = Column(String(50), index=True)
    notes = Column(Text)

    # Membership benefits
    membership_tier = Column(String(20), nullable=False, default="standard", index=True)
    discount_percentage = Column(DECIMAL(5, 2), nullable=False, default=Decimal("0.00"))
    discount_reason = Column(String(200))
    discount_start_date = Column(DateTime)
    discount_end_date = Column(DateTime)

    created_by = Column(Integer)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<Patient {self.id} {self.full_name}>"

    @property
    def full_name(self) -> str:
        parts = [self.first_name, self.middle_name, self.last_name]
        return " ".join(p for p in parts if p)

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def active_discount_percentage(self, at: datetime = None) -> Decimal:
        """Membership discount in force at `at` (now by default), 0 outside the window"""
        at = at or datetime.utcnow()
        if self.discount_start_date and at < self.discount_start_date:
            return Decimal("0")
        if self.discount_end_date and at > self.discount_end_date:
            return Decimal("0")
        return Decimal(self.discount_percentage or 0)
