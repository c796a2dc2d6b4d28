from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text

from clinicpos.db.base import Base


class Supplier(Base):
    """Product supplier"""
    __tablename__ = "suppliers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(150), nullable=False, unique=True, index=True)
    code = Column(String(30), index=True)
    email = Column(String(120))
    phone = Column(String(30))
    contact_person = Column(String(100))
    address = Column(String(255))
    city = Column(String(100))
    postal_code = Column(String(20))
    country = Column(String(2), nullable=False, default="SG")
    # manufacturer / distributor / wholesaler / retailer / service_provider
    business_type = Column(String(30))
    tax_id = Column(String(50))
    is_active = Column(Boolean, nullable=False, default=True)
    notes = Column(Text)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<Supplier {self.name}>"

    @property
    def business_type_display(self) -> str:
        type_map = {
            "manufacturer": "Manufacturer",
            "distributor": "Distributor",
            "wholesaler": "Wholesaler",
            "retailer": "Retailer",
            "service_provider": "Service Provider",
        }
        return type_map.get(self.business_type, self.business_type or "")
