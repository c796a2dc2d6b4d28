"""Patient schemas"""

from datetime import date, datetime
from typing import Optional, List, Dict

from pydantic import BaseModel, Field

TIER_PATTERN = "^(standard|silver|gold|platinum|vip)$"
GENDER_PATTERN = "^(male|female|other|prefer-not-to-say)$"


class MembershipUpdate(BaseModel):
    membership_tier: Optional[str] = Field(None, pattern=TIER_PATTERN)
    discount_percentage: Optional[float] = Field(None, ge=0, le=100)
    discount_reason: Optional[str] = Field(None, max_length=200)
    discount_start_date: Optional[datetime] = None
    discount_end_date: Optional[datetime] = None


class PatientBase(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    middle_name: Optional[str] = Field(None, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    nric: Optional[str] = Field(None, max_length=20)
    date_of_birth: Optional[date] = None
    gender: Optional[str] = Field(None, pattern=GENDER_PATTERN)
    email: Optional[str] = Field(None, max_length=120)
    phone: Optional[str] = Field(None, max_length=30)
    address: Optional[str] = Field(None, max_length=255)
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    status: str = Field(default="active", pattern="^(active|inactive)$")
    has_consent: bool = False
    legacy_customer_no: Optional[str] = None
    notes: Optional[str] = None


class PatientCreate(PatientBase, MembershipUpdate):
    pass


class PatientUpdate(MembershipUpdate):
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    middle_name: Optional[str] = None
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    nric: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[str] = Field(None, pattern=GENDER_PATTERN)
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    status: Optional[str] = Field(None, pattern="^(active|inactive)$")
    has_consent: Optional[bool] = None
    legacy_customer_no: Optional[str] = None
    notes: Optional[str] = None


class PatientResponse(PatientBase):
    id: int
    full_name: str
    membership_tier: str
    discount_percentage: float
    discount_reason: Optional[str] = None
    discount_start_date: Optional[datetime] = None
    discount_end_date: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PatientListResponse(BaseModel):
    data: List[PatientResponse]
    total: int
    page: int
    limit: int


class PatientStats(BaseModel):
    total: int
    by_status: Dict[str, int]
    by_tier: Dict[str, int]
    with_active_discount: int


class BulkMembershipUpdate(BaseModel):
    patient_ids: List[int] = Field(..., min_length=1)
    membership_tier: str = Field(..., pattern=TIER_PATTERN)
    discount_percentage: Optional[float] = Field(None, ge=0, le=100)
