"""Patient API"""

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from clinicpos.api.api_v1.endpoints.audit_logs import create_audit_log
from clinicpos.core.deps import get_db, get_current_user, require_roles
from clinicpos.core.errors import ConflictError, NotFoundError, ValidationError
from clinicpos.models.patient import Patient
from clinicpos.models.transaction import Transaction
from clinicpos.models.user import User
from clinicpos.schemas.patient import (
    PatientCreate, PatientUpdate, PatientResponse, PatientListResponse,
    PatientStats, MembershipUpdate, BulkMembershipUpdate
)
from clinicpos.services.transaction_utils import to_utc_naive

router = APIRouter()

MEMBERSHIP_FIELDS = ("membership_tier", "discount_percentage", "discount_reason",
                     "discount_start_date", "discount_end_date")


def _normalize(data: dict) -> dict:
    if data.get("nric") == "":
        data["nric"] = None
    if data.get("nric"):
        data["nric"] = data["nric"].strip().upper()
    if data.get("email"):
        data["email"] = data["email"].strip().lower()
    return {k: to_utc_naive(v) for k, v in data.items()}


def _check_discount_window(patient: Patient) -> None:
    if patient.discount_start_date and patient.discount_end_date \
            and patient.discount_end_date < patient.discount_start_date:
        raise ValidationError("discount_end_date must be after discount_start_date")


async def _ensure_unique_nric(db: AsyncSession, nric: Optional[str], exclude_id: int = None) -> None:
    if not nric:
        return
    query = select(Patient.id).where(Patient.nric == nric)
    if exclude_id:
        query = query.where(Patient.id != exclude_id)
    if (await db.execute(query)).scalar() is not None:
        raise ConflictError("A patient with this NRIC already exists")


async def _get_patient(db: AsyncSession, patient_id: int) -> Patient:
    patient = await db.get(Patient, patient_id)
    if not patient:
        raise NotFoundError("Patient")
    return patient


@router.get("/", response_model=PatientListResponse)
async def list_patients(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None, description="Name, email, phone or NRIC"),
    status: Optional[str] = Query(None),
    membership_tier: Optional[str] = Query(None)) -> Any:
    """List patients"""
    query = select(Patient)

    conditions = []
    if search:
        pattern = f"%{search.strip()}%"
        conditions.append(or_(
            Patient.first_name.ilike(pattern),
            Patient.middle_name.ilike(pattern),
            Patient.last_name.ilike(pattern),
            (Patient.first_name + " " + Patient.last_name).ilike(pattern),
            Patient.email.ilike(pattern),
            Patient.phone.ilike(pattern),
            Patient.nric.ilike(pattern),
            Patient.legacy_customer_no.ilike(pattern)
        ))
    if status:
        conditions.append(Patient.status == status)
    if membership_tier:
        conditions.append(Patient.membership_tier == membership_tier)

    if conditions:
        query = query.where(and_(*conditions))

    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar() or 0

    query = query.order_by(Patient.last_name, Patient.first_name, Patient.id)
    query = query.offset((page - 1) * limit).limit(limit)
    patients = (await db.execute(query)).scalars().all()

    return PatientListResponse(
        data=[PatientResponse.model_validate(p) for p in patients],
        total=total,
        page=page,
        limit=limit
    )


@router.get("/stats", response_model=PatientStats)
async def patient_stats(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)) -> Any:
    """Counts by status and membership tier"""
    by_status = dict((await db.execute(
        select(Patient.status, func.count(Patient.id)).group_by(Patient.status)
    )).all())
    by_tier = dict((await db.execute(
        select(Patient.membership_tier, func.count(Patient.id)).group_by(Patient.membership_tier)
    )).all())

    now = datetime.utcnow()
    with_discount = (await db.execute(
        select(func.count(Patient.id)).where(and_(
            Patient.discount_percentage > 0,
            or_(Patient.discount_start_date.is_(None), Patient.discount_start_date <= now),
            or_(Patient.discount_end_date.is_(None), Patient.discount_end_date >= now),
        ))
    )).scalar() or 0

    return PatientStats(
        total=sum(by_status.values()),
        by_status=by_status,
        by_tier=by_tier,
        with_active_discount=with_discount
    )


@router.post("/bulk/membership")
async def bulk_update_membership(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles("admin", "manager")),
    bulk_in: BulkMembershipUpdate) -> Any:
    """Set the membership tier (and optionally discount) of many patients"""
    result = await db.execute(select(Patient).where(Patient.id.in_(bulk_in.patient_ids)))
    patients = result.scalars().all()
    found = {p.id for p in patients}

    for patient in patients:
        patient.membership_tier = bulk_in.membership_tier
        if bulk_in.discount_percentage is not None:
            patient.discount_percentage = bulk_in.discount_percentage
        patient.updated_at = datetime.utcnow()

    await create_audit_log(
        db, current_user.id, "bulk", "patient",
        description=f"Set membership {bulk_in.membership_tier} for {len(patients)} patient(s)",
        new_value=bulk_in.model_dump())
    await db.commit()
    return {
        "updated": len(patients),
        "not_found": [pid for pid in bulk_in.patient_ids if pid not in found]
    }


@router.post("/", response_model=PatientResponse, status_code=201)
async def create_patient(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    patient_in: PatientCreate) -> Any:
    """Create a patient"""
    data = _normalize(patient_in.model_dump())
    await _ensure_unique_nric(db, data.get("nric"))

    if data.get("membership_tier") is None:
        data["membership_tier"] = "standard"
    if data.get("discount_percentage") is None:
        data["discount_percentage"] = 0

    patient = Patient(**data, created_by=current_user.id)
    _check_discount_window(patient)
    db.add(patient)
    await db.flush()

    await create_audit_log(
        db, current_user.id, "create", "patient",
        resource_id=patient.id,
        resource_name=patient.full_name)
    await db.commit()
    await db.refresh(patient)
    return PatientResponse.model_validate(patient)


@router.get("/{patient_id}", response_model=PatientResponse)
async def get_patient(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    patient_id: int) -> Any:
    """Patient detail"""
    return PatientResponse.model_validate(await _get_patient(db, patient_id))


@router.put("/{patient_id}", response_model=PatientResponse)
async def update_patient(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    patient_id: int,
    patient_in: PatientUpdate) -> Any:
    """Update a patient"""
    patient = await _get_patient(db, patient_id)
    update_data = _normalize(patient_in.model_dump(exclude_unset=True))
    if "nric" in update_data:
        await _ensure_unique_nric(db, update_data["nric"], exclude_id=patient.id)

    for field, value in update_data.items():
        setattr(patient, field, value)
    _check_discount_window(patient)
    patient.updated_at = datetime.utcnow()

    await create_audit_log(
        db, current_user.id, "update", "patient",
        resource_id=patient.id,
        resource_name=patient.full_name,
        new_value=patient_in.model_dump(exclude_unset=True, mode="json"))
    await db.commit()
    await db.refresh(patient)
    return PatientResponse.model_validate(patient)


@router.put("/{patient_id}/membership", response_model=PatientResponse)
async def update_membership(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles("admin", "manager")),
    patient_id: int,
    membership_in: MembershipUpdate) -> Any:
    """Update the membership tier and discount block"""
    patient = await _get_patient(db, patient_id)
    update_data = _normalize(membership_in.model_dump(exclude_unset=True))

    old_value = {
        "membership_tier": patient.membership_tier,
        "discount_percentage": float(patient.discount_percentage or 0),
    }
    for field in MEMBERSHIP_FIELDS:
        if field in update_data:
            value = update_data[field]
            if field == "discount_percentage" and value is None:
                value = 0
            if field == "membership_tier" and value is None:
                value = "standard"
            setattr(patient, field, value)
    _check_discount_window(patient)
    patient.updated_at = datetime.utcnow()

    await create_audit_log(
        db, current_user.id, "update", "patient",
        resource_id=patient.id,
        resource_name=patient.full_name,
        description="Updated membership",
        old_value=old_value,
        new_value=membership_in.model_dump(exclude_unset=True, mode="json"))
    await db.commit()
    await db.refresh(patient)
    return PatientResponse.model_validate(patient)


@router.delete("/{patient_id}")
async def delete_patient(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles("admin", "manager")),
    patient_id: int) -> Any:
    """Delete a patient with no transactions"""
    patient = await _get_patient(db, patient_id)

    txn_count = (await db.execute(
        select(func.count(Transaction.id)).where(Transaction.customer_id == patient.id)
    )).scalar() or 0
    if txn_count:
        raise ConflictError(
            f"Patient has {txn_count} transaction(s) and cannot be deleted; set status to inactive instead"
        )

    await create_audit_log(
        db, current_user.id, "delete", "patient",
        resource_id=patient.id,
        resource_name=patient.full_name)
    await db.delete(patient)
    await db.commit()
    return {"message": "Patient deleted successfully"}
