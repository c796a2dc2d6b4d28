"""Audit log API"""

from typing import Any, Optional
from datetime import datetime
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from clinicpos.core.deps import get_db, require_roles
from clinicpos.core.errors import ValidationError
from clinicpos.models.audit_log import AuditLog
from clinicpos.models.user import User
from clinicpos.schemas.audit_log import AuditLogResponse, AuditLogListResponse

router = APIRouter()


def build_log_response(log: AuditLog) -> AuditLogResponse:
    return AuditLogResponse(
        id=log.id,
        user_id=log.user_id,
        action=log.action,
        resource_type=log.resource_type,
        resource_id=log.resource_id,
        resource_name=log.resource_name,
        description=log.description,
        old_value=log.old_value,
        new_value=log.new_value,
        ip_address=log.ip_address,
        created_at=log.created_at,
        action_display=log.action_display,
        username=log.user.username if log.user else ""
    )


def parse_date_param(value: str, field: str) -> datetime:
    try:
        return datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        raise ValidationError(f"{field} must be YYYY-MM-DD")


@router.get("/", response_model=AuditLogListResponse)
async def list_logs(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles("admin")),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    action: Optional[str] = Query(None),
    resource_type: Optional[str] = Query(None),
    user_id: Optional[int] = Query(None),
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None)) -> Any:
    """List audit logs, newest first"""
    query = select(AuditLog)

    conditions = []
    if action:
        conditions.append(AuditLog.action == action)
    if resource_type:
        conditions.append(AuditLog.resource_type == resource_type)
    if user_id:
        conditions.append(AuditLog.user_id == user_id)
    if start_date:
        conditions.append(AuditLog.created_at >= parse_date_param(start_date, "start_date"))
    if end_date:
        # Inclusive of the whole end day
        end = parse_date_param(end_date, "end_date").replace(hour=23, minute=59, second=59)
        conditions.append(AuditLog.created_at <= end)

    if conditions:
        query = query.where(and_(*conditions))

    count_query = select(func.count(AuditLog.id))
    if conditions:
        count_query = count_query.where(and_(*conditions))
    total_result = await db.execute(count_query)
    total = total_result.scalar() or 0

    query = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
    query = query.offset((page - 1) * limit).limit(limit)

    result = await db.execute(query)
    logs = result.scalars().all()

    return AuditLogListResponse(
        data=[build_log_response(log) for log in logs],
        total=total,
        page=page,
        limit=limit
    )


def client_ip(request: Optional[Request]) -> Optional[str]:
    if request is None or request.client is None:
        return None
    return request.client.host


async def create_audit_log(
    db: AsyncSession,
    user_id: Optional[int],
    action: str,
    resource_type: str,
    resource_id: Optional[int] = None,
    resource_name: Optional[str] = None,
    description: Optional[str] = None,
    old_value: Optional[dict] = None,
    new_value: Optional[dict] = None,
    ip_address: Optional[str] = None) -> AuditLog:
    """Add an audit log row to the session; the caller commits"""
    log = AuditLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        resource_name=resource_name,
        description=description,
        old_value=old_value,
        new_value=new_value,
        ip_address=ip_address
    )
    db.add(log)
    return log
