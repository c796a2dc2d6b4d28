"""
Audit log - who did what to which record.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.dialects.sqlite import JSON
from sqlalchemy.orm import relationship

from clinicpos.db.base import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)

    # Empty for system jobs
    user_id = Column(Integer, ForeignKey("users.id"), index=True)

    # create / update / delete / login / cancel / refund / adjust / email / bulk / expire
    action = Column(String(20), nullable=False, index=True)

    # user / patient / supplier / product / blend_template / bundle / transaction / refund / inventory
    resource_type = Column(String(50), nullable=False, index=True)
    resource_id = Column(Integer, index=True)
    resource_name = Column(String(100), comment="Number or name, for display")
    description = Column(String(500))

    old_value = Column(JSON)
    new_value = Column(JSON)
    ip_address = Column(String(50))

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    user = relationship("User", foreign_keys=[user_id], lazy="joined")

    def __repr__(self):
        return f"<AuditLog {self.action} {self.resource_type}:{self.resource_id}>"

    @property
    def action_display(self) -> str:
        action_map = {
            "create": "Create",
            "update": "Update",
            "delete": "Delete",
            "login": "Login",
            "cancel": "Cancel",
            "refund": "Refund",
            "adjust": "Adjust",
            "restock": "Restock",
            "email": "Email",
            "bulk": "Bulk Update",
            "expire": "Expire",
        }
        return action_map.get(self.action, self.action)
