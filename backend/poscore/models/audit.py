from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class AuditLog(db.Model):
    """
    Who did what, when. Written after the business transaction committed,
    so a row here always describes something that really happened (or a
    rejected attempt when success is False).
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_business_created", "business_id", "created_at"),
        db.Index("ix_audit_logs_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    action = db.Column(db.String(64), nullable=False, index=True)
    entity_type = db.Column(db.String(32), nullable=True)
    entity_id = db.Column(db.Integer, nullable=True)
    success = db.Column(db.Boolean, nullable=False, default=True)
    reason = db.Column(db.Text, nullable=True)
    details = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "user_id": self.user_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "success": self.success,
            "reason": self.reason,
            "details": self.details,
            "created_at": to_utc_z(self.created_at),
        }


class RiskAlert(db.Model):
    """Flag raised for an owner to review (cash variance, negative margin)."""
    __tablename__ = "risk_alerts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    alert_type = db.Column(db.String(32), nullable=False, index=True)
    severity = db.Column(db.String(16), nullable=False, default="MEDIUM")
    message = db.Column(db.String(255), nullable=False)
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)
    details = db.Column(db.JSON, nullable=True)
    is_acknowledged = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "store_id": self.store_id,
            "user_id": self.user_id,
            "alert_type": self.alert_type,
            "severity": self.severity,
            "message": self.message,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "details": self.details,
            "is_acknowledged": self.is_acknowledged,
            "created_at": to_utc_z(self.created_at),
        }
