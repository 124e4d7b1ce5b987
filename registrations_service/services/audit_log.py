"""
Audit trail helper shared by the registration services.
"""

from typing import Optional

from sqlalchemy.orm import Session

from registrations_service.models.registration import Registration, RegistrationAuditLog


def create_audit_log(
    session: Session,
    registration: Registration,
    action: str,
    field_name: Optional[str] = None,
    old_value: Optional[str] = None,
    new_value: Optional[str] = None,
    changed_by: Optional[str] = None,
    reason: Optional[str] = None
) -> RegistrationAuditLog:
    """Add an audit row for a registration change to the current transaction."""
    audit_log = RegistrationAuditLog(
        registration_id=registration.id,
        event_id=registration.event_id,
        action=action,
        field_name=field_name,
        old_value=old_value,
        new_value=new_value,
        changed_by=changed_by,
        reason=reason
    )
    session.add(audit_log)
    return audit_log


def log_status_change(
    session: Session,
    registration: Registration,
    action: str,
    old_status,
    changed_by: Optional[str] = None,
    reason: Optional[str] = None
) -> RegistrationAuditLog:
    return create_audit_log(
        session, registration, action,
        field_name="status",
        old_value=old_status.value if old_status else None,
        new_value=registration.status.value,
        changed_by=changed_by,
        reason=reason
    )
