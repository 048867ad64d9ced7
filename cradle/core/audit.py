import datetime
import enum
from cradle.core.models import AuditLog


def snapshot(values):
    """JSON-safe copy of `values` for audit columns."""
    if values is None:
        return None
    if isinstance(values, dict):
        return {k: snapshot(v) for k, v in values.items()}
    if isinstance(values, (list, tuple, set)):
        return [snapshot(v) for v in values]
    if isinstance(values, enum.Enum):
        return values.value
    if isinstance(values, (datetime.datetime, datetime.date)):
        return values.isoformat()
    return values


def record(session, now, daycare_id, action, description, entry_id=None,
           performed_by=None, performed_by_type=None,
           old_values=None, new_values=None, details=None):
    log = AuditLog(
        entry_id=entry_id,
        daycare_id=daycare_id,
        action=action,
        description=description,
        performed_by=performed_by,
        performed_by_type=performed_by_type,
        old_values=snapshot(old_values),
        new_values=snapshot(new_values),
        details=snapshot(details),
        created_at=now,
    )
    session.add(log)
    return log
