import json
from models import db
from models.audit_log import AuditLog

def log_event(action: str, user_id=None, ip=None, metadata=None):
    """
    Stages an audit row in the current session; it is persisted by the
    caller's commit together with the state change it describes.
    """
    row = AuditLog(
        user_id=user_id,
        action=action,
        ip=ip[:45] if ip else None,
        metadata_json=json.dumps(metadata, default=str) if metadata else None,
    )
    db.session.add(row)
    return row
