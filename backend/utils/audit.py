from database import database
from models import AuditLog, AuditAction
from datetime import datetime
from typing import Optional, Dict, Any
import logging

logger = logging.getLogger(__name__)


async def create_audit_log(
    action: AuditAction,
    actor_id: Optional[str] = None,
    resource_type: Optional[str] = "matter",
    resource_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> str:
    """Record a matter opening event in audit_logs.

    Args:
        action: The audit action type
        actor_id: User performing the action
        resource_type: Type of resource (defaults to 'matter')
        resource_id: Instruction reference of the matter
        metadata: Additional metadata (submission reference, failure reason...)
    """
    try:
        db = database.get_db()

        audit_log = AuditLog(
            action=action,
            actor_id=actor_id,
            resource_type=resource_type,
            resource_id=resource_id,
            metadata=metadata or None,
        )

        doc = audit_log.model_dump()
        doc["timestamp"] = doc["timestamp"].isoformat() if isinstance(doc["timestamp"], datetime) else doc["timestamp"]

        await db.audit_logs.insert_one(doc)
        logger.info(f"Audit log created: {action.value} ({resource_id})")
        return audit_log.audit_id
    except Exception as e:
        logger.error(f"Failed to create audit log: {e}")
        # Never fail the main operation due to audit log failure
        return ""

