from database import database
from models import AuditLog, AuditAction
from datetime import datetime
from typing import Optional, Dict, Any, List
import logging

logger = logging.getLogger(__name__)

def calculate_diff(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, Any]:
    """Calculate the differences between before and after states.

    Returns a dict with:
    - added: fields that exist in after but not in before
    - removed: fields that exist in before but not in after
    - changed: fields that exist in both but have different values
    """
    if not before and not after:
        return {}

    if not before:
        return {"added": after}

    if not after:
        return {"removed": before}

    diff = {"added": {}, "removed": {}, "changed": {}}

    for key in set(before.keys()) | set(after.keys()):
        if key not in before:
            diff["added"][key] = after[key]
        elif key not in after:
            diff["removed"][key] = before[key]
        elif before[key] != after[key]:
            diff["changed"][key] = {"from": before[key], "to": after[key]}

    # Remove empty categories
    return {k: v for k, v in diff.items() if v}

async def create_audit_log(
    action: AuditAction,
    actor_role: Optional[str] = None,
    actor_id: Optional[str] = None,
    tenant_id: Optional[str] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    before_state: Optional[Dict[str, Any]] = None,
    after_state: Optional[Dict[str, Any]] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
) -> str:
    """Write an audit_logs entry scoped to tenant_id.

    Plan and override changes pass before_state/after_state so the diff is
    stored alongside them. Never raises: an audit failure must not fail the
    operation being audited.
    """
    try:
        db = database.get_db()
        if db is None:
            logger.warning("Audit log skipped (no database): %s", action.value)
            return ""

        enriched_metadata = dict(metadata) if metadata else {}
        if before_state and after_state:
            diff = calculate_diff(before_state, after_state)
            if diff:
                enriched_metadata["diff"] = diff

        audit_log = AuditLog(
            action=action,
            actor_role=actor_role.value if hasattr(actor_role, "value") else actor_role,
            actor_id=actor_id,
            tenant_id=tenant_id,
            resource_type=resource_type,
            resource_id=resource_id,
            before_state=before_state,
            after_state=after_state,
            metadata=enriched_metadata or None,
            ip_address=ip_address
        )

        doc = audit_log.model_dump()
        doc["action"] = audit_log.action.value
        doc["timestamp"] = doc["timestamp"].isoformat() if isinstance(doc["timestamp"], datetime) else doc["timestamp"]

        await db.audit_logs.insert_one(doc)
        logger.info("Audit log created: %s tenant_id=%s", action.value, tenant_id)
        return audit_log.audit_id
    except Exception as e:
        logger.error("Failed to create audit log: %s", e)
        return ""

async def get_audit_logs_for_tenant(
    tenant_id: str,
    action: Optional[AuditAction] = None,
    limit: int = 50
) -> List[Dict[str, Any]]:
    """Most recent audit entries for one tenant, newest first."""
    try:
        db = database.get_db()
        query: Dict[str, Any] = {"tenant_id": tenant_id}
        if action:
            query["action"] = action.value
        cursor = db.audit_logs.find(query, {"_id": 0}).sort("timestamp", -1).limit(limit)
        return await cursor.to_list(length=limit)
    except Exception as e:
        logger.error("Failed to get audit logs for tenant %s: %s", tenant_id, e)
        return []
