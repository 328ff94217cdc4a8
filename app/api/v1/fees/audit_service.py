"""
Audit logging for fee ledger changes. Call on every financial state change.
"""

from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.models import FeeAuditLog


async def log_fee_audit(
    db: AsyncSession,
    reference_table: str,
    reference_id: UUID,
    action_type: str,
    old_value: Optional[dict],
    new_value: Optional[dict],
    changed_by: Optional[UUID] = None,
) -> None:
    """Append one audit log entry. Caller must commit."""
    db.add(
        FeeAuditLog(
            reference_table=reference_table,
            reference_id=reference_id,
            action_type=action_type,
            old_value=old_value,
            new_value=new_value,
            changed_by=changed_by,
        )
    )
