from enum import StrEnum
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit.models import AuditLog


class AuditAction(StrEnum):
    """Standard audit actions."""

    RESET_NUMBERING = "RESET_NUMBERING"
    REPAIR_NUMBERING = "REPAIR_NUMBERING"
    RELEASE_NUMBER = "RELEASE_NUMBER"


async def create_audit_log(
    session: AsyncSession,
    action: str | AuditAction,
    entity_type: str,
    entity_id: int,
    actor: str | None = None,
    entity_identifier: str | None = None,
    old_values: dict[str, Any] | None = None,
    new_values: dict[str, Any] | None = None,
    comment: str | None = None,
) -> AuditLog:
    """
    Create an audit log entry in the caller's transaction.

    Args:
        session: Database session
        action: Action performed (e.g., RESET_NUMBERING)
        entity_type: Type of entity (e.g., NumberingPolicy, DocumentSequence)
        entity_id: ID of the entity
        actor: Who triggered the action (user name, script name)
        entity_identifier: Human-readable identifier (e.g., document type or number)
        old_values: State before change
        new_values: State after change
        comment: Additional comment

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        actor=actor,
        action=str(action),
        entity_type=entity_type,
        entity_id=entity_id,
        entity_identifier=entity_identifier,
        old_values=old_values,
        new_values=new_values,
        comment=comment,
    )

    session.add(audit_log)
    await session.flush()

    return audit_log
