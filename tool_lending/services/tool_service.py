from __future__ import annotations

import logging
import os
import secrets
import string

from sqlalchemy import delete, exists, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tool_lending.models.lending_models import (
    TOOL_TRANSITIONS,
    BorrowRecord,
    BorrowStatus,
    Notification,
    NotificationType,
    Tool,
    ToolAction,
    ToolStatus,
    utcnow,
)
from tool_lending.services.errors import ConflictError, InternalError, NotFoundError, ValidationError
from tool_lending.services.notification_service import emit_notification
from tool_lending.services.qr_service import render_qr_data_url, render_qr_png

LOGGER = logging.getLogger("tool_lending.tools")

TOOL_CODE_ALPHABET = string.ascii_letters + string.digits
TOOL_CODE_LENGTH = int(os.environ.get("TOOL_CODE_LENGTH") or "6")
_MAX_CODE_ATTEMPTS = 20


def _clean_optional(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None


def generate_tool_code(db: Session, length: int | None = None) -> str:
    size = length or TOOL_CODE_LENGTH
    for _ in range(_MAX_CODE_ATTEMPTS):
        candidate = "".join(secrets.choice(TOOL_CODE_ALPHABET) for _ in range(size))
        if db.get(Tool, candidate) is None:
            return candidate
    raise InternalError("Could not allocate a unique tool code")


def has_active_record(db: Session, tool_id: str) -> bool:
    found = db.execute(
        select(BorrowRecord.id)
        .where(BorrowRecord.tool_id == tool_id)
        .where(BorrowRecord.status == BorrowStatus.ACTIVE)
    ).first()
    return found is not None


def set_tool_status(
    db: Session,
    tool: Tool,
    action: ToolAction,
    target: ToolStatus | None = None,
) -> ToolStatus:
    """
    Move a tool to its next status through the transition table.

    The write is a compare-and-set on the status the caller observed, so a
    concurrent request that changed the row first makes this one fail with
    ConflictError instead of silently overwriting it. Does not commit.
    """
    current = ToolStatus(tool.status)
    allowed = TOOL_TRANSITIONS[action].get(current, set())
    if target is None and len(allowed) == 1:
        target = next(iter(allowed))

    if target is None or target not in allowed:
        if action == ToolAction.EDIT:
            raise ConflictError(
                f"Cannot change status from {current.value} to {target.value if target else 'unknown'}; "
                "use borrow or return instead"
            )
        raise ConflictError(f"Tool is currently {current.value}")

    result = db.execute(
        update(Tool)
        .where(Tool.id == tool.id)
        .where(Tool.status == current)
        .values(status=target, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        LOGGER.warning(
            "Status change lost race tool=%s action=%s expected=%s target=%s",
            tool.id,
            action.value,
            current.value,
            target.value,
        )
        raise ConflictError(f"Tool \"{tool.name}\" was changed by another request, please retry")

    db.refresh(tool)
    return target


def create_tool(db: Session, name: str | None, description: str | None = None) -> Tool:
    clean_name = (name or "").strip()
    if not clean_name:
        raise ValidationError("Tool name is required")

    tool_id = generate_tool_code(db)
    now = utcnow()
    tool = Tool(
        id=tool_id,
        name=clean_name,
        description=_clean_optional(description),
        qr_code=render_qr_data_url(tool_id),
        status=ToolStatus.AVAILABLE,
        created_at=now,
        updated_at=now,
    )
    try:
        db.add(tool)
        emit_notification(
            db,
            NotificationType.BORROW,
            f"New tool \"{clean_name}\" has been added to the system",
            tool_id,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    LOGGER.info("Tool created id=%s name=%s", tool.id, tool.name)
    return tool


def list_tools(db: Session) -> list[Tool]:
    return db.execute(select(Tool).order_by(Tool.created_at.desc())).scalars().all()


def get_tool(db: Session, tool_id: str) -> Tool:
    tool = db.get(Tool, tool_id)
    if tool is None:
        raise NotFoundError("Tool not found")
    return tool


def get_tool_by_code(db: Session, code: str) -> Tool:
    cleaned = (code or "").strip()
    if not cleaned:
        raise NotFoundError("Tool not found")
    return get_tool(db, cleaned)


def update_tool(
    db: Session,
    tool_id: str,
    name: str | None = None,
    description: str | None = None,
    status: str | None = None,
) -> Tool:
    tool = get_tool(db, tool_id)

    clean_name = None
    if name is not None:
        clean_name = name.strip()
        if not clean_name:
            raise ValidationError("Tool name cannot be empty")

    target = None
    if status is not None:
        try:
            target = ToolStatus(status.strip().lower())
        except ValueError:
            allowed = ", ".join(item.value for item in ToolStatus)
            raise ValidationError(f"Invalid status. Allowed values: {allowed}") from None

    try:
        if target is not None and target != tool.status:
            if target == ToolStatus.AVAILABLE and has_active_record(db, tool.id):
                raise ConflictError("Tool has an active borrow record, return it instead")
            if target == ToolStatus.BORROWED and not has_active_record(db, tool.id):
                raise ConflictError("Tool has no active borrow record, borrow it instead")
            set_tool_status(db, tool, ToolAction.EDIT, target)

        if clean_name is not None:
            tool.name = clean_name
        if description is not None:
            tool.description = _clean_optional(description)
        tool.updated_at = utcnow()

        emit_notification(
            db,
            NotificationType.BORROW,
            f"Tool \"{tool.name}\" was updated",
            tool.id,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    LOGGER.info("Tool updated id=%s status=%s", tool.id, ToolStatus(tool.status).value)
    return tool


def count_borrow_records(db: Session, tool_id: str) -> int:
    return db.execute(
        select(func.count(BorrowRecord.id)).where(BorrowRecord.tool_id == tool_id)
    ).scalar() or 0


def _ensure_not_on_loan(db: Session, tool: Tool) -> None:
    # a tool moved to maintenance mid-loan still has its active record
    if tool.status == ToolStatus.BORROWED or has_active_record(db, tool.id):
        raise ConflictError("Cannot delete a borrowed tool")


def delete_tool(db: Session, tool_id: str) -> None:
    tool = get_tool(db, tool_id)
    _ensure_not_on_loan(db, tool)
    if count_borrow_records(db, tool.id):
        raise ConflictError("Tool has borrow history, use force delete")

    _delete_tool_rows(db, tool, with_history=False)
    LOGGER.info("Tool deleted id=%s", tool_id)


def force_delete_tool(db: Session, tool_id: str) -> None:
    tool = get_tool(db, tool_id)
    _ensure_not_on_loan(db, tool)

    _delete_tool_rows(db, tool, with_history=True)
    LOGGER.info("Tool force deleted id=%s", tool_id)


def _delete_tool_rows(db: Session, tool: Tool, with_history: bool) -> None:
    # notifications reference borrow records, borrow records reference the tool
    try:
        db.execute(delete(Notification).where(Notification.tool_id == tool.id))
        if with_history:
            db.execute(
                delete(BorrowRecord)
                .where(BorrowRecord.tool_id == tool.id)
                .where(BorrowRecord.status != BorrowStatus.ACTIVE)
            )
        result = db.execute(
            delete(Tool)
            .where(Tool.id == tool.id)
            .where(Tool.status != ToolStatus.BORROWED)
            .where(
                ~exists().where(
                    BorrowRecord.tool_id == Tool.id,
                    BorrowRecord.status == BorrowStatus.ACTIVE,
                )
            )
        )
        if result.rowcount != 1:
            raise ConflictError("Cannot delete a borrowed tool")
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        LOGGER.warning("Tool delete blocked by new references id=%s", tool.id)
        raise ConflictError("Tool changed while deleting, please retry") from exc
    except Exception:
        db.rollback()
        raise


def render_tool_qr_png(db: Session, tool_id: str) -> bytes:
    tool = get_tool(db, tool_id)
    return render_qr_png(tool.id)


def serialize_tool(tool: Tool) -> dict:
    return {
        "id": tool.id,
        "name": tool.name,
        "description": tool.description,
        "qrCode": tool.qr_code,
        "status": ToolStatus(tool.status).value,
        "createdAt": tool.created_at,
        "updatedAt": tool.updated_at,
    }
