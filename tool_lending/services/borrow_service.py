from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tool_lending.models.lending_models import (
    BorrowRecord,
    BorrowStatus,
    Notification,
    NotificationType,
    Tool,
    ToolAction,
    ToolStatus,
    utcnow,
)
from tool_lending.services.errors import ConflictError, NotFoundError, ValidationError
from tool_lending.services.notification_service import emit_notification
from tool_lending.services.tool_service import get_tool, serialize_tool, set_tool_status

LOGGER = logging.getLogger("tool_lending.borrow")

REQUIRED_BORROW_FIELDS = "All fields are required: toolId, borrowerName, borrowerLocation, purpose"


def borrow_tool(
    db: Session,
    tool_id: str | None,
    borrower_name: str | None,
    borrower_location: str | None,
    purpose: str | None,
) -> BorrowRecord:
    fields = [(value or "").strip() for value in (tool_id, borrower_name, borrower_location, purpose)]
    if not all(fields):
        raise ValidationError(REQUIRED_BORROW_FIELDS)
    tool_id, borrower_name, borrower_location, purpose = fields

    tool = get_tool(db, tool_id)
    record = BorrowRecord(
        id=uuid.uuid4().hex,
        tool_id=tool.id,
        borrower_name=borrower_name,
        borrower_location=borrower_location,
        purpose=purpose,
        borrowed_at=utcnow(),
        status=BorrowStatus.ACTIVE,
    )
    try:
        set_tool_status(db, tool, ToolAction.BORROW)
        db.add(record)
        emit_notification(
            db,
            NotificationType.BORROW,
            f"Tool \"{tool.name}\" borrowed by {borrower_name} for {purpose}",
            tool.id,
            record.id,
        )
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        LOGGER.warning("Borrow rejected by active record constraint tool=%s", tool_id)
        raise ConflictError("Tool already has an active borrow record") from exc
    except ConflictError:
        db.rollback()
        LOGGER.warning("Borrow rejected tool=%s borrower=%s", tool_id, borrower_name)
        raise
    except Exception:
        db.rollback()
        raise
    LOGGER.info("Tool borrowed tool=%s record=%s borrower=%s", tool.id, record.id, borrower_name)
    return record


def return_tool(db: Session, borrow_record_id: str | None) -> BorrowRecord:
    record_id = (borrow_record_id or "").strip()
    if not record_id:
        raise ValidationError("Borrow record ID is required")

    try:
        # active -> returned is terminal; the status guard makes double returns lose
        result = db.execute(
            update(BorrowRecord)
            .where(BorrowRecord.id == record_id)
            .where(BorrowRecord.status == BorrowStatus.ACTIVE)
            .values(status=BorrowStatus.RETURNED, returned_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFoundError("Active borrow record not found")

        record = db.get(BorrowRecord, record_id, populate_existing=True)
        tool = db.get(Tool, record.tool_id, populate_existing=True)
        if tool is None:
            LOGGER.error("Tool missing for borrow record record=%s tool=%s", record.id, record.tool_id)
            raise NotFoundError("Associated tool not found")

        if tool.status != ToolStatus.AVAILABLE:
            set_tool_status(db, tool, ToolAction.RETURN)
        emit_notification(
            db,
            NotificationType.RETURN,
            f"Tool \"{tool.name}\" returned by {record.borrower_name}",
            tool.id,
            record.id,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    LOGGER.info("Tool returned tool=%s record=%s", record.tool_id, record.id)
    return record


def _records_query():
    return (
        select(BorrowRecord, Tool)
        .outerjoin(Tool, Tool.id == BorrowRecord.tool_id)
        .order_by(BorrowRecord.borrowed_at.desc())
    )


def _serialize_rows(rows) -> list[dict]:
    payloads = []
    for record, tool in rows:
        payload = serialize_borrow_record(record)
        payload["tool"] = serialize_tool(tool) if tool else None
        payloads.append(payload)
    return payloads


def list_borrow_records(db: Session) -> list[dict]:
    return _serialize_rows(db.execute(_records_query()).all())


def list_active_borrow_records(db: Session) -> list[dict]:
    stmt = _records_query().where(BorrowRecord.status == BorrowStatus.ACTIVE)
    return _serialize_rows(db.execute(stmt).all())


def find_overdue_records(db: Session, cutoff: datetime) -> list[tuple[BorrowRecord, Tool]]:
    already_flagged = (
        select(Notification.borrow_record_id)
        .where(Notification.type == NotificationType.OVERDUE)
        .where(Notification.borrow_record_id.is_not(None))
    )
    return db.execute(
        select(BorrowRecord, Tool)
        .join(Tool, Tool.id == BorrowRecord.tool_id)
        .where(BorrowRecord.status == BorrowStatus.ACTIVE)
        .where(BorrowRecord.borrowed_at <= cutoff)
        .where(BorrowRecord.id.not_in(already_flagged))
        .order_by(BorrowRecord.borrowed_at)
    ).all()


def run_overdue_sweep(db: Session, overdue_after: timedelta, now: datetime | None = None) -> int:
    """Emit one overdue notification per active record older than the threshold."""
    cutoff = (now or utcnow()) - overdue_after
    created = 0
    try:
        for record, tool in find_overdue_records(db, cutoff):
            emit_notification(
                db,
                NotificationType.OVERDUE,
                f"Tool \"{tool.name}\" borrowed by {record.borrower_name} is overdue",
                tool.id,
                record.id,
            )
            created += 1
        db.commit()
    except Exception:
        db.rollback()
        raise
    if created:
        LOGGER.info("Overdue sweep created=%s cutoff=%s", created, cutoff.isoformat())
    return created


def serialize_borrow_record(record: BorrowRecord) -> dict:
    return {
        "id": record.id,
        "toolId": record.tool_id,
        "borrowerName": record.borrower_name,
        "borrowerLocation": record.borrower_location,
        "purpose": record.purpose,
        "borrowedAt": record.borrowed_at,
        "returnedAt": record.returned_at,
        "status": BorrowStatus(record.status).value,
    }
