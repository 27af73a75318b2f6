from __future__ import annotations

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from tool_lending.models.lending_models import Notification, NotificationType, Tool, utcnow
from tool_lending.services.errors import NotFoundError

LOGGER = logging.getLogger("tool_lending.notifications")


def emit_notification(
    db: Session,
    notification_type: NotificationType,
    message: str,
    tool_id: str,
    borrow_record_id: str | None = None,
) -> Notification:
    notification = Notification(
        id=uuid.uuid4().hex,
        type=notification_type,
        message=message,
        tool_id=tool_id,
        borrow_record_id=borrow_record_id,
        created_at=utcnow(),
        read=False,
    )
    db.add(notification)
    return notification


def list_notifications(db: Session) -> list[dict]:
    rows = db.execute(
        select(Notification, Tool)
        .outerjoin(Tool, Tool.id == Notification.tool_id)
        .order_by(Notification.created_at.desc())
    ).all()
    payloads = []
    for notification, tool in rows:
        payload = serialize_notification(notification)
        payload["tool"] = {"id": tool.id, "name": tool.name} if tool else None
        payloads.append(payload)
    return payloads


def mark_read(db: Session, notification_id: str) -> Notification:
    notification = db.get(Notification, notification_id)
    if notification is None:
        raise NotFoundError("Notification not found")
    if notification.read:
        return notification

    notification.read = True
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    LOGGER.info("Notification read id=%s", notification.id)
    return notification


def serialize_notification(notification: Notification) -> dict:
    return {
        "id": notification.id,
        "type": NotificationType(notification.type).value,
        "message": notification.message,
        "toolId": notification.tool_id,
        "borrowRecordId": notification.borrow_record_id,
        "createdAt": notification.created_at,
        "read": bool(notification.read),
    }
