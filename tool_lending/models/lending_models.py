import enum
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Index, String, Text, text
from sqlalchemy.types import TypeDecorator
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from tool_lending.db.base import Base


class ToolStatus(str, enum.Enum):
    AVAILABLE = "available"
    BORROWED = "borrowed"
    MAINTENANCE = "maintenance"


class BorrowStatus(str, enum.Enum):
    ACTIVE = "active"
    RETURNED = "returned"


class NotificationType(str, enum.Enum):
    BORROW = "borrow"
    RETURN = "return"
    OVERDUE = "overdue"


class ToolAction(str, enum.Enum):
    BORROW = "borrow"
    RETURN = "return"
    EDIT = "edit"


# current status -> statuses reachable through each action
TOOL_TRANSITIONS = {
    ToolAction.BORROW: {
        ToolStatus.AVAILABLE: {ToolStatus.BORROWED},
    },
    ToolAction.RETURN: {
        ToolStatus.BORROWED: {ToolStatus.AVAILABLE},
        ToolStatus.MAINTENANCE: {ToolStatus.AVAILABLE},
    },
    ToolAction.EDIT: {
        ToolStatus.AVAILABLE: {ToolStatus.MAINTENANCE},
        ToolStatus.BORROWED: {ToolStatus.MAINTENANCE},
        ToolStatus.MAINTENANCE: {ToolStatus.AVAILABLE, ToolStatus.BORROWED},
    },
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend.

    SQLite drops the offset on write, so naive values read back are tagged as
    UTC and aware values are converted to UTC before they are stored.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Tool(Base):
    __tablename__ = "tools"

    id = Column(String(32), primary_key=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    qr_code = Column(Text, nullable=False, unique=True)
    status = Column(
        Enum(ToolStatus, name="tool_status", values_callable=_enum_values),
        nullable=False,
        default=ToolStatus.AVAILABLE,
    )
    created_at = Column(UTCDateTime(), nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(UTCDateTime(), nullable=False, default=utcnow, server_default=func.now())

    borrow_records = relationship("BorrowRecord", back_populates="tool")
    notifications = relationship("Notification", back_populates="tool")


class BorrowRecord(Base):
    __tablename__ = "borrow_records"
    __table_args__ = (
        Index(
            "uq_borrow_records_active_tool",
            "tool_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    id = Column(String(32), primary_key=True)
    tool_id = Column(String(32), ForeignKey("tools.id"), nullable=False, index=True)
    borrower_name = Column(String(255), nullable=False)
    borrower_location = Column(String(255), nullable=False)
    purpose = Column(Text, nullable=False)
    borrowed_at = Column(UTCDateTime(), nullable=False, default=utcnow, server_default=func.now())
    returned_at = Column(UTCDateTime())
    status = Column(
        Enum(BorrowStatus, name="borrow_status", values_callable=_enum_values),
        nullable=False,
        default=BorrowStatus.ACTIVE,
    )

    tool = relationship("Tool", back_populates="borrow_records")
    notifications = relationship("Notification", back_populates="borrow_record")


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(32), primary_key=True)
    type = Column(
        Enum(NotificationType, name="notification_type", values_callable=_enum_values),
        nullable=False,
    )
    message = Column(Text, nullable=False)
    tool_id = Column(String(32), ForeignKey("tools.id"), nullable=False, index=True)
    borrow_record_id = Column(String(32), ForeignKey("borrow_records.id"))
    created_at = Column(UTCDateTime(), nullable=False, default=utcnow, server_default=func.now())
    read = Column(Boolean, nullable=False, default=False)

    tool = relationship("Tool", back_populates="notifications")
    borrow_record = relationship("BorrowRecord", back_populates="notifications")
