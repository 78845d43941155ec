from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from printflow.database import Base
from printflow.domain import utcnow


def _uuid() -> str:
    return str(uuid.uuid4())


class OrderRecord(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    delivery_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class OrderLineRecord(Base):
    __tablename__ = "order_lines"
    __table_args__ = (
        Index("ix_order_lines_stage_assignee", "current_stage", "assignee_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    delivery_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    current_stage: Mapped[str] = mapped_column(String(32), nullable=False, default="intake", index=True)
    current_substage: Mapped[str | None] = mapped_column(String(64), nullable=True)
    stage_sequence_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    stage_entered_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    stage_durations_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    assignee_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    assigned_department: Mapped[str] = mapped_column(String(32), nullable=False, default="sales")
    dispatched: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    dispatched_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    courier: Mapped[str | None] = mapped_column(String(128), nullable=True)
    tracking_number: Mapped[str | None] = mapped_column(String(128), nullable=True)
    delay_reasons_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    notes_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class StageEvent(Base):
    __tablename__ = "stage_events"
    __table_args__ = (
        Index("ix_stage_events_line_created", "order_line_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    order_line_id: Mapped[str] = mapped_column(String(36), ForeignKey("order_lines.id"), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    from_stage: Mapped[str] = mapped_column(String(32), nullable=False)
    from_substage: Mapped[str | None] = mapped_column(String(64), nullable=True)
    to_stage: Mapped[str] = mapped_column(String(32), nullable=False)
    to_substage: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hours_flushed: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class LearningBaselineRecord(Base):
    __tablename__ = "learning_baselines"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False)
    completed_lines: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
