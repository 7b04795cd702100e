"""Tenant-scoped side-effect tables written by tool handlers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from agent_runner.storage.common import (
    dump_json,
    load_json_object,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from agent_runner.storage.sqlmodel_models import BookingRow, CrmLeadRow, TeamNotificationRow
from agent_runner.tools.registry import ToolExecutionError

logger = logging.getLogger(__name__)

CONFIRMED_BOOKING = "confirmed"


class SlotConflictError(ToolExecutionError):
    """Requested booking slot overlaps a confirmed booking."""


@dataclass(slots=True)
class LeadView:
    lead_id: str
    business_id: str
    name: str | None
    email: str | None
    title: str
    status: str
    intent: str | None
    metadata: dict[str, Any]


@dataclass(slots=True)
class BookingView:
    booking_id: str
    business_id: str
    starts_at: datetime
    ends_at: datetime
    customer_name: str | None
    customer_email: str | None
    status: str


@dataclass(slots=True)
class NotificationView:
    notification_id: int
    business_id: str
    channel: str
    message: str
    details: dict[str, Any]
    source_event_id: str | None


class TenantStore:
    """CRM leads, bookings and the team notification outbox."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create_lead(
        self,
        *,
        business_id: str,
        title: str,
        name: str | None = None,
        email: str | None = None,
        intent: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        now = to_db_datetime(utc_now())
        lead_id = str(uuid4())
        with Session(self.engine) as session:
            session.add(
                CrmLeadRow(
                    lead_id=lead_id,
                    business_id=business_id,
                    name=name,
                    email=email,
                    title=title,
                    status="new",
                    intent=intent,
                    metadata_json=dump_json(metadata or {}),
                    created_at=now,
                    updated_at=now,
                ),
            )
            session.commit()
        logger.info("Lead created: lead_id=%s business=%s", lead_id, business_id)
        return lead_id

    def set_lead_stage(self, *, business_id: str, lead_id: str, stage: str) -> LeadView:
        """Update lead status; the lead must belong to the tenant."""

        with Session(self.engine) as session:
            row = session.exec(
                select(CrmLeadRow).where(
                    CrmLeadRow.lead_id == lead_id,
                    CrmLeadRow.business_id == business_id,
                ),
            ).one_or_none()
            if row is None:
                raise ToolExecutionError(f"Lead not found: {lead_id}")
            row.status = stage
            row.updated_at = to_db_datetime(utc_now())
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_lead_view(row)

    def get_lead(self, *, business_id: str, lead_id: str) -> LeadView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(CrmLeadRow).where(
                    CrmLeadRow.lead_id == lead_id,
                    CrmLeadRow.business_id == business_id,
                ),
            ).one_or_none()
        if row is None:
            return None
        return _to_lead_view(row)

    def list_leads(self, *, business_id: str) -> list[LeadView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(CrmLeadRow)
                .where(CrmLeadRow.business_id == business_id)
                .order_by(col(CrmLeadRow.created_at).asc()),
            ).all()
        return [_to_lead_view(row) for row in rows]

    def is_slot_free(self, *, business_id: str, starts_at: datetime, ends_at: datetime) -> bool:
        with Session(self.engine) as session:
            return self._find_overlap(
                session=session,
                business_id=business_id,
                starts_at=starts_at,
                ends_at=ends_at,
            ) is None

    def book_slot(
        self,
        *,
        business_id: str,
        starts_at: datetime,
        ends_at: datetime,
        customer_name: str | None = None,
        customer_email: str | None = None,
        source_event_id: str | None = None,
    ) -> BookingView:
        """Insert a confirmed booking, then re-check the slot in the same transaction.

        The insert is flushed before the overlap query, so the transaction holds
        the SQLite write lock while it checks. A concurrent booking waits for the
        lock and then sees this row. The partial unique index on confirmed
        (business, start) pairs rejects an identical start outright.
        """

        if ends_at <= starts_at:
            raise ToolExecutionError("Booking must end after it starts")
        booking_id = str(uuid4())
        with Session(self.engine) as session:
            row = BookingRow(
                booking_id=booking_id,
                business_id=business_id,
                starts_at=to_db_datetime(starts_at),
                ends_at=to_db_datetime(ends_at),
                customer_name=customer_name,
                customer_email=customer_email,
                status=CONFIRMED_BOOKING,
                source_event_id=source_event_id,
                created_at=to_db_datetime(utc_now()),
            )
            session.add(row)
            try:
                session.flush()
            except IntegrityError as error:
                session.rollback()
                raise SlotConflictError("Slot was booked concurrently") from error
            overlap = self._find_overlap(
                session=session,
                business_id=business_id,
                starts_at=starts_at,
                ends_at=ends_at,
                exclude_booking_id=booking_id,
            )
            if overlap is not None:
                session.rollback()
                raise SlotConflictError(f"Slot conflicts with booking {overlap.booking_id}")
            session.commit()
            session.refresh(row)
            return _to_booking_view(row)

    def list_bookings(self, *, business_id: str) -> list[BookingView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(BookingRow)
                .where(BookingRow.business_id == business_id)
                .order_by(col(BookingRow.starts_at).asc()),
            ).all()
        return [_to_booking_view(row) for row in rows]

    def add_notification(
        self,
        *,
        business_id: str,
        message: str,
        channel: str = "email",
        details: dict[str, Any] | None = None,
        source_event_id: str | None = None,
    ) -> int:
        with Session(self.engine) as session:
            row = TeamNotificationRow(
                business_id=business_id,
                channel=channel,
                message=message,
                details_json=dump_json(details or {}),
                source_event_id=source_event_id,
                created_at=to_db_datetime(utc_now()),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            if row.id is None:
                raise RuntimeError("Notification id was not assigned")
            return row.id

    def list_notifications(self, *, business_id: str) -> list[NotificationView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(TeamNotificationRow)
                .where(TeamNotificationRow.business_id == business_id)
                .order_by(col(TeamNotificationRow.id).asc()),
            ).all()
        return [
            NotificationView(
                notification_id=row.id or 0,
                business_id=row.business_id,
                channel=row.channel,
                message=row.message,
                details=load_json_object(row.details_json),
                source_event_id=row.source_event_id,
            )
            for row in rows
        ]

    def _find_overlap(
        self,
        *,
        session: Session,
        business_id: str,
        starts_at: datetime,
        ends_at: datetime,
        exclude_booking_id: str | None = None,
    ) -> BookingRow | None:
        statement = select(BookingRow).where(
            BookingRow.business_id == business_id,
            BookingRow.status == CONFIRMED_BOOKING,
            col(BookingRow.starts_at) < to_db_datetime(ends_at),
            col(BookingRow.ends_at) > to_db_datetime(starts_at),
        )
        if exclude_booking_id is not None:
            statement = statement.where(BookingRow.booking_id != exclude_booking_id)
        return session.exec(statement.limit(1)).first()


def _to_lead_view(row: CrmLeadRow) -> LeadView:
    return LeadView(
        lead_id=row.lead_id,
        business_id=row.business_id,
        name=row.name,
        email=row.email,
        title=row.title,
        status=row.status,
        intent=row.intent,
        metadata=load_json_object(row.metadata_json),
    )


def _to_booking_view(row: BookingRow) -> BookingView:
    return BookingView(
        booking_id=row.booking_id,
        business_id=row.business_id,
        starts_at=to_utc_aware_datetime(row.starts_at),
        ends_at=to_utc_aware_datetime(row.ends_at),
        customer_name=row.customer_name,
        customer_email=row.customer_email,
        status=row.status,
    )
