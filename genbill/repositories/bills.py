from __future__ import annotations

from collections.abc import Collection
from datetime import date, datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from genbill.db.models import Bill, BillLineItem, BillNumberCounter, BillStatus

BILL_NUMBER_COUNTER = "bills"


def allocate_bill_sequence(db: Session, *, counter_name: str = BILL_NUMBER_COUNTER) -> int:
    """Increment the bill counter inside the caller's transaction.

    The UPDATE takes a row lock that is held until commit, so concurrent
    allocators are serialized and a rolled back bill also rolls back its number.
    """
    value = db.scalar(
        update(BillNumberCounter)
        .where(BillNumberCounter.name == counter_name)
        .values(last_value=BillNumberCounter.last_value + 1)
        .returning(BillNumberCounter.last_value)
        .execution_options(synchronize_session=False)
    )
    if value is not None:
        return int(value)

    db.add(BillNumberCounter(name=counter_name, last_value=1))
    db.flush()
    return 1


def format_bill_number(prefix: str, sequence: int, width: int) -> str:
    return f"{prefix}-{sequence:0{width}d}"


def create_bill(db: Session, *, bill: Bill, line_items: list[BillLineItem]) -> Bill:
    bill.line_items = line_items
    db.add(bill)
    db.flush()
    return bill


def get_bill(db: Session, bill_id: int) -> Bill | None:
    return db.scalars(
        select(Bill).where(Bill.id == bill_id).options(selectinload(Bill.line_items))
    ).first()


def list_bills(
    db: Session,
    *,
    bill_ids: Collection[int] | None = None,
    zone_id: int | None = None,
    status: str | None = None,
    period_start: date | None = None,
    period_end: date | None = None,
) -> list[Bill]:
    statement = select(Bill)
    if bill_ids is not None:
        if not bill_ids:
            return []
        statement = statement.where(Bill.id.in_(list(bill_ids)))
    if zone_id is not None:
        statement = statement.where(Bill.zone_id == zone_id)
    if status is not None:
        statement = statement.where(Bill.status == status)
    if period_start is not None:
        statement = statement.where(Bill.billing_period_start >= period_start)
    if period_end is not None:
        statement = statement.where(Bill.billing_period_end <= period_end)
    statement = statement.order_by(Bill.created_at.desc(), Bill.id.desc())
    return list(db.scalars(statement))


def transition_bill_status(
    db: Session,
    *,
    bill_id: int,
    from_statuses: Collection[str],
    to_status: str,
    sent_date: datetime | None = None,
    paid_date: datetime | None = None,
) -> bool:
    values: dict[str, object] = {"status": to_status}
    if sent_date is not None:
        values["sent_date"] = sent_date
    if paid_date is not None:
        values["paid_date"] = paid_date
    result = db.execute(
        update(Bill)
        .where(Bill.id == bill_id, Bill.status.in_(list(from_statuses)))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return (result.rowcount or 0) == 1


def mark_overdue_bills(db: Session, *, today: date) -> int:
    result = db.execute(
        update(Bill)
        .where(
            Bill.status.in_([BillStatus.PENDING.value, BillStatus.SENT.value]),
            Bill.due_date < today,
        )
        .values(status=BillStatus.OVERDUE.value)
        .execution_options(synchronize_session=False)
    )
    return max(0, result.rowcount or 0)
