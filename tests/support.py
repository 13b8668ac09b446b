from datetime import date, datetime, timedelta
from decimal import Decimal

from zone_reservations import (
    OperatingHours,
    PaymentStatus,
    ReservationRecord,
    ReservationStatus,
    Zone,
)

CREATED_AT = datetime(2024, 6, 1, 8, 0)


class MutableClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now += timedelta(**delta)
        return self.now


def make_zone(
    open_time: str = "09:00",
    close_time: str = "17:00",
    zone_id: str = "zoneX",
    rate: str = "10",
    **overrides,
) -> Zone:
    return Zone(
        zone_id=zone_id,
        name=f"Zone {zone_id}",
        operating_hours=OperatingHours(open=open_time, close=close_time),
        rate_per_hour=Decimal(rate),
        **overrides,
    )


def make_record(
    reservation_id: str,
    start_offset: int,
    duration_hours: int = 1,
    status: ReservationStatus = ReservationStatus.PENDING_PAYMENT,
    zone_id: str = "zoneX",
    on_date: date = date(2024, 6, 1),
    reference: str | None = None,
) -> ReservationRecord:
    return ReservationRecord(
        reservation_id=reservation_id,
        zone_id=zone_id,
        requester_id="userA",
        date=on_date,
        start=f"{(start_offset // 60) % 24:02d}:{start_offset % 60:02d}",
        duration_hours=duration_hours,
        start_offset=start_offset,
        status=status,
        payment_status=PaymentStatus.PENDING,
        amount=Decimal("10.00") * duration_hours,
        reference=reference or f"GZ-{reservation_id.upper():0>8}-TEST",
        created_at=CREATED_AT,
        updated_at=CREATED_AT,
        payment_deadline=CREATED_AT + timedelta(minutes=30),
    )
