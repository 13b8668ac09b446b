from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
import tempfile
import traceback

from zone_reservations import (
    ConflictDetected,
    OperatingHours,
    PaymentOutcome,
    ReservationEngine,
    ReservationYamlRepository,
    Zone,
    load_settings,
)


def main() -> int:
    print("[INFO] Zone Reservations Quick Check")

    settings = load_settings()
    data_dir = Path(tempfile.mkdtemp(prefix="zone-quickcheck-"))
    repo = ReservationYamlRepository(data_dir)
    clock_value = datetime(2026, 3, 2, 9, 0)
    engine = ReservationEngine(repo, settings=settings, clock=lambda: clock_value)

    zone = engine.register_zone(
        Zone(
            zone_id="quickcheck-zone",
            name="Quickcheck Zone",
            operating_hours=OperatingHours(open="10:00", close="18:00"),
            rate_per_hour=Decimal("25.00"),
        )
    )
    print(f"[OK] Zone registered: {zone.zone_id} {zone.operating_hours.open}-{zone.operating_hours.close}")

    created = engine.create_reservation(zone.zone_id, "quickcheck-user", date(2026, 3, 2), "10:00", 2)
    print(f"[OK] Reservation created: {created.reference} ({created.status.value}, {created.amount})")

    try:
        engine.create_reservation(zone.zone_id, "quickcheck-other", date(2026, 3, 2), "11:00", 1)
        print("[ERROR] Overlapping reservation was accepted.")
        return 1
    except ConflictDetected as error:
        print(f"[OK] Overlap rejected: {error.description}")

    if created.payment_deadline is not None:
        paid = engine.report_payment_outcome(created.reservation_id, PaymentOutcome.SUCCEEDED, "quickcheck-payment")
        print(f"[OK] Payment recorded: {paid.status.value}/{paid.payment_status.value}")

    grid = engine.get_availability(zone.zone_id, date(2026, 3, 2))
    print(f"[OK] Availability: {grid.total_available} open, booked {grid.booked_slots}")
    print(f"[OK] Reservations YAML: {Path(repo.reservations_file).resolve()}")
    print(f"[OK] Event Log YAML: {Path(repo.log_file).resolve()}")

    print("[DONE] Quick check completed successfully.")
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except Exception:
        print("[ERROR] Quick check failed.")
        traceback.print_exc()
        raise SystemExit(1)
