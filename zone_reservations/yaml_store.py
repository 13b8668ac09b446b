from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any
import logging
import os
import shutil
import threading
import time

import yaml

from .booking import has_time_overlap
from .errors import DuplicateReferenceError, DuplicateSlotError, ReservationStorageError
from .models import ReservationRecord, ReservationStatus, Zone

logger = logging.getLogger(__name__)

LOCK_TIMEOUT_SECONDS = 10.0
STALE_LOCK_SECONDS = 60.0


class ReservationYamlRepository:
    """YAML-file store shared by every engine instance pointing at ``base_dir``.

    All read-modify-write cycles hold the store lock, which is what makes the
    active-interval uniqueness check in ``insert_reservation`` and the
    conditional update in ``compare_and_set`` safe across threads and processes.
    """

    def __init__(self, base_dir: str | Path = "data") -> None:
        self.base_dir = Path(base_dir)
        self.zones_file = self.base_dir / "zones.yaml"
        self.reservations_file = self.base_dir / "reservations.yaml"
        self.log_file = self.base_dir / "reservation_events.yaml"
        self.lock_file = self.base_dir / ".store.lock"
        self._thread_lock = threading.RLock()
        self._lock_depth = 0
        self._lock_fd: int | None = None
        self._ensure_files()

    def _ensure_files(self) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        for path in (self.zones_file, self.reservations_file, self.log_file):
            if not path.exists():
                path.write_text("[]\n", encoding="utf-8")

    @contextmanager
    def locked(self) -> Iterator[None]:
        with self._thread_lock:
            if self._lock_depth == 0:
                self._acquire_file_lock()
            self._lock_depth += 1
            try:
                yield
            finally:
                self._lock_depth -= 1
                if self._lock_depth == 0:
                    self._release_file_lock()

    def _acquire_file_lock(self) -> None:
        deadline = time.monotonic() + LOCK_TIMEOUT_SECONDS
        while True:
            try:
                self._lock_fd = os.open(self.lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
                os.write(self._lock_fd, str(os.getpid()).encode("ascii"))
                return
            except FileExistsError:
                self._break_stale_lock()
            if time.monotonic() >= deadline:
                raise ReservationStorageError(f"Timed out waiting for store lock: {self.lock_file}")
            time.sleep(0.005)

    def _break_stale_lock(self) -> None:
        try:
            age = time.time() - self.lock_file.stat().st_mtime
        except FileNotFoundError:
            return
        if age > STALE_LOCK_SECONDS:
            logger.warning("Removing stale store lock %s (age %.0fs)", self.lock_file, age)
            self.lock_file.unlink(missing_ok=True)

    def _release_file_lock(self) -> None:
        if self._lock_fd is not None:
            os.close(self._lock_fd)
            self._lock_fd = None
        self.lock_file.unlink(missing_ok=True)

    def _read_yaml_list(self, path: Path) -> list[dict[str, Any]]:
        try:
            payload = yaml.safe_load(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            path.write_text("[]\n", encoding="utf-8")
            return []
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as error:
            self._recover_corrupted_yaml(path, error)
            return []

        if payload is None:
            return []
        if not isinstance(payload, list):
            self._recover_corrupted_yaml(path, ValueError("top-level YAML is not a list"))
            return []

        sanitized: list[dict[str, Any]] = []
        for index, row in enumerate(payload):
            if isinstance(row, dict):
                sanitized.append(row)
            elif path == self.log_file:
                logger.warning("Skipping non-mapping row %d in %s", index, path.name)
            else:
                self._log_event(
                    "YAML_ROW_SKIPPED",
                    {
                        "file": str(path.name),
                        "index": index,
                        "reason": "row is not a mapping",
                    },
                )
        return sanitized

    def _write_yaml_list(self, path: Path, rows: list[dict[str, Any]]) -> None:
        temp_path = path.with_suffix(path.suffix + f".{os.getpid()}.{threading.get_ident()}.tmp")
        try:
            temp_path.write_text(yaml.safe_dump(rows, allow_unicode=True, sort_keys=False), encoding="utf-8")
            temp_path.replace(path)
        except OSError as error:
            raise ReservationStorageError(f"Failed to write YAML file: {path}") from error
        finally:
            if temp_path.exists():
                temp_path.unlink(missing_ok=True)

    def _recover_corrupted_yaml(self, path: Path, error: Exception) -> None:
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        backup_path = path.with_name(f"{path.stem}.corrupt.{timestamp}{path.suffix}")
        try:
            if path.exists():
                shutil.copy2(path, backup_path)
        except OSError as copy_error:
            logger.warning("Could not back up corrupted %s: %s", path.name, copy_error)

        logger.error("Recovered corrupted YAML file %s: %s", path.name, error)
        path.write_text("[]\n", encoding="utf-8")
        if path != self.log_file:
            self._log_event(
                "YAML_RECOVERED",
                {
                    "file": str(path.name),
                    "backup": str(backup_path.name),
                    "reason": str(error),
                },
            )

    def _log_event(self, event_type: str, payload: dict[str, Any], event_time: datetime | None = None) -> None:
        timestamp = (event_time or datetime.now()).isoformat(timespec="seconds")
        with self.locked():
            events = self._read_yaml_list(self.log_file)
            events.append({"event_time": timestamp, "event_type": event_type, "payload": payload})
            self._write_yaml_list(self.log_file, events)

    def get_events(self) -> list[dict[str, Any]]:
        return self._read_yaml_list(self.log_file)

    def upsert_zone(self, zone: Zone) -> Zone:
        with self.locked():
            rows = [row for row in self._read_yaml_list(self.zones_file) if str(row.get("zone_id")) != zone.zone_id]
            rows.append(zone.to_dict())
            self._write_yaml_list(self.zones_file, rows)
        return zone

    def get_zone(self, zone_id: str) -> Zone | None:
        for row in self._read_yaml_list(self.zones_file):
            if str(row.get("zone_id")) == zone_id:
                return Zone.from_dict(row)
        return None

    def list_zones(self) -> list[Zone]:
        return [Zone.from_dict(row) for row in self._read_yaml_list(self.zones_file)]

    def list_reservations(self) -> list[ReservationRecord]:
        rows = self._read_yaml_list(self.reservations_file)
        return [ReservationRecord.from_dict(row) for row in rows]

    def get_reservation(self, reservation_id: str) -> ReservationRecord | None:
        for row in self._read_yaml_list(self.reservations_file):
            if str(row.get("reservation_id")) == reservation_id:
                return ReservationRecord.from_dict(row)
        return None

    def find_active(
        self,
        zone_id: str,
        on_date: date,
        exclude_id: str | None = None,
    ) -> list[ReservationRecord]:
        return [
            record
            for record in self.list_reservations()
            if record.zone_id == zone_id
            and record.date == on_date
            and record.is_active
            and record.reservation_id != exclude_id
        ]

    def find_expired_pending(self, now: datetime) -> list[ReservationRecord]:
        expired = [
            record
            for record in self.list_reservations()
            if record.status is ReservationStatus.PENDING_PAYMENT
            and record.payment_deadline is not None
            and record.payment_deadline < now
        ]
        return sorted(expired, key=lambda record: record.payment_deadline)

    def find_elapsed_confirmed(self, now: datetime) -> list[ReservationRecord]:
        return [
            record
            for record in self.list_reservations()
            if record.status is ReservationStatus.CONFIRMED and record.ends_at <= now
        ]

    def insert_reservation(self, record: ReservationRecord) -> ReservationRecord:
        """Persist a new reservation, enforcing active-interval and reference uniqueness."""
        with self.locked():
            rows = self._read_yaml_list(self.reservations_file)
            existing = [ReservationRecord.from_dict(row) for row in rows]

            if any(row.reference == record.reference for row in existing):
                raise DuplicateReferenceError(f"Reservation reference already in use: {record.reference}")

            if record.is_active:
                for row in existing:
                    if (
                        row.is_active
                        and row.zone_id == record.zone_id
                        and row.date == record.date
                        and has_time_overlap(record.start_offset, record.end_offset, row.start_offset, row.end_offset)
                    ):
                        raise DuplicateSlotError(record.zone_id, record.date.isoformat(), record.start)

            rows.append(record.to_dict())
            self._write_yaml_list(self.reservations_file, rows)

            self._log_event(
                "RESERVATION_CREATED",
                {
                    "reservation_id": record.reservation_id,
                    "zone_id": record.zone_id,
                    "date": record.date.isoformat(),
                    "start": record.start,
                    "end": record.end,
                    "status": record.status.value,
                    "reference": record.reference,
                },
                record.created_at,
            )
        return record

    def compare_and_set(
        self,
        record: ReservationRecord,
        expected_status: ReservationStatus,
        expected_revision: int,
    ) -> bool:
        """Replace the stored record only while it still holds ``expected_status``
        at ``expected_revision``.

        Returns False, writing nothing, when the record is missing or another
        writer already moved it on.
        """
        with self.locked():
            rows = self._read_yaml_list(self.reservations_file)
            for index, row in enumerate(rows):
                if str(row.get("reservation_id")) != record.reservation_id:
                    continue
                current_status = str(row.get("status"))
                current_revision = int(row.get("revision", 0))
                if current_status != expected_status.value or current_revision != expected_revision:
                    self._log_event(
                        "RESERVATION_WRITE_SKIPPED",
                        {
                            "reservation_id": record.reservation_id,
                            "expected_status": expected_status.value,
                            "current_status": current_status,
                            "expected_revision": expected_revision,
                            "current_revision": current_revision,
                        },
                        record.updated_at,
                    )
                    return False

                rows[index] = record.to_dict()
                self._write_yaml_list(self.reservations_file, rows)
                self._log_event(
                    "RESERVATION_TRANSITIONED",
                    {
                        "reservation_id": record.reservation_id,
                        "from_status": expected_status.value,
                        "to_status": record.status.value,
                    },
                    record.updated_at,
                )
                return True
        return False
