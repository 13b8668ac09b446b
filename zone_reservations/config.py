from __future__ import annotations

from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any
import logging
import os

import holidays
import yaml

from .errors import ValidationError
from .models import ACTIVE_STATUSES, ReservationStatus

ENV_PREFIX = "ZONE_RES_"
TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
FALSE_VALUES = frozenset({"0", "false", "no", "off"})


@dataclass(frozen=True)
class EngineSettings:
    payment_gated: bool = True
    payment_window_minutes: int = 30
    cancellation_window_hours: float = 2.0
    vendor_review_status: ReservationStatus = ReservationStatus.PENDING_PAYMENT
    reaper_interval_minutes: float = 15.0
    min_duration_hours: int = 1
    default_max_duration_hours: int = 8
    max_notes_length: int = 500
    max_reason_length: int = 200
    holiday_country: str | None = None
    data_dir: str = "data"
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.vendor_review_status not in ACTIVE_STATUSES:
            raise ValidationError(
                "vendor_review_status must be pending_payment or confirmed.",
                field="vendor_review_status",
            )
        if self.payment_window_minutes <= 0:
            raise ValidationError("payment_window_minutes must be positive.", field="payment_window_minutes")
        if self.reaper_interval_minutes <= 0:
            raise ValidationError("reaper_interval_minutes must be positive.", field="reaper_interval_minutes")
        if self.cancellation_window_hours < 0:
            raise ValidationError("cancellation_window_hours must not be negative.", field="cancellation_window_hours")
        if not 1 <= self.min_duration_hours <= self.default_max_duration_hours:
            raise ValidationError(
                "Duration bounds must satisfy 1 <= min_duration_hours <= default_max_duration_hours.",
                field="min_duration_hours",
            )
        if self.holiday_country is not None and self.holiday_country not in holidays.list_supported_countries():
            raise ValidationError(
                f"holiday_country {self.holiday_country!r} is not a supported country code.",
                field="holiday_country",
            )


def load_settings(path: str | Path | None = None, environ: dict[str, str] | None = None) -> EngineSettings:
    """Build settings from an optional YAML file, then ``ZONE_RES_*`` environment overrides."""
    raw: dict[str, Any] = {}
    if path is not None:
        payload = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
        if payload is not None and not isinstance(payload, dict):
            raise ValidationError(f"Settings file must contain a mapping: {path}")
        raw.update(payload or {})

    env = os.environ if environ is None else environ
    for setting in fields(EngineSettings):
        key = ENV_PREFIX + setting.name.upper()
        if key in env:
            raw[setting.name] = env[key]

    unknown = set(raw) - {setting.name for setting in fields(EngineSettings)}
    if unknown:
        raise ValidationError(f"Unknown settings: {sorted(unknown)}")

    return replace(EngineSettings(), **{name: _coerce(name, value) for name, value in raw.items()})


def _coerce(name: str, value: Any) -> Any:
    try:
        if name == "payment_gated":
            if isinstance(value, str):
                flag = value.strip().lower()
                if flag in TRUE_VALUES:
                    return True
                if flag in FALSE_VALUES:
                    return False
                raise ValueError(value)
            if not isinstance(value, bool):
                raise ValueError(value)
            return value
        if name == "vendor_review_status":
            return ReservationStatus(str(value).strip().lower())
        if name in {"payment_window_minutes", "min_duration_hours", "default_max_duration_hours",
                    "max_notes_length", "max_reason_length"}:
            return int(value)
        if name in {"cancellation_window_hours", "reaper_interval_minutes"}:
            return float(value)
    except (TypeError, ValueError) as error:
        raise ValidationError(f"Invalid value for {name}: {value!r}", field=name) from error

    if value is None or value == "":
        return None if name == "holiday_country" else value
    return str(value)


def configure_logging(level: str = "INFO") -> None:
    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())
    root_logger.handlers = []

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
    )
    root_logger.addHandler(console_handler)
