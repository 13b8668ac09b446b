from .booking import has_time_overlap, normalize_start, to_minutes, to_time, window_span
from .config import EngineSettings, configure_logging, load_settings
from .engine import PaymentOutcome, ReservationEngine, SweepError, SweepResult, VendorDecisionKind
from .errors import (
	ConflictDetected,
	InvalidTransitionError,
	MalformedTimeError,
	NotFoundError,
	OutsideOperatingHoursError,
	ReservationError,
	ReservationStorageError,
	ValidationError,
)
from .lifecycle import ReservationEvent, ReservationLifecycle
from .models import (
	OperatingHours,
	PaymentStatus,
	PricingTier,
	ReservationRecord,
	ReservationStatus,
	SubSelection,
	Zone,
)
from .notifications import LoggingNotificationSink, NotificationSink, RecordingNotificationSink
from .reaper import ExpiryReaper, ReaperHandle
from .yaml_store import ReservationYamlRepository

__all__ = [
	"has_time_overlap",
	"normalize_start",
	"to_minutes",
	"to_time",
	"window_span",
	"EngineSettings",
	"configure_logging",
	"load_settings",
	"PaymentOutcome",
	"ReservationEngine",
	"SweepError",
	"SweepResult",
	"VendorDecisionKind",
	"ConflictDetected",
	"InvalidTransitionError",
	"MalformedTimeError",
	"NotFoundError",
	"OutsideOperatingHoursError",
	"ReservationError",
	"ReservationStorageError",
	"ValidationError",
	"ReservationEvent",
	"ReservationLifecycle",
	"OperatingHours",
	"PaymentStatus",
	"PricingTier",
	"ReservationRecord",
	"ReservationStatus",
	"SubSelection",
	"Zone",
	"LoggingNotificationSink",
	"NotificationSink",
	"RecordingNotificationSink",
	"ExpiryReaper",
	"ReaperHandle",
	"ReservationYamlRepository",
]
