"""Domain enumerations and state-transition rules."""

import enum


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DRIVER_ASSIGNED = "driver_assigned"
    DRIVER_EN_ROUTE = "driver_en_route"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# State machine: maps current status -> set of valid next statuses
BOOKING_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.DRIVER_ASSIGNED, BookingStatus.CANCELLED},
    BookingStatus.DRIVER_ASSIGNED: {
        BookingStatus.DRIVER_EN_ROUTE,
        BookingStatus.CONFIRMED,
        BookingStatus.CANCELLED,
    },
    BookingStatus.DRIVER_EN_ROUTE: {BookingStatus.IN_PROGRESS},
    BookingStatus.IN_PROGRESS: {BookingStatus.COMPLETED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
}

# Edges that exist only behind a named guard; a plain request never takes them.
GUARDED_TRANSITIONS: dict[tuple[BookingStatus, BookingStatus], str] = {
    (BookingStatus.DRIVER_EN_ROUTE, BookingStatus.CANCELLED): "no_show",
}

# A driver is holding one of these bookings
DRIVER_HELD_STATUSES = frozenset(
    {
        BookingStatus.DRIVER_ASSIGNED,
        BookingStatus.DRIVER_EN_ROUTE,
        BookingStatus.IN_PROGRESS,
    }
)

TERMINAL_STATUSES = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED})


class Actor(str, enum.Enum):
    CUSTOMER = "customer"
    DRIVER = "driver"
    ADMIN = "admin"
    SYSTEM = "system"


_S = BookingStatus

# Who may take each edge of the state machine
TRANSITION_ACTORS: dict[tuple[BookingStatus, BookingStatus], frozenset[Actor]] = {
    (_S.PENDING, _S.CONFIRMED): frozenset({Actor.ADMIN, Actor.SYSTEM}),
    (_S.PENDING, _S.CANCELLED): frozenset({Actor.CUSTOMER, Actor.ADMIN, Actor.SYSTEM}),
    (_S.CONFIRMED, _S.DRIVER_ASSIGNED): frozenset(
        {Actor.ADMIN, Actor.SYSTEM, Actor.CUSTOMER}
    ),
    (_S.CONFIRMED, _S.CANCELLED): frozenset({Actor.CUSTOMER, Actor.ADMIN, Actor.SYSTEM}),
    (_S.DRIVER_ASSIGNED, _S.DRIVER_EN_ROUTE): frozenset({Actor.DRIVER}),
    (_S.DRIVER_ASSIGNED, _S.CONFIRMED): frozenset({Actor.DRIVER, Actor.SYSTEM, Actor.ADMIN}),
    (_S.DRIVER_ASSIGNED, _S.CANCELLED): frozenset(
        {Actor.CUSTOMER, Actor.ADMIN, Actor.SYSTEM}
    ),
    (_S.DRIVER_EN_ROUTE, _S.IN_PROGRESS): frozenset({Actor.DRIVER}),
    (_S.DRIVER_EN_ROUTE, _S.CANCELLED): frozenset({Actor.DRIVER}),
    (_S.IN_PROGRESS, _S.COMPLETED): frozenset({Actor.DRIVER, Actor.ADMIN}),
}


class DriverStatus(str, enum.Enum):
    AVAILABLE = "available"
    BUSY = "busy"
    OFFLINE = "offline"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    CARD = "card"
    PROMPTPAY = "promptpay"
    BANK_TRANSFER = "bank_transfer"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class FeeStatus(str, enum.Enum):
    WAIVED = "waived"
    PENDING = "pending"


class FeeReason(str, enum.Enum):
    NO_DRIVER = "no_driver"
    FREE = "free"
    DRIVER_LATE_WAIVER = "driver_late_waiver"
    LATE_FEE = "late_fee"
    FEE_DISABLED = "fee_disabled"
    NO_SHOW_FEE = "no_show_fee"
    WAIT_TIME_NOT_MET = "wait_time_not_met"


class CancellationReason(str, enum.Enum):
    CHANGE_OF_PLANS = "change_of_plans"
    FOUND_ALTERNATIVE = "found_alternative"
    DRIVER_TOO_FAR = "driver_too_far"
    WRONG_DETAILS = "wrong_details"
    CUSTOMER_NO_SHOW = "customer_no_show"
    OTHER = "other"


class DisputeStatus(str, enum.Enum):
    OPEN = "open"
    UNDER_REVIEW = "under_review"
    RESOLVED = "resolved"
    REJECTED = "rejected"


DISPUTE_TRANSITIONS: dict[DisputeStatus, set[DisputeStatus]] = {
    DisputeStatus.OPEN: {
        DisputeStatus.UNDER_REVIEW,
        DisputeStatus.RESOLVED,
        DisputeStatus.REJECTED,
    },
    DisputeStatus.UNDER_REVIEW: {DisputeStatus.RESOLVED, DisputeStatus.REJECTED},
    DisputeStatus.RESOLVED: set(),
    DisputeStatus.REJECTED: set(),
}


class DisputeReason(str, enum.Enum):
    WRONG_CHARGE = "wrong_charge"
    SERVICE_NOT_PROVIDED = "service_not_provided"
    DRIVER_MISCONDUCT = "driver_misconduct"
    SAFETY_CONCERN = "safety_concern"
    WRONG_ROUTE = "wrong_route"
    VEHICLE_ISSUE = "vehicle_issue"
    UNFAIR_FEE = "unfair_fee"
    OTHER = "other"


class RatingType(str, enum.Enum):
    CUSTOMER_TO_DRIVER = "customer_to_driver"
    DRIVER_TO_CUSTOMER = "driver_to_customer"


class RatingReason(str, enum.Enum):
    LATE = "late"
    DIRTY_CAR = "dirty_car"
    BAD_DRIVING = "bad_driving"
    RUDE = "rude"
    WRONG_ROUTE = "wrong_route"
    NO_SHOW = "no_show"
    MESSY = "messy"
    OTHER = "other"
