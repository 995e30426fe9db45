# backend/modules/loyalty/events/loyalty_events.py

"""
Domain events consumed by the achievement engine.

The set of events is closed: each event type has exactly one dataclass with
the fields that event can carry, and ``parse_event`` refuses anything else.
"""

from dataclasses import MISSING, dataclass, fields
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, ClassVar, Dict, Mapping, Optional, Type

from ..exceptions import InvalidEvent


@dataclass(frozen=True)
class LoyaltyEvent:
    """Base loyalty event"""

    event_type: ClassVar[str] = ""
    version: ClassVar[int] = 1

    def to_dict(self) -> Dict[str, Any]:
        payload = {f.name: getattr(self, f.name) for f in fields(self)}
        return {"event_type": self.event_type, "version": self.version, "payload": payload}


@dataclass(frozen=True)
class BookingCompleted(LoyaltyEvent):
    """Emitted when a diner's booking is fulfilled"""

    event_type: ClassVar[str] = "booking_completed"
    booking_id: str
    restaurant_id: Optional[str] = None
    amount: Optional[Decimal] = None


@dataclass(frozen=True)
class BookingMilestone(LoyaltyEvent):
    """Emitted when the completed booking count reaches a new value"""

    event_type: ClassVar[str] = "booking_milestone"
    total_bookings: int


@dataclass(frozen=True)
class TierAchieved(LoyaltyEvent):
    """Emitted when a balance change moves a user into a higher tier"""

    event_type: ClassVar[str] = "tier_achieved"
    tier: str


@dataclass(frozen=True)
class SpendingMilestone(LoyaltyEvent):
    """Emitted when lifetime spend crosses a configured threshold"""

    event_type: ClassVar[str] = "spending_milestone"
    total_spent: Decimal


@dataclass(frozen=True)
class Anniversary(LoyaltyEvent):
    """Membership tenure, in days"""

    event_type: ClassVar[str] = "anniversary"
    days_since_join: int


@dataclass(frozen=True)
class SocialShare(LoyaltyEvent):
    event_type: ClassVar[str] = "social_share"
    platform: str
    restaurant_id: Optional[str] = None


EVENT_TYPES: Dict[str, Type[LoyaltyEvent]] = {
    cls.event_type: cls
    for cls in (
        BookingCompleted,
        BookingMilestone,
        TierAchieved,
        SpendingMilestone,
        Anniversary,
        SocialShare,
    )
}


def _to_int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ValueError("must be an integer")
    result = int(value)
    if result < 0:
        raise ValueError("must not be negative")
    return result


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValueError("must be a number")
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        raise ValueError("must be a number")
    if not result.is_finite() or result < 0:
        raise ValueError("must be a finite, non-negative number")
    return result


def _to_str(value: Any) -> str:
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise ValueError("must be a string")
    result = str(value).strip()
    if not result:
        raise ValueError("must not be empty")
    return result


_CONVERTERS: Dict[str, Callable[[Any], Any]] = {
    "booking_id": _to_str,
    "restaurant_id": _to_str,
    "amount": _to_decimal,
    "total_bookings": _to_int,
    "tier": lambda value: _to_str(value).upper(),
    "total_spent": _to_decimal,
    "days_since_join": _to_int,
    "platform": _to_str,
}


def parse_event(event_type: str, payload: Optional[Mapping[str, Any]]) -> LoyaltyEvent:
    """
    Build a typed event from an event type name and a raw payload.

    Raises:
        InvalidEvent: unknown event type, unknown or missing fields, or a
            field value of the wrong shape
    """
    event_cls = EVENT_TYPES.get(event_type)
    if event_cls is None:
        raise InvalidEvent(event_type, "unknown event type")

    payload = dict(payload or {})
    version = payload.pop("version", event_cls.version)
    if version != event_cls.version:
        raise InvalidEvent(event_type, f"unsupported version {version}")

    known = {f.name: f for f in fields(event_cls)}
    unknown = set(payload) - set(known)
    if unknown:
        raise InvalidEvent(event_type, f"unknown fields: {', '.join(sorted(unknown))}")

    values = {}
    for name, field in known.items():
        if name not in payload or payload[name] is None:
            if field.default is MISSING:
                raise InvalidEvent(event_type, f"missing required field '{name}'")
            continue
        try:
            values[name] = _CONVERTERS[name](payload[name])
        except ValueError as e:
            raise InvalidEvent(event_type, f"field '{name}' {e}")

    return event_cls(**values)


def coerce_event(event_type: str, payload: Any) -> LoyaltyEvent:
    """Accept either an already typed event or a raw mapping"""
    if isinstance(payload, LoyaltyEvent):
        if payload.event_type != event_type:
            raise InvalidEvent(
                event_type, f"payload is a '{payload.event_type}' event"
            )
        return payload
    if payload is not None and not isinstance(payload, Mapping):
        raise InvalidEvent(event_type, "payload must be a mapping")
    return parse_event(event_type, payload)
