"""Plan subsystem: duration tokens, permission table, tier gating."""

from .duration import Duration, DurationKind, duration_to_date, parse_duration
from .limits import (
    DateRangeValidation,
    PlanLimitsState,
    Tier,
    detect_tier_from_limits,
    get_required_plan,
    has_endpoint_access,
    parse_plan_payload,
    validate_date_range,
)

__all__ = [
    "Duration",
    "DurationKind",
    "duration_to_date",
    "parse_duration",
    "DateRangeValidation",
    "PlanLimitsState",
    "Tier",
    "detect_tier_from_limits",
    "get_required_plan",
    "has_endpoint_access",
    "parse_plan_payload",
    "validate_date_range",
]
