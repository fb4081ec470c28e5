from __future__ import annotations

from campaign_engine.errors import ValidationError
from campaign_engine.extensions import db
from campaign_engine.models import AutomationSettings, Campaign

MIN_CLICKS_RANGE = (100, 100000)
REMAINING_CLICKS_RANGE = (1000, 1000000)
WAIT_MINUTES_RANGE = (1, 60)
DEBOUNCE_SECONDS_RANGE = (30, 3600)


def get_settings() -> AutomationSettings:
    row = AutomationSettings.query.first()
    if not row:
        row = AutomationSettings()
        db.session.add(row)
        db.session.commit()
    return row


def _int_in_range(data: dict, field: str, bounds: tuple[int, int]) -> int:
    try:
        value = int(data[field])
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer", field=field)
    lo, hi = bounds
    if value < lo or value > hi:
        raise ValidationError(f"{field} must be between {lo} and {hi}", field=field)
    return value


def validate_thresholds(minimum: int, remaining: int) -> None:
    if minimum >= remaining:
        raise ValidationError(
            "remaining_clicks_threshold must be greater than minimum_clicks_threshold",
            field="remaining_clicks_threshold",
        )


def update_settings(data: dict) -> AutomationSettings:
    """Validate everything first; nothing is written unless all fields pass."""
    s = get_settings()
    minimum = s.minimum_clicks_threshold
    remaining = s.remaining_clicks_threshold
    wait = s.default_wait_minutes
    debounce = s.debounce_seconds

    if data.get("minimum_clicks_threshold") is not None:
        minimum = _int_in_range(data, "minimum_clicks_threshold", MIN_CLICKS_RANGE)
    if data.get("remaining_clicks_threshold") is not None:
        remaining = _int_in_range(data, "remaining_clicks_threshold", REMAINING_CLICKS_RANGE)
    if data.get("default_wait_minutes") is not None:
        wait = _int_in_range(data, "default_wait_minutes", WAIT_MINUTES_RANGE)
    if data.get("debounce_seconds") is not None:
        debounce = _int_in_range(data, "debounce_seconds", DEBOUNCE_SECONDS_RANGE)
    validate_thresholds(minimum, remaining)

    s.minimum_clicks_threshold = minimum
    s.remaining_clicks_threshold = remaining
    s.default_wait_minutes = wait
    s.debounce_seconds = debounce
    db.session.commit()
    return s


def effective_thresholds(campaign: Campaign, settings: AutomationSettings) -> tuple[int, int]:
    minimum = campaign.minimum_clicks_threshold or settings.minimum_clicks_threshold
    remaining = campaign.remaining_clicks_threshold or settings.remaining_clicks_threshold
    return int(minimum), int(remaining)


def update_campaign_thresholds(campaign: Campaign, data: dict, settings: AutomationSettings) -> Campaign:
    """Per-campaign overrides; an explicit null clears the override."""
    minimum = campaign.minimum_clicks_threshold
    remaining = campaign.remaining_clicks_threshold
    wait = campaign.wait_minutes

    if "minimum_clicks_threshold" in data:
        minimum = None if data["minimum_clicks_threshold"] is None else _int_in_range(data, "minimum_clicks_threshold", MIN_CLICKS_RANGE)
    if "remaining_clicks_threshold" in data:
        remaining = None if data["remaining_clicks_threshold"] is None else _int_in_range(data, "remaining_clicks_threshold", REMAINING_CLICKS_RANGE)
    if data.get("wait_minutes") is not None:
        wait = _int_in_range(data, "wait_minutes", WAIT_MINUTES_RANGE)

    validate_thresholds(minimum or settings.minimum_clicks_threshold, remaining or settings.remaining_clicks_threshold)

    campaign.minimum_clicks_threshold = minimum
    campaign.remaining_clicks_threshold = remaining
    campaign.wait_minutes = wait
    db.session.commit()
    return campaign
