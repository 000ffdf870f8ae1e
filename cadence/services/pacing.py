"""
Delivery pacing - decides when a campaign may send.

The business-hours window is always enforced, whatever the mode.
Modes only change throughput: how many sends a campaign gets per runner
cycle and how much jitter is added between consecutive steps.
"""
import logging
import random
from datetime import datetime, time, timedelta, timezone
from typing import Optional, Union

from cadence.schemas.delivery import DeliveryConfig
from cadence.utils.timezone import as_utc, get_zoneinfo

logger = logging.getLogger(__name__)


class PacingProfile:
    """Throughput policy for a delivery mode."""

    def __init__(
        self,
        name: str,
        max_sends_per_cycle: Optional[int],
        jitter_seconds: tuple[int, int] = (0, 0),
        throttle_deferral_seconds: int = 60,
    ):
        self.name = name
        self.max_sends_per_cycle = max_sends_per_cycle  # None = unlimited
        self.jitter_seconds = jitter_seconds
        self.throttle_deferral_seconds = throttle_deferral_seconds

    def jitter(self, rng: Optional[random.Random] = None) -> timedelta:
        low, high = self.jitter_seconds
        if high <= 0:
            return timedelta(0)
        return timedelta(seconds=(rng or random).randint(low, high))

    def allows(self, sent_this_cycle: int) -> bool:
        return self.max_sends_per_cycle is None or sent_this_cycle < self.max_sends_per_cycle

    def __repr__(self) -> str:
        return f"<PacingProfile {self.name} max={self.max_sends_per_cycle}>"


_PROFILES: dict[str, PacingProfile] = {}


def register_profile(profile: PacingProfile) -> None:
    _PROFILES[profile.name] = profile


def get_profile(mode: str) -> PacingProfile:
    """Profile for a mode. Unknown modes get the growth profile."""
    profile = _PROFILES.get(mode)
    if profile is None:
        logger.warning("Unknown delivery mode '%s', using growth", mode)
        return _PROFILES["growth"]
    return profile


register_profile(PacingProfile("stealth", max_sends_per_cycle=10, jitter_seconds=(60, 300), throttle_deferral_seconds=600))
register_profile(PacingProfile("growth", max_sends_per_cycle=50, jitter_seconds=(5, 60), throttle_deferral_seconds=120))
register_profile(PacingProfile("turbo", max_sends_per_cycle=None))


def _coerce_config(config: Union[DeliveryConfig, dict, None]) -> DeliveryConfig:
    if isinstance(config, DeliveryConfig):
        return config
    return DeliveryConfig.from_config(config)


def _zone(config: DeliveryConfig):
    if config.timezone:
        return get_zoneinfo(config.timezone)
    from cadence.config import get_settings
    return get_zoneinfo(get_settings().default_send_timezone)


def _day_allowed(day, config: DeliveryConfig) -> bool:
    return not (config.weekdays_only and day.weekday() >= 5)


def is_permissible(now: datetime, config: Union[DeliveryConfig, dict, None]) -> bool:
    """True if a message may be sent at `now` (local window [start, end), allowed weekday)."""
    config = _coerce_config(config)
    local = as_utc(now).astimezone(_zone(config))
    if not _day_allowed(local.date(), config):
        return False
    window = config.schedule_window
    return window.start <= local.hour < window.end


def next_permissible(now: datetime, config: Union[DeliveryConfig, dict, None]) -> datetime:
    """
    Earliest instant at or after `now` when sending is permitted (UTC).
    Before the window opens: same day at start. At or after close: next allowed day at start.
    """
    config = _coerce_config(config)
    now = as_utc(now)
    tz = _zone(config)
    local = now.astimezone(tz)
    window = config.schedule_window

    for offset in range(8):
        day = local.date() + timedelta(days=offset)
        if not _day_allowed(day, config):
            continue
        opens = datetime.combine(day, time(hour=window.start), tzinfo=tz)
        if window.end == 24:
            closes = datetime.combine(day + timedelta(days=1), time(0), tzinfo=tz)
        else:
            closes = datetime.combine(day, time(hour=window.end), tzinfo=tz)
        if local < closes:
            return max(opens.astimezone(timezone.utc), now)

    # Unreachable with at least five allowed days per week
    return now
