"""
Fasting zone table, protocol table and the pure time math built on them.

Nothing in here holds state; the session and schedulers call into it.
"""

import math
from dataclasses import dataclass

from clock import MS_PER_HOUR, MS_PER_MINUTE


@dataclass(frozen=True)
class FastingZone:
    name: str
    start_hour: float
    end_hour: float
    color: str
    description: str
    benefits: tuple = ()

    def to_dict(self):
        return {
            "name": self.name,
            "start_hour": self.start_hour,
            "end_hour": self.end_hour,
            "color": self.color,
            "description": self.description,
            "benefits": list(self.benefits),
        }


# Ascending, contiguous, half-open [start_hour, end_hour) ranges.
FASTING_ZONES = (
    FastingZone(
        "Fed State", 0, 4, "#60A5FA", "Digestion and nutrient absorption",
        ("Blood sugar elevated", "Insulin active", "Energy from food"),
    ),
    FastingZone(
        "Early Fasting", 4, 8, "#818CF8", "Blood sugar normalizing",
        ("Insulin dropping", "Glycogen being used", "Body transitioning"),
    ),
    FastingZone(
        "Fasting State", 8, 12, "#A78BFA", "Fat burning begins",
        ("Glycogen depleted", "Fat oxidation starting", "HGH increasing"),
    ),
    FastingZone(
        "Fat Burning", 12, 16, "#F59E0B", "Peak fat oxidation",
        ("Ketones rising", "Fat as primary fuel", "Mental clarity"),
    ),
    FastingZone(
        "Ketosis", 16, 24, "#ECC94B", "Deep ketosis & autophagy",
        ("Autophagy activated", "Cellular repair", "HGH peaks"),
    ),
    FastingZone(
        "Deep Autophagy", 24, 48, "#10B981", "Maximum cellular renewal",
        ("Stem cell regeneration", "Immune reset", "Deep healing"),
    ),
)

PROTOCOLS = {
    "12:12": {"name": "Beginner", "fast_hours": 12, "eat_hours": 12, "description": "Great for starting out"},
    "14:10": {"name": "Light", "fast_hours": 14, "eat_hours": 10, "description": "Easy daily routine"},
    "16:8": {"name": "Leangains", "fast_hours": 16, "eat_hours": 8, "description": "Most popular protocol"},
    "18:6": {"name": "Moderate", "fast_hours": 18, "eat_hours": 6, "description": "Enhanced fat burning"},
    "20:4": {"name": "Warrior", "fast_hours": 20, "eat_hours": 4, "description": "One main meal"},
    "23:1": {"name": "OMAD", "fast_hours": 23, "eat_hours": 1, "description": "One meal a day"},
    "24h": {"name": "Full Day", "fast_hours": 24, "eat_hours": 0, "description": "Eat-Stop-Eat method"},
    "36h": {"name": "Extended", "fast_hours": 36, "eat_hours": 0, "description": "Deep autophagy"},
    "48h": {"name": "Monk Fast", "fast_hours": 48, "eat_hours": 0, "description": "Maximum benefits"},
    "custom": {"name": "Custom", "fast_hours": 16, "eat_hours": 8, "description": "Your own schedule"},
}

DEFAULT_PROTOCOL = "16:8"
CUSTOM_PROTOCOL = "custom"
MIN_TARGET_HOURS = 1
MAX_TARGET_HOURS = 168

MILESTONE_HOURS = (4, 8, 12, 14, 16, 18, 20, 24, 36, 48, 72)

# (threshold, label), checked top-down
MILESTONE_LABELS = (
    (72, "autophagy"),
    (48, "deep-ketosis"),
    (24, "ketosis"),
    (16, "fat-burning"),
    (12, "fasting"),
    (4, "early"),
)


def protocol_hours(protocol):
    """Fast hours for a named protocol. Raises ValueError if unknown."""
    if protocol not in PROTOCOLS:
        raise ValueError(f"Unknown protocol '{protocol}'. Known: {', '.join(PROTOCOLS)}")
    return PROTOCOLS[protocol]["fast_hours"]


def zone_for_hours(hours):
    """Zone containing `hours` of elapsed fasting, or None before the fast starts.

    Past the last charted zone the deepest zone is returned, not None.
    """
    if hours is None or math.isnan(hours) or hours <= 0:
        return None
    for zone in FASTING_ZONES:
        if zone.start_hour <= hours < zone.end_hour:
            return zone
    return FASTING_ZONES[-1]


def milestone_label(hours):
    """Short zone slug used to label a milestone notification."""
    for threshold, label in MILESTONE_LABELS:
        if hours >= threshold:
            return label
    return "fed"


def progress_percent(elapsed_ms, target_hours):
    if elapsed_ms <= 0 or not target_hours or target_hours <= 0:
        return 0.0
    return min(elapsed_ms / (target_hours * MS_PER_HOUR) * 100, 100.0)


def remaining_ms(elapsed_ms, target_hours):
    if not target_hours or target_hours <= 0:
        return 0.0
    return max(target_hours * MS_PER_HOUR - max(elapsed_ms, 0), 0.0)


def _valid_ms(ms):
    return ms is not None and not math.isnan(ms) and ms > 0


def format_hms(ms):
    """HH:MM:SS for an elapsed duration; invalid values render as zero."""
    if not _valid_ms(ms):
        return "00:00:00"
    total = int(ms // 1000)
    return f"{total // 3600:02d}:{total % 3600 // 60:02d}:{total % 60:02d}"


def format_remaining(elapsed_ms, target_hours):
    if not _valid_ms(elapsed_ms):
        return "Starting..."
    left = target_hours * MS_PER_HOUR - elapsed_ms
    if left <= 0:
        return "Goal reached!"
    hours = int(left // MS_PER_HOUR)
    minutes = int(left % MS_PER_HOUR // MS_PER_MINUTE)
    if hours > 0:
        return f"{hours}h {minutes}m remaining"
    return f"{minutes}m remaining"


def status_line(elapsed_ms, target_hours):
    """One-line status for a running fast, keyed off progress."""
    pct = progress_percent(elapsed_ms, target_hours)
    if pct >= 100:
        return "Goal reached!"
    if pct >= 75:
        return "Almost there!"
    if pct >= 50:
        return "Halfway!"
    return "Fasting"
