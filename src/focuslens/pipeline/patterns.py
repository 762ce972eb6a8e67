"""Threshold rules evaluated against a freshly updated daily aggregate."""

from __future__ import annotations

from dataclasses import dataclass

from focuslens.config import Settings, settings as default_settings
from focuslens.schemas import DailyStats

LOW_FOCUS = "low_focus"
HIGH_DISTRACTION = "high_distraction"


@dataclass(frozen=True)
class AlertRules:
    focus_time_floor: float = 60.0
    event_count_floor: int = 10
    tab_switch_ceiling: int = 20

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> AlertRules:
        settings = settings or default_settings
        return cls(
            focus_time_floor=settings.focus_time_floor,
            event_count_floor=settings.event_count_floor,
            tab_switch_ceiling=settings.tab_switch_ceiling,
        )


def evaluate_rules(stats: DailyStats, rules: AlertRules) -> list[str]:
    """Names of every rule that fires, in a stable order. Rules are independent."""
    fired: list[str] = []
    if stats.focus_time < rules.focus_time_floor and stats.event_count > rules.event_count_floor:
        fired.append(LOW_FOCUS)
    if stats.tab_switches > rules.tab_switch_ceiling:
        fired.append(HIGH_DISTRACTION)
    return fired
