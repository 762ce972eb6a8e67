"""Prompt templates for insight generation."""

from __future__ import annotations

from focuslens.schemas import DailyStats

INSIGHT_PROMPT = """You are a concise productivity analyst. Analyze this user's daily behavior data:

- Focus Time: {focus_time} minutes
- Idle Time: {idle_time} minutes
- Tab Switches: {tab_switches}
- App Opens: {app_opens}
- WhatsApp Messages: {whatsapp_messages}
- Study Sessions: {study_sessions}
- Total Events: {event_count}

Give exactly 3 bullet points:
1. One observation about their productivity pattern
2. One specific risk or concern
3. One actionable recommendation

Be direct. No fluff. Max 50 words total."""

EMPTY_INSIGHT = "No insight generated"


def _fmt(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"


def build_insight_prompt(stats: DailyStats) -> str:
    return INSIGHT_PROMPT.format(
        **{name: _fmt(value) for name, value in stats.model_dump().items()}
    )
