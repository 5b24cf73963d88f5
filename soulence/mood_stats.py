"""Summary statistics over a user's mood history."""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence

from pydantic import BaseModel, Field

from soulence.models import MoodEntry
from soulence.weighting import stable_sum

TREND_WINDOW = 7
TREND_MARGIN = 0.5


class MoodSummary(BaseModel):
    average_score: float = 0.0
    lowest_score: int = 0
    highest_score: int = 0
    total_entries: int = 0
    consecutive_days: int = 0
    trend: str = Field(default="stable", description="'improving', 'declining' or 'stable'.")
    dominant_emotions: list[str] = Field(default_factory=list)


def summarize_mood(entries: Sequence[MoodEntry], top_emotions: int = 3) -> MoodSummary:
    """Summarize mood entries (any order).  An empty history yields zeros."""
    if not entries:
        return MoodSummary()

    newest_first = sorted(entries, key=lambda e: e.occurred_at, reverse=True)
    scores = [e.score for e in newest_first]
    average = stable_sum(scores) / len(scores)

    emotion_counts = Counter(label for e in newest_first for label in e.emotions)
    dominant = [
        label
        for label, _ in sorted(emotion_counts.items(), key=lambda kv: (-kv[1], kv[0]))
    ][:top_emotions]

    return MoodSummary(
        average_score=round(average, 1),
        lowest_score=min(scores),
        highest_score=max(scores),
        total_entries=len(scores),
        consecutive_days=_consecutive_days(newest_first),
        trend=_trend(scores),
        dominant_emotions=dominant,
    )


def _consecutive_days(newest_first: Sequence[MoodEntry]) -> int:
    # Calendar-day streak ending at the newest entry; same-day entries count once.
    days = []
    for entry in newest_first:
        day = entry.occurred_at.date()
        if not days or days[-1] != day:
            days.append(day)
    streak = 1
    for prev, curr in zip(days, days[1:]):
        if (prev - curr).days == 1:
            streak += 1
        else:
            break
    return streak


def _trend(newest_first_scores: Sequence[int]) -> str:
    if len(newest_first_scores) < 2 * TREND_WINDOW:
        return "stable"
    recent = newest_first_scores[:TREND_WINDOW]
    previous = newest_first_scores[TREND_WINDOW:2 * TREND_WINDOW]
    difference = stable_sum(recent) / TREND_WINDOW - stable_sum(previous) / TREND_WINDOW
    if difference > TREND_MARGIN:
        return "improving"
    if difference < -TREND_MARGIN:
        return "declining"
    return "stable"
