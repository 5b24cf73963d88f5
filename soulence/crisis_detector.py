"""
Crisis Pattern Detector.

Decides from a user's recent mood entries whether a crisis pattern is
present.  The binary trigger is deliberately simple: the mean of the last
``window_size`` scores (default 3) at or below ``crisis_mean_threshold``
(default 3 on the 1-10 scale).  With fewer entries than the window the
result is never triggered -- sparse data must not produce a false positive.

Two further facets are evaluated and reported next to the trigger because
one boolean conflates different risk signatures:

* ``consistent_low_mood`` -- every entry of the last K is below a threshold.
* ``rapid_decline`` -- the least-squares slope over the last K entries is at
  or below a (negative) threshold.

The facets inform human reviewers; they do not change ``triggered``.

DISCLAIMER: This is a heuristic trigger for human escalation, not a
clinical assessment.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import Optional

from soulence.config import DEFAULT_POLICY, DetectionThresholds
from soulence.models import (
    MOOD_SCORE_MAX,
    MOOD_SCORE_MIN,
    CrisisDetermination,
    MoodEntry,
)
from soulence.weighting import clamp, stable_sum


def detect_crisis_pattern(
    user_id: str,
    entries: Sequence[MoodEntry],
    thresholds: Optional[DetectionThresholds] = None,
) -> CrisisDetermination:
    """Evaluate a user's mood history.

    Args:
        user_id: The user being evaluated.  Entries of other users are ignored.
        entries: Mood entries in any order; they are sorted by
            ``occurred_at`` ascending before evaluation.
        thresholds: Detection thresholds; defaults to ``DEFAULT_POLICY``.

    Returns:
        A ``CrisisDetermination``.  Never raises on sparse data.
    """
    thresholds = thresholds or DEFAULT_POLICY.detection
    history = sorted(
        (e for e in entries if e.user_id == user_id),
        key=lambda e: e.occurred_at,
    )

    if len(history) < thresholds.window_size:
        return CrisisDetermination(
            user_id=user_id,
            triggered=False,
            insufficient_data=True,
            trigger_window=tuple(history),
            reasons=(
                f"Insufficient data: {len(history)} of "
                f"{thresholds.window_size} entries required.",
            ),
        )

    window = history[-thresholds.window_size:]
    mean = stable_sum(e.score for e in window) / len(window)
    triggered = mean <= thresholds.crisis_mean_threshold
    consistent_low = _consistent_low_mood(history, thresholds)
    declining = _rapid_decline(history, thresholds)

    reasons: list[str] = []
    if triggered:
        reasons.append(
            f"Mean mood of last {len(window)} entries ({mean:.2f}) <= "
            f"crisis threshold ({thresholds.crisis_mean_threshold:g})."
        )
    if consistent_low:
        reasons.append(
            f"Last {thresholds.consistent_low_window} entries all below "
            f"{thresholds.consistent_low_threshold:g}."
        )
    if declining:
        reasons.append(
            f"Rapid decline over last {thresholds.decline_window} entries."
        )

    return CrisisDetermination(
        user_id=user_id,
        triggered=triggered,
        severity=severity_from_mean(mean),
        mean_score=mean,
        consistent_low_mood=consistent_low,
        rapid_decline=declining,
        trigger_window=tuple(window),
        reasons=tuple(reasons),
    )


def severity_from_mean(mean: float) -> int:
    """Round a mean mood half-up to a whole severity level in [1, 10]."""
    return int(clamp(math.floor(mean + 0.5), MOOD_SCORE_MIN, MOOD_SCORE_MAX))


def mood_slope(scores: Sequence[float]) -> float:
    """Least-squares slope of *scores* against their index (points per entry)."""
    n = len(scores)
    if n < 2:
        return 0.0
    mean_x = (n - 1) / 2
    mean_y = stable_sum(scores) / n
    num = stable_sum((i - mean_x) * (y - mean_y) for i, y in enumerate(scores))
    den = stable_sum((i - mean_x) ** 2 for i in range(n))
    return num / den


def _consistent_low_mood(
    history: Sequence[MoodEntry], thresholds: DetectionThresholds
) -> bool:
    k = thresholds.consistent_low_window
    if len(history) < k:
        return False
    return all(e.score < thresholds.consistent_low_threshold for e in history[-k:])


def _rapid_decline(
    history: Sequence[MoodEntry], thresholds: DetectionThresholds
) -> bool:
    k = thresholds.decline_window
    if len(history) < k:
        return False
    slope = mood_slope([e.score for e in history[-k:]])
    return slope <= thresholds.decline_slope_threshold
