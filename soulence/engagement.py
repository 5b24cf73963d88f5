"""
Engagement Scorer.

Scores how engaged a user was in a session from the behavioral signals it
produced.  Each signal kind carries a fixed weight; positive kinds
(completion, duration) pull the score up from the neutral 0.5 and negative
kinds (retry, skip, dropoff) pull it down::

    total_weight   = sum(|w(s)|)
    weighted_score = sum(w(s))
    score          = clamp(0.5 + weighted_score / total_weight, 0, 1)

With no signals the score is exactly 0.5: no evidence, no opinion.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from types import MappingProxyType

from soulence.models import EngagementScore, Signal, SignalKind
from soulence.weighting import clamp, stable_sum

logger = logging.getLogger(__name__)

NEUTRAL_SCORE = 0.5

SIGNAL_WEIGHTS: MappingProxyType[SignalKind, float] = MappingProxyType({
    SignalKind.COMPLETION: 0.3,
    SignalKind.RETRY: -0.4,
    SignalKind.DURATION: 0.2,
    SignalKind.SKIP: -0.3,
    SignalKind.DROPOFF: -0.5,
})


def _check_weights_exhaustive() -> None:
    missing = set(SignalKind) - set(SIGNAL_WEIGHTS)
    if missing:
        raise RuntimeError(
            f"Signal kinds without an engagement weight: {sorted(k.value for k in missing)}"
        )
    extra = [k for k in SIGNAL_WEIGHTS if not isinstance(k, SignalKind)]
    if extra:
        raise RuntimeError(f"Engagement weights for unknown signal kinds: {extra}")
    zero = [k.value for k, w in SIGNAL_WEIGHTS.items() if w == 0]
    if zero:
        raise RuntimeError(f"Signal kinds with a zero engagement weight: {zero}")


_check_weights_exhaustive()


def calculate_engagement_score(signals: Iterable[Signal]) -> float:
    """Score a multiset of signals; independent of their order."""
    weights = [SIGNAL_WEIGHTS[signal.kind] for signal in signals]
    total_weight = stable_sum(abs(w) for w in weights)
    if total_weight <= 0:
        return NEUTRAL_SCORE
    weighted_score = stable_sum(weights)
    return clamp(NEUTRAL_SCORE + weighted_score / total_weight, 0.0, 1.0)


def score_engagement(
    user_id: str,
    session_id: str,
    signals: Iterable[Signal],
) -> EngagementScore:
    """Compute a fresh ``EngagementScore`` for one user's session.

    Signals belonging to another user or session are ignored.
    """
    relevant = [
        s for s in signals if s.user_id == user_id and s.session_id == session_id
    ]
    value = calculate_engagement_score(relevant)
    logger.debug(
        "Engagement for user %s session %s: %.3f from %d signals",
        user_id, session_id, value, len(relevant),
    )
    return EngagementScore(
        user_id=user_id,
        session_id=session_id,
        value=value,
        signal_count=len(relevant),
    )
