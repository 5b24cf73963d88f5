"""
Metric Aggregator.

Blends several quality assessments of the same entity into one
confidence-weighted composite::

    composite = sum(score_i * confidence_i) / sum(confidence_i)

Only candidates with positive confidence contribute.  When none do, the
result is an explicit "no data" metric with score 0 and confidence 0 rather
than a dropped metric.  The composite's confidence is the mean confidence of
the contributing candidates.

The aggregator never triggers alerts.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Optional

from soulence.errors import ValidationError
from soulence.models import MetricType, QualityMetric
from soulence.weighting import clamp, stable_sum, weighted_mean

COMPOSITE_CALCULATOR = "metric_aggregator"


def aggregate_quality_metrics(
    candidates: Iterable[QualityMetric],
    entity_id: Optional[str] = None,
    entity_type: Optional[str] = None,
    metric_type: Optional[MetricType] = None,
) -> QualityMetric:
    """Combine candidates for one ``(entity_id, entity_type, metric_type)``.

    The key may be given explicitly (required when *candidates* is empty)
    or is taken from the first candidate.

    Raises:
        ValidationError: If candidates disagree on the key, or the key is
            unknown for an empty candidate set.
    """
    candidates = list(candidates)
    if candidates:
        first = candidates[0]
        entity_id = entity_id if entity_id is not None else first.entity_id
        entity_type = entity_type if entity_type is not None else first.entity_type
        metric_type = metric_type if metric_type is not None else first.metric_type
    if entity_id is None or entity_type is None or metric_type is None:
        raise ValidationError(
            "entity_id, entity_type and metric_type are required to aggregate "
            "an empty candidate set."
        )

    mismatched = [
        c.metric_id
        for c in candidates
        if (c.entity_id, c.entity_type, c.metric_type) != (entity_id, entity_type, metric_type)
    ]
    if mismatched:
        raise ValidationError(
            f"Candidates {mismatched} do not match ({entity_id}, {entity_type}, "
            f"{MetricType(metric_type).value})."
        )

    contributing = [c for c in candidates if c.confidence > 0]
    score, _ = weighted_mean((c.score, c.confidence) for c in contributing)
    if contributing:
        confidence = stable_sum(c.confidence for c in contributing) / len(contributing)
    else:
        confidence = 0.0

    return QualityMetric(
        metric_type=metric_type,
        entity_id=entity_id,
        entity_type=entity_type,
        score=clamp(score, 0.0, 1.0),
        confidence=clamp(confidence, 0.0, 1.0),
        calculated_by=COMPOSITE_CALCULATOR,
        metadata={
            "candidate_count": len(candidates),
            "contributing_count": len(contributing),
        },
    )
