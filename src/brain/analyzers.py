# src/brain/analyzers.py
"""
Default pattern analyzers, one per PatternCategory.

Each analyzer takes a list of telemetry records (mappings) and returns a
PatternFinding, or None when the data shows nothing worth reporting. The
engine applies the confidence threshold, so analyzers report what they see.
"""

import math
import statistics
from collections import Counter
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from src.brain.models import PatternCategory, PatternFinding
from src.brain.scoring import clamp

Records = Sequence[Mapping[str, Any]]
Analyzer = Callable[[Records], Any]

TIMESTAMP_FIELDS = ("timestamp", "created_at", "updated_at", "synced_at")
BEHAVIOR_FIELDS = ("status", "type", "kind", "action", "event")
DURATION_FIELDS = ("duration_ms", "execution_time_ms", "processing_time_ms", "latency_ms", "execution_time")

ANOMALY_Z_THRESHOLD = 2.0
ANOMALY_MIN_SAMPLES = 5


def _as_epoch(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, datetime):
        return value.timestamp()
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
        except ValueError:
            return None
    return None


def _first_field(record: Mapping[str, Any], names: Sequence[str]) -> Any:
    for name in names:
        if name in record and record[name] is not None:
            return record[name]
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def analyze_temporal(records: Records) -> Optional[PatternFinding]:
    """Regular arrival cadence: low variation between consecutive timestamps"""
    stamps = sorted(
        ts for ts in (_as_epoch(_first_field(r, TIMESTAMP_FIELDS)) for r in records) if ts is not None
    )
    if len(stamps) < 3:
        return None

    gaps = [later - earlier for earlier, later in zip(stamps, stamps[1:])]
    mean_gap = statistics.fmean(gaps)
    if mean_gap <= 0:
        return None

    variation = statistics.pstdev(gaps) / mean_gap
    return PatternFinding(
        confidence=clamp(1.0 - variation / 2),
        frequency=len(stamps) / len(records),
        implications=(
            f"Records arrive every {mean_gap:.1f}s on average",
            f"Arrival variation is {variation:.0%} of the mean gap",
        ),
        recommendations=(
            f"Align the sync interval with the observed {mean_gap:.0f}s cadence",
        ),
    )


def analyze_behavioral(records: Records) -> Optional[PatternFinding]:
    """A dominant value in the first behavioral field the records carry"""
    for field_name in BEHAVIOR_FIELDS:
        values = [str(r[field_name]) for r in records if r.get(field_name) is not None]
        if len(values) >= 3:
            break
    else:
        return None

    value, count = Counter(values).most_common(1)[0]
    share = count / len(values)
    return PatternFinding(
        confidence=share,
        frequency=share,
        implications=(f"{share:.0%} of records have {field_name}={value!r}",),
        recommendations=(f"Optimize the common path for {field_name}={value!r}",),
    )


def analyze_structural(records: Records) -> Optional[PatternFinding]:
    """Schema consistency across records"""
    if len(records) < 2:
        return None

    shapes = Counter(frozenset(r.keys()) for r in records)
    shape, count = shapes.most_common(1)[0]
    share = count / len(records)
    recommendations = ["Validate records against the dominant schema at ingest"]
    if len(shapes) > 1:
        recommendations.append(f"Normalize {len(shapes) - 1} divergent record shape(s)")

    return PatternFinding(
        confidence=share,
        frequency=share,
        implications=(f"{share:.0%} of records share a {len(shape)}-field schema",),
        recommendations=tuple(recommendations),
    )


def analyze_performance(records: Records) -> Optional[PatternFinding]:
    """Stable execution durations"""
    durations = [
        float(d) for d in (_first_field(r, DURATION_FIELDS) for r in records) if _is_number(d)
    ]
    if len(durations) < 3:
        return None

    mean = statistics.fmean(durations)
    if mean <= 0:
        return None

    variation = statistics.pstdev(durations) / mean
    slowest = max(durations)
    recommendations = []
    if slowest > 2 * mean:
        recommendations.append(f"Investigate slow outliers up to {slowest:.0f} ({slowest / mean:.1f}x the mean)")
    recommendations.append("Size the worker pool from the mean execution time")

    return PatternFinding(
        confidence=clamp(1.0 - variation),
        frequency=len(durations) / len(records),
        implications=(f"Mean execution time {mean:.1f} with {variation:.0%} variation",),
        recommendations=tuple(recommendations),
    )


def analyze_anomaly(records: Records) -> Optional[PatternFinding]:
    """Numeric outliers by z-score, across every numeric field"""
    columns: Dict[str, List[float]] = {}
    for record in records:
        for key, value in record.items():
            if _is_number(value):
                columns.setdefault(key, []).append(float(value))

    worst_z = 0.0
    outlier_fields: List[str] = []
    outlier_count = 0
    for key, values in columns.items():
        if len(values) < ANOMALY_MIN_SAMPLES:
            continue
        mean = statistics.fmean(values)
        spread = statistics.pstdev(values)
        if spread == 0:
            continue
        scores = [abs(v - mean) / spread for v in values]
        outliers = [z for z in scores if z > ANOMALY_Z_THRESHOLD]
        if outliers:
            outlier_fields.append(key)
            outlier_count += len(outliers)
            worst_z = max(worst_z, max(outliers))

    if not outlier_fields:
        return None

    return PatternFinding(
        confidence=clamp(0.5 + 0.15 * worst_z),
        frequency=outlier_count / len(records),
        implications=(
            f"{outlier_count} outlier value(s) in: {', '.join(outlier_fields)}",
            f"Largest deviation is {worst_z:.1f} standard deviations",
        ),
        recommendations=(f"Review records with outlying {outlier_fields[0]} values",),
    )


DEFAULT_ANALYZERS: Dict[str, Analyzer] = {
    PatternCategory.TEMPORAL.value: analyze_temporal,
    PatternCategory.BEHAVIORAL.value: analyze_behavioral,
    PatternCategory.STRUCTURAL.value: analyze_structural,
    PatternCategory.PERFORMANCE.value: analyze_performance,
    PatternCategory.ANOMALY.value: analyze_anomaly,
}
