"""
Answer aggregation for FormState snapshots.

Several snapshots of the same form (a second device, an autosave, a
server copy) may carry different values for the same field. This module
combines them, detects genuine concurrent edits, and resolves them.

Algorithm per field:
    1. Collect (value, timestamp, source) from every snapshot holding a
       non-null value
    2. One contributor          -> take it, no conflict
    3. Sort by timestamp (stable) and inspect ADJACENT pairs
    4. Pair differs AND delta <= threshold -> Conflict
    5. No conflict -> most recent value wins silently
    6. Conflict    -> resolved by the configured strategy

IMPORTANT: Aggregation is schema-agnostic. It operates on keyed answer
maps and timestamps only, and never raises on malformed values.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from formlogic.clock import Clock, elapsed_ms, parse_timestamp, to_iso, utc_now
from formlogic.model import FormState, value_kind

logger = logging.getLogger(__name__)


class ResolutionStrategy(Enum):
    TIMESTAMP = "timestamp"
    PRIORITY = "priority"
    MANUAL = "manual"
    MERGE = "merge"


class MergeStrategy(Enum):
    """Which contribution wins when a strategy needs a single winner."""
    LAST_WRITE_WINS = "last-write-wins"
    FIRST_WRITE_WINS = "first-write-wins"
    VALUE_BASED = "value-based"


class ConflictType(Enum):
    VALUE = "value"
    STRUCTURE = "structure"


class Severity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class AggregatorOptions:
    """
    Aggregator configuration.

    Properties:
        conflict_resolution_strategy: How conflicting fields are resolved
        auto_resolve_conflicts: When False every conflict is left for
            manual review (the newest value is used provisionally)
        conflict_threshold: Max gap in milliseconds for two differing
            values to count as a concurrent edit
        merge_strategy: Winner selection used by timestamp-style resolution
        source_priority: source id -> rank, used by the priority strategy
            (higher wins)
    """
    conflict_resolution_strategy: ResolutionStrategy = ResolutionStrategy.TIMESTAMP
    auto_resolve_conflicts: bool = True
    conflict_threshold: float = 5000
    merge_strategy: MergeStrategy = MergeStrategy.LAST_WRITE_WINS
    source_priority: Dict[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # wire names ("merge", "first-write-wins") are accepted; unknown ones raise ValueError
        self.conflict_resolution_strategy = ResolutionStrategy(self.conflict_resolution_strategy)
        self.merge_strategy = MergeStrategy(self.merge_strategy)
        self.source_priority = {str(k): v for k, v in self.source_priority.items()}


@dataclass(frozen=True)
class Contribution:
    """One snapshot's value for one field."""
    value: Any
    timestamp: datetime
    source: int
    source_id: str


@dataclass
class Conflict:
    """Two timestamp-adjacent snapshots disagreeing within the threshold."""
    field_id: str
    current_value: Any
    incoming_value: Any
    timestamp: str
    conflict_type: ConflictType
    severity: Severity
    current_source: int = 0
    incoming_source: int = 0


@dataclass
class Resolution:
    field_id: str
    resolved_value: Any
    strategy: ResolutionStrategy
    timestamp: str
    resolved_by: Optional[str] = None
    requires_review: bool = False


@dataclass
class AggregationResult:
    aggregated_data: Dict[str, Any] = field(default_factory=dict)
    conflicts: List[Conflict] = field(default_factory=list)
    resolutions: List[Resolution] = field(default_factory=list)

    @property
    def pending_reviews(self) -> List[Resolution]:
        return [r for r in self.resolutions if r.requires_review]


# =========================================================================
# COMPARISON AND CLASSIFICATION
# =========================================================================

def _normalize(value: Any) -> Any:
    # 1.0 and 1 are the same answer; keep True distinct from 1
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, dict):
        return {k: _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    return value


def canonical(value: Any) -> str:
    """Deterministic encoding used for structural equality."""
    return json.dumps(_normalize(value), sort_keys=True, separators=(",", ":"))


def values_differ(left: Any, right: Any) -> bool:
    """
    Strict comparison of two answer values.

    Kinds must match (True never equals 1). Containers compare by
    canonical serialization; values that cannot be serialized are
    treated as equal.
    """
    left_kind, right_kind = value_kind(left), value_kind(right)
    if left_kind != right_kind:
        return True
    if left_kind == "object":
        try:
            return canonical(left) != canonical(right)
        except (TypeError, ValueError):
            return False
    return left != right


def classify_conflict(left: Any, right: Any) -> Tuple[ConflictType, Severity]:
    left_kind, right_kind = value_kind(left), value_kind(right)
    if left_kind != right_kind:
        return ConflictType.STRUCTURE, Severity.HIGH
    if left_kind == "object":
        return ConflictType.STRUCTURE, Severity.MEDIUM
    return ConflictType.VALUE, Severity.LOW


def _identity(value: Any) -> Any:
    try:
        return canonical(value)
    except (TypeError, ValueError):
        return repr(value)


class AnswerAggregator:
    """
    Merges FormState snapshots and keeps a conflict/resolution history.

    The history lives for the aggregator's lifetime and is cleared only
    by clear_history().
    """

    def __init__(self, options: Optional[AggregatorOptions] = None, clock: Optional[Clock] = None) -> None:
        self.options = options or AggregatorOptions()
        self.clock: Clock = clock or utc_now
        self._conflict_history: List[Conflict] = []
        self._resolution_history: List[Resolution] = []

    # ---------------------------------------------------------------------
    # Entry point
    # ---------------------------------------------------------------------

    def aggregate_answers(
        self,
        snapshots: Sequence[FormState],
        source_ids: Optional[Sequence[str]] = None,
    ) -> AggregationResult:
        """
        Merge snapshots into one answer map.

        Args:
            snapshots: FormState snapshots of the same form, in any order
            source_ids: One label per snapshot ("server", "phone", ...)
                looked up in `source_priority`. Defaults to each
                snapshot's position as a string ("0", "1", ...).
        """
        if source_ids is not None and len(source_ids) != len(snapshots):
            raise ValueError(
                f"Got {len(source_ids)} source ids for {len(snapshots)} snapshots"
            )
        if not snapshots:
            return AggregationResult()
        if len(snapshots) == 1:
            return AggregationResult(aggregated_data=dict(snapshots[0].answers))

        form_ids = {s.form_id for s in snapshots}
        if len(form_ids) > 1:
            logger.warning("Aggregating snapshots from different forms: %s", sorted(form_ids))

        if source_ids is None:
            sources = [str(i) for i in range(len(snapshots))]
        else:
            sources = [str(s) for s in source_ids]
        now = self.clock()
        timestamps = [self._snapshot_time(s, now) for s in snapshots]

        field_ids: Dict[str, None] = {}
        for snapshot in snapshots:
            for field_id in snapshot.answers:
                field_ids.setdefault(field_id, None)

        result = AggregationResult()
        for field_id in field_ids:
            contributions = [
                Contribution(s.answers[field_id], timestamps[i], i, sources[i])
                for i, s in enumerate(snapshots)
                if s.answers.get(field_id) is not None
            ]
            if not contributions:
                continue
            if len(contributions) == 1:
                result.aggregated_data[field_id] = contributions[0].value
                continue

            contributions.sort(key=lambda c: c.timestamp)
            conflicts = self._detect_field_conflicts(field_id, contributions)
            if not conflicts:
                result.aggregated_data[field_id] = contributions[-1].value
                continue

            value, strategy, review = self._resolve_field(contributions)
            resolution = Resolution(
                field_id=field_id,
                resolved_value=value,
                strategy=strategy,
                timestamp=to_iso(now),
                requires_review=review,
            )
            result.aggregated_data[field_id] = value
            result.conflicts.extend(conflicts)
            result.resolutions.append(resolution)
            self._conflict_history.extend(conflicts)
            self._resolution_history.append(resolution)

        if result.conflicts:
            logger.info(
                "Aggregated %d snapshots: %d conflicts on %d fields",
                len(snapshots), len(result.conflicts), len(result.resolutions),
            )
        return result

    # ---------------------------------------------------------------------
    # Detection
    # ---------------------------------------------------------------------

    def _snapshot_time(self, snapshot: FormState, fallback: datetime) -> datetime:
        parsed = parse_timestamp(snapshot.last_saved)
        if parsed is None:
            if snapshot.last_saved:
                logger.debug("Unparseable lastSaved %r on %s; using now", snapshot.last_saved, snapshot.form_id)
            return fallback
        return parsed

    def _detect_field_conflicts(self, field_id: str, contributions: List[Contribution]) -> List[Conflict]:
        conflicts: List[Conflict] = []
        for current, incoming in zip(contributions, contributions[1:]):
            delta = elapsed_ms(current.timestamp, incoming.timestamp)
            if delta > self.options.conflict_threshold:
                continue
            if not values_differ(current.value, incoming.value):
                continue
            conflict_type, severity = classify_conflict(current.value, incoming.value)
            conflicts.append(Conflict(
                field_id=field_id,
                current_value=current.value,
                incoming_value=incoming.value,
                timestamp=to_iso(incoming.timestamp),
                conflict_type=conflict_type,
                severity=severity,
                current_source=current.source,
                incoming_source=incoming.source,
            ))
        return conflicts

    # ---------------------------------------------------------------------
    # Resolution
    # ---------------------------------------------------------------------

    def _resolve_field(self, contributions: List[Contribution]) -> Tuple[Any, ResolutionStrategy, bool]:
        """Returns (value, strategy used, requires manual review)."""
        strategy = self.options.conflict_resolution_strategy
        if not self.options.auto_resolve_conflicts or strategy == ResolutionStrategy.MANUAL:
            return contributions[-1].value, ResolutionStrategy.MANUAL, True

        if strategy == ResolutionStrategy.PRIORITY:
            return self._resolve_by_priority(contributions), strategy, False
        if strategy == ResolutionStrategy.MERGE:
            return self._resolve_by_merge(contributions), strategy, False
        return self._pick_winner(contributions).value, strategy, False

    def _pick_winner(self, contributions: List[Contribution]) -> Contribution:
        merge_strategy = self.options.merge_strategy
        if merge_strategy == MergeStrategy.FIRST_WRITE_WINS:
            return contributions[0]
        if merge_strategy == MergeStrategy.VALUE_BASED:
            counts = Counter(_identity(c.value) for c in contributions)
            top = max(counts.values())
            for contribution in reversed(contributions):
                if counts[_identity(contribution.value)] == top:
                    return contribution
        return contributions[-1]

    def _resolve_by_priority(self, contributions: List[Contribution]) -> Any:
        priorities = self.options.source_priority
        if not priorities:
            return self._pick_winner(contributions).value
        best = max(priorities.get(c.source_id, 0) for c in contributions)
        ranked = [c for c in contributions if priorities.get(c.source_id, 0) == best]
        return self._pick_winner(ranked).value

    def _resolve_by_merge(self, contributions: List[Contribution]) -> Any:
        values = [c.value for c in contributions]

        if all(isinstance(v, list) for v in values):
            merged: List[Any] = []
            seen = set()
            for items in values:
                for item in items:
                    key = _identity(item)
                    if key not in seen:
                        seen.add(key)
                        merged.append(item)
            return merged

        if all(isinstance(v, dict) for v in values):
            combined: Dict[str, Any] = {}
            for v in values:
                combined.update(v)
            return combined

        return self._pick_winner(contributions).value

    # ---------------------------------------------------------------------
    # Manual review and history
    # ---------------------------------------------------------------------

    def resolve_manually(
        self,
        result: AggregationResult,
        field_id: str,
        value: Any,
        resolved_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Record an external override for a field left for review.

        Updates `result` in place and returns its aggregated data.
        """
        resolution = Resolution(
            field_id=field_id,
            resolved_value=value,
            strategy=ResolutionStrategy.MANUAL,
            timestamp=to_iso(self.clock()),
            resolved_by=resolved_by,
        )
        result.aggregated_data[field_id] = value
        result.resolutions = [
            replace(r, requires_review=False) if r.field_id == field_id else r
            for r in result.resolutions
        ]
        result.resolutions.append(resolution)
        self._resolution_history = [
            replace(r, requires_review=False) if r.field_id == field_id else r
            for r in self._resolution_history
        ]
        self._resolution_history.append(resolution)
        return result.aggregated_data

    def get_pending_reviews(self) -> List[Resolution]:
        return [r for r in self._resolution_history if r.requires_review]

    def get_conflict_history(self) -> List[Conflict]:
        return list(self._conflict_history)

    def get_resolution_history(self) -> List[Resolution]:
        return list(self._resolution_history)

    def clear_history(self) -> None:
        self._conflict_history = []
        self._resolution_history = []

    def update_options(self, **changes: Any) -> None:
        self.options = replace(self.options, **changes)


def create_answer_aggregator(**options: Any) -> AnswerAggregator:
    return AnswerAggregator(AggregatorOptions(**options))


def aggregate_form_answers(snapshots: Sequence[FormState]) -> Dict[str, Any]:
    """Aggregate with default options and return only the merged data."""
    return AnswerAggregator().aggregate_answers(snapshots).aggregated_data


def detect_form_conflicts(snapshots: Sequence[FormState]) -> List[Conflict]:
    """Aggregate with default options and return only the conflicts."""
    return AnswerAggregator().aggregate_answers(snapshots).conflicts
