# File: core/reconciliation/grouper.py
"""
Reading Grouper

Partitions shift-boundary readings per (shift, asset kind, asset) and sorts
each partition into exactly one bucket:
- complete:   one START and one END reading
- incomplete: a lone START or a lone END reading
- anomalies:  more than one reading of the same type (never auto-resolved)

The same code path serves pump meter readings and tank dip readings.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from core.errors import DuplicateReadingError
from core.models import AssetKind, ReadingType

logger = logging.getLogger(__name__)

GroupKey = Tuple[str, AssetKind, str]


@dataclass(frozen=True)
class ReadingGroup:
    """A complete START/END pair for one asset in one shift. Built per grouping pass, never cached."""
    shift_id: str
    asset_kind: AssetKind
    asset_id: str
    start: Any
    end: Any

    @property
    def readings(self) -> Tuple[Any, Any]:
        return (self.start, self.end)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "shift_id": self.shift_id,
            "asset_kind": self.asset_kind.value,
            "asset_id": self.asset_id,
            "start": self.start.to_dict(),
            "end": self.end.to_dict(),
        }


@dataclass(frozen=True)
class IncompleteReading:
    reading: Any
    missing: ReadingType

    @property
    def asset_id(self) -> str:
        return self.reading.asset_id

    @property
    def asset_kind(self) -> AssetKind:
        return self.reading.asset_kind

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset_kind": self.asset_kind.value,
            "asset_id": self.asset_id,
            "missing": self.missing.value,
            "reading": self.reading.to_dict(),
        }


@dataclass(frozen=True)
class DuplicateReadings:
    shift_id: str
    asset_kind: AssetKind
    asset_id: str
    duplicated_types: Tuple[ReadingType, ...]
    # Every reading of the partition, not only those of the duplicated type
    readings: Tuple[Any, ...]

    def count(self, reading_type: ReadingType) -> int:
        return sum(1 for reading in self.readings if ReadingType(reading.reading_type) is reading_type)

    def describe(self) -> str:
        counts = " and ".join(f"{self.count(rtype)} {rtype.value}" for rtype in self.duplicated_types)
        return f"{self.asset_kind.value} {self.asset_id} in shift {self.shift_id} has {counts} readings"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "shift_id": self.shift_id,
            "asset_kind": self.asset_kind.value,
            "asset_id": self.asset_id,
            "duplicated_types": [rtype.value for rtype in self.duplicated_types],
            "counts": {rtype.value: self.count(rtype) for rtype in ReadingType},
            "reading_ids": [reading.reading_id for reading in self.readings],
        }


@dataclass(frozen=True)
class GroupingResult:
    complete: Tuple[ReadingGroup, ...] = ()
    incomplete: Tuple[IncompleteReading, ...] = ()
    anomalies: Tuple[DuplicateReadings, ...] = field(default_factory=tuple)

    @property
    def has_anomalies(self) -> bool:
        return bool(self.anomalies)

    def readings(self) -> List[Any]:
        """Every reading across all buckets, for exactly-once accounting."""
        flattened: List[Any] = []
        for group in self.complete:
            flattened.extend(group.readings)
        flattened.extend(item.reading for item in self.incomplete)
        for anomaly in self.anomalies:
            flattened.extend(anomaly.readings)
        return flattened

    def complete_for(self, asset_kind: AssetKind) -> Dict[str, ReadingGroup]:
        return {group.asset_id: group for group in self.complete if group.asset_kind is asset_kind}

    def incomplete_for(self, asset_kind: AssetKind) -> Dict[str, List[IncompleteReading]]:
        found: Dict[str, List[IncompleteReading]] = defaultdict(list)
        for item in self.incomplete:
            if item.asset_kind is asset_kind:
                found[item.asset_id].append(item)
        return dict(found)

    def group_for(self, asset_kind: AssetKind, asset_id: str) -> Optional[ReadingGroup]:
        return self.complete_for(asset_kind).get(asset_id)

    def raise_for_anomalies(self) -> None:
        if not self.anomalies:
            return
        summary = "; ".join(anomaly.describe() for anomaly in self.anomalies)
        raise DuplicateReadingError(
            f"Duplicate readings found: {summary}",
            details={"anomalies": [anomaly.to_dict() for anomaly in self.anomalies]},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "complete": [group.to_dict() for group in self.complete],
            "incomplete": [item.to_dict() for item in self.incomplete],
            "anomalies": [anomaly.to_dict() for anomaly in self.anomalies],
        }


def group_readings(readings: Iterable[Any]) -> GroupingResult:
    """Groups pump and/or tank readings into complete pairs, lone readings and duplicate anomalies."""
    partitions: Dict[GroupKey, List[Any]] = defaultdict(list)
    for reading in readings:
        partitions[reading.key].append(reading)

    complete: List[ReadingGroup] = []
    incomplete: List[IncompleteReading] = []
    anomalies: List[DuplicateReadings] = []

    for (shift_id, asset_kind, asset_id), members in partitions.items():
        by_type: Dict[ReadingType, List[Any]] = defaultdict(list)
        for reading in members:
            by_type[ReadingType(reading.reading_type)].append(reading)

        duplicated = tuple(rtype for rtype in ReadingType if len(by_type[rtype]) > 1)
        if duplicated:
            anomaly = DuplicateReadings(shift_id, asset_kind, asset_id, duplicated, tuple(members))
            logger.warning(f"{anomaly.describe()}. Reporting as anomaly.")
            anomalies.append(anomaly)
            continue

        starts, ends = by_type[ReadingType.START], by_type[ReadingType.END]
        if starts and ends:
            complete.append(ReadingGroup(shift_id, asset_kind, asset_id, starts[0], ends[0]))
        else:
            for reading in members:
                incomplete.append(IncompleteReading(reading, ReadingType(reading.reading_type).counterpart))

    logger.debug(
        f"Grouped readings into {len(complete)} complete pairs, {len(incomplete)} incomplete readings "
        f"and {len(anomalies)} anomalies."
    )
    return GroupingResult(tuple(complete), tuple(incomplete), tuple(anomalies))
