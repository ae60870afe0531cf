"""Detect structural corruption in a raw persisted page collection."""

from __future__ import annotations

from dataclasses import dataclass, field

DEFAULT_THRESHOLD_PERCENT = 10.0

REQUIRED_FIELDS = ("id", "url", "title")


@dataclass
class CorruptionReport:
    """Verdict for one scan of the raw collection."""

    is_corrupted: bool
    issues: list[str] = field(default_factory=list)
    corrupted_count: int = 0
    total_count: int = 0

    @property
    def corruption_percentage(self) -> float:
        if not self.total_count:
            return 0.0
        return self.corrupted_count / self.total_count * 100


def is_structurally_valid(entry: object) -> bool:
    """True when the entry is a dict carrying a truthy id, url and title."""
    return isinstance(entry, dict) and all(entry.get(name) for name in REQUIRED_FIELDS)


def detect_corruption(
    raw: object,
    threshold_percent: float = DEFAULT_THRESHOLD_PERCENT,
) -> CorruptionReport:
    """Scan ``raw`` without modifying it.

    A missing collection is clean. A collection that is not a list is
    corrupted outright; otherwise it is corrupted when more than
    ``threshold_percent`` of its entries are structurally invalid. A few bad
    entries below the threshold are left for the read path to filter out.
    """
    if raw is None:
        return CorruptionReport(is_corrupted=False)

    if not isinstance(raw, list):
        return CorruptionReport(
            is_corrupted=True,
            issues=[f"Pages data is not an array (got {type(raw).__name__})"],
        )

    issues: list[str] = []
    corrupted = 0
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict):
            issues.append(f"Page at index {index} is not an object")
            corrupted += 1
        elif not is_structurally_valid(entry):
            issues.append(f"Page at index {index} missing required fields")
            corrupted += 1

    report = CorruptionReport(
        is_corrupted=False,
        issues=issues,
        corrupted_count=corrupted,
        total_count=len(raw),
    )
    # Cross-multiplied to keep the boundary exact.
    report.is_corrupted = corrupted * 100 > threshold_percent * len(raw)
    return report
