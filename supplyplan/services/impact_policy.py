from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping

from supplyplan.schemas.forecast_impact import AbcClass, FoConflictType


@dataclass(frozen=True)
class AbcThreshold:
    pct: float
    units: float

    def exceeded(self, delta_pct: float, delta_units: float) -> bool:
        return abs(delta_pct) > self.pct or abs(delta_units) > self.units


def _default_thresholds() -> dict[AbcClass, AbcThreshold]:
    return {
        AbcClass.A: AbcThreshold(pct=10, units=50),
        AbcClass.B: AbcThreshold(pct=15, units=80),
        AbcClass.C: AbcThreshold(pct=25, units=120),
    }


def _default_abc_base() -> dict[AbcClass, int]:
    return {AbcClass.A: 0, AbcClass.B: 1000, AbcClass.C: 2000}


def _default_type_penalties() -> tuple[tuple[FoConflictType, int], ...]:
    # First matching type wins.
    return (
        (FoConflictType.TIMING_TOO_LATE, -150),
        (FoConflictType.UNITS_TOO_SMALL, -90),
        (FoConflictType.TIMING_TOO_EARLY, -20),
    )


UNKNOWN_MONTH_SCORE = 999999


@dataclass(frozen=True)
class ImpactPolicy:
    """Thresholds and priority weights used when diffing forecast versions.

    Lower severity scores sort first. Swap in a different instance to tune
    sensitivity without touching the traversal in ``forecast_impact``.
    """

    thresholds: Mapping[AbcClass, AbcThreshold] = field(default_factory=_default_thresholds)
    abc_base: Mapping[AbcClass, int] = field(default_factory=_default_abc_base)
    type_penalties: tuple[tuple[FoConflictType, int], ...] = field(default_factory=_default_type_penalties)
    safety_penalty: int = -40
    projection_months: int = 12
    recommendation_horizon_months: int = 12

    def threshold_for(self, abc_class: AbcClass) -> AbcThreshold:
        return self.thresholds.get(abc_class) or self.thresholds[AbcClass.C]

    def threshold_exceeded(self, abc_class: AbcClass, delta_pct: float, delta_units: float) -> bool:
        return self.threshold_for(abc_class).exceeded(delta_pct, delta_units)

    def abc_priority(self, abc_class: AbcClass) -> int:
        return self.abc_base.get(abc_class, max(self.abc_base.values(), default=0))

    def type_penalty(self, conflict_types: Iterable[FoConflictType]) -> int:
        present = set(conflict_types)
        for conflict_type, penalty in self.type_penalties:
            if conflict_type in present:
                return penalty
        return 0

    def severity_score(
        self,
        abc_class: AbcClass,
        conflict_types: Iterable[FoConflictType],
        required_arrival_month: str | None,
        first_safety_month: str | None,
    ) -> int:
        month_score = (
            int(required_arrival_month.replace("-", ""))
            if required_arrival_month
            else UNKNOWN_MONTH_SCORE
        )
        safety = self.safety_penalty if first_safety_month else 0
        return self.abc_priority(abc_class) + month_score + self.type_penalty(conflict_types) + safety


DEFAULT_IMPACT_POLICY = ImpactPolicy()


def percent_delta(previous: float, next_value: float) -> float:
    if previous == 0:
        return 0.0 if next_value == 0 else 100.0
    return (next_value - previous) / abs(previous) * 100
