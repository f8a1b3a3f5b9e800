from __future__ import annotations

from dataclasses import replace

from supplyplan.schemas.forecast_impact import AbcClass, FoConflictType
from supplyplan.services.impact_policy import (
    DEFAULT_IMPACT_POLICY,
    UNKNOWN_MONTH_SCORE,
    AbcThreshold,
    percent_delta,
)


def test_thresholds_per_abc_class():
    policy = DEFAULT_IMPACT_POLICY

    assert policy.threshold_exceeded(AbcClass.A, 10.5, 0) is True
    assert policy.threshold_exceeded(AbcClass.A, 10, 50) is False
    assert policy.threshold_exceeded(AbcClass.A, 0, -51) is True
    assert policy.threshold_exceeded(AbcClass.B, 15, 80) is False
    assert policy.threshold_exceeded(AbcClass.B, 16, 0) is True
    assert policy.threshold_exceeded(AbcClass.C, 25, 120) is False
    assert policy.threshold_exceeded(AbcClass.C, 0, 121) is True


def test_percent_delta():
    assert percent_delta(0, 0) == 0
    assert percent_delta(0, 5) == 100
    assert percent_delta(200, 150) == -25
    assert percent_delta(-100, -50) == 50


def test_severity_score_components():
    policy = DEFAULT_IMPACT_POLICY

    late = policy.severity_score(
        AbcClass.B,
        [FoConflictType.UNITS_TOO_SMALL, FoConflictType.TIMING_TOO_LATE],
        "2025-06",
        "2025-05",
    )
    assert late == 1000 + 202506 - 150 - 40

    early = policy.severity_score(
        AbcClass.A,
        [FoConflictType.UNITS_TOO_LARGE, FoConflictType.TIMING_TOO_EARLY],
        None,
        None,
    )
    assert early == 0 + UNKNOWN_MONTH_SCORE - 20

    assert policy.severity_score(AbcClass.C, [FoConflictType.UNITS_TOO_LARGE], "2025-01", None) == 2000 + 202501


def test_policy_is_tunable():
    strict = replace(DEFAULT_IMPACT_POLICY, thresholds={AbcClass.A: AbcThreshold(pct=1, units=1)})

    assert strict.threshold_exceeded(AbcClass.A, 2, 0) is True
    assert strict.threshold_for(AbcClass.A).pct == 1
