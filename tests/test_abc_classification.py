from __future__ import annotations

from supplyplan.schemas.forecast_impact import AbcClass
from supplyplan.services.abc_classification import compute_abc_classification
from tests.test_utils import make_forecast_import, make_product, make_state


def test_cumulative_revenue_share_assigns_classes():
    state = make_state(
        products=[
            make_product("P1", avg_selling_price_gross_eur=10),
            make_product("P2", avg_selling_price_gross_eur="10,00"),
            make_product("P3", avg_selling_price_gross_eur=10),
            make_product("P4", avg_selling_price_gross_eur=10, status="inactive"),
            make_product("P5"),
        ],
        forecast_import=make_forecast_import(
            {
                "P1": {"2025-04": 700},
                "P2": {"2025-04": 200},
                "P3": {"2025-03": 10000, "2025-04": 100},
                "P4": {"2025-04": 5000},
                "P5": {"2025-04": 5000},
            }
        ),
    )

    result = compute_abc_classification(state, "2025-04")

    assert result.months == ["2025-04"]
    assert result.by_sku["p1"].abc_class == AbcClass.A
    assert result.by_sku["p1"].revenue_6m == 7000
    assert result.by_sku["p2"].abc_class == AbcClass.B
    assert result.by_sku["p3"].abc_class == AbcClass.C
    assert result.by_sku["p3"].units_6m == 100

    inactive = result.by_sku["p4"]
    assert inactive.abc_class is None
    assert inactive.included_in_ranking is False
    assert result.by_sku["p5"].abc_class is None


def test_ranking_window_is_six_months_from_now():
    months = {f"2025-{month:02d}": 1 for month in range(1, 13)}
    state = make_state(
        products=[make_product("P1", avg_selling_price_gross_eur=1)],
        forecast_import=make_forecast_import({"P1": months}),
    )

    result = compute_abc_classification(state, "2025-03")

    assert result.months == ["2025-03", "2025-04", "2025-05", "2025-06", "2025-07", "2025-08"]
    assert result.by_sku["p1"].units_6m == 6


def test_zero_revenue_falls_back_to_c():
    state = make_state(products=[make_product("P1", avg_selling_price_gross_eur=5)])

    result = compute_abc_classification(state, "2025-04")

    assert result.by_sku["p1"].abc_class == AbcClass.C
