from datetime import date

import pytest

from models import DailySummary, MonthlySummary, YearlySummary
from schemas import CurtailmentRecordIn
from services import replace, summaries


def rec(d, period, farm, volume, price):
    return CurtailmentRecordIn(
        settlement_date=d, settlement_period=period, farm_id=farm, lead_party_name=None,
        volume=volume, payment=abs(volume) * price, original_price=price, final_price=price,
        so_flag=True, cadl_flag=False,
    )


def test_month_bounds_roll_over_december():
    assert summaries.month_bounds("2024-12") == (date(2024, 12, 1), date(2025, 1, 1))
    assert summaries.year_month_of(date(2025, 3, 5)) == "2025-03"


def test_cascade_sums_each_level_from_its_children(run_db):
    d1, d2, d3 = date(2025, 3, 27), date(2025, 3, 28), date(2025, 4, 1)

    async def scenario():
        await replace.apply(d1, 1, [rec(d1, 1, "A", -10.0, 20.0)])
        await replace.apply(d2, 24, [rec(d2, 24, "A", -5.2, 45.0), rec(d2, 24, "B", -1.0, 10.0)])
        await replace.apply(d3, 2, [rec(d3, 2, "A", -2.0, 5.0)])
        await summaries.cascade([d1, d2, d3])
        return (
            await DailySummary.get(summary_date=d2),
            await MonthlySummary.get(year_month="2025-03"),
            await MonthlySummary.get(year_month="2025-04"),
            await YearlySummary.get(year="2025"),
        )

    daily, march, april, year = run_db(scenario)
    assert daily.total_curtailed_energy == pytest.approx(6.2)
    assert daily.total_payment == pytest.approx(244.0)
    assert daily.record_count == 2
    assert march.total_curtailed_energy == pytest.approx(16.2)
    assert march.total_payment == pytest.approx(444.0)
    assert april.total_curtailed_energy == pytest.approx(2.0)
    assert year.total_curtailed_energy == pytest.approx(18.2)
    assert year.total_payment == pytest.approx(454.0)


def test_recompute_is_idempotent_and_tracks_replacements(run_db):
    d = date(2025, 3, 28)

    async def scenario():
        await replace.apply(d, 24, [rec(d, 24, "A", -5.2, 45.0)])
        await summaries.cascade([d])
        await summaries.cascade([d])
        first = (await DailySummary.get(summary_date=d)).total_payment

        await replace.apply(d, 24, [rec(d, 24, "A", -1.0, 45.0)])
        await summaries.cascade([d])
        second = (await MonthlySummary.get(year_month="2025-03")).total_payment
        return first, second, await DailySummary.all().count()

    first, second, n = run_db(scenario)
    assert first == pytest.approx(234.0)
    assert second == pytest.approx(45.0)
    assert n == 1


def test_summary_rows_disappear_when_leaves_do(run_db):
    d = date(2025, 3, 28)

    async def scenario():
        await replace.apply(d, 24, [rec(d, 24, "A", -5.2, 45.0)])
        await summaries.cascade([d])
        await replace.apply(d, 24, [])
        await summaries.cascade([d])
        return (
            await DailySummary.filter(summary_date=d).exists(),
            await MonthlySummary.filter(year_month="2025-03").exists(),
            await YearlySummary.filter(year="2025").exists(),
        )

    assert run_db(scenario) == (False, False, False)
