from datetime import date
from unittest.mock import AsyncMock, patch

import pytest
from tortoise.exceptions import OperationalError

from models import CurtailmentRecord
from schemas import CurtailmentRecordIn
from services import replace
from services.errors import PersistenceError

D = date(2025, 3, 28)


def rec(farm, volume=-5.2, price=45.0, period=24):
    return CurtailmentRecordIn(
        settlement_date=D, settlement_period=period, farm_id=farm, lead_party_name=None,
        volume=volume, payment=abs(volume) * price, original_price=price, final_price=price,
        so_flag=True, cadl_flag=False,
    )


def test_apply_replaces_the_whole_partition(run_db):
    async def scenario():
        await replace.apply(D, 24, [rec("A"), rec("B")])
        await replace.apply(D, 25, [rec("Z", period=25)])
        n = await replace.apply(D, 24, [rec("B", volume=-1.0), rec("C")])
        farms = await CurtailmentRecord.filter(settlement_date=D, settlement_period=24).order_by("farm_id").values_list("farm_id", flat=True)
        other = await CurtailmentRecord.filter(settlement_period=25).count()
        return n, farms, other

    n, farms, other = run_db(scenario)
    assert n == 2
    assert farms == ["B", "C"]
    assert other == 1


def test_apply_rejects_records_from_another_partition(run_db):
    async def scenario():
        with pytest.raises(ValueError):
            await replace.apply(D, 24, [rec("A", period=23)])

    run_db(scenario)


def test_failed_insert_rolls_back_the_delete(run_db):
    async def scenario():
        await replace.apply(D, 24, [rec("A"), rec("B")])
        with patch.object(CurtailmentRecord, "bulk_create", new=AsyncMock(side_effect=OperationalError("disk full"))):
            with pytest.raises(PersistenceError) as exc:
                await replace.apply(D, 24, [rec("C")])
        assert exc.value.corrupted is False
        return await replace.load_partition(D, 24)

    rows = run_db(scenario)
    assert sorted(r.farm_id for r in rows) == ["A", "B"]


def test_reconcile_partition_skips_identical_data(run_db):
    async def scenario():
        first, written1 = await replace.reconcile_partition(D, 24, [rec("A")])
        ids_before = await CurtailmentRecord.all().values_list("id", flat=True)
        second, written2 = await replace.reconcile_partition(D, 24, [rec("A", volume=-5.201)])
        ids_after = await CurtailmentRecord.all().values_list("id", flat=True)
        return first, written1, second, written2, ids_before, ids_after

    first, w1, second, w2, before, after = run_db(scenario)
    assert len(first.missing) == 1 and w1 == 1
    assert len(second.identical) == 1 and w2 == 0
    assert before == after


def test_reconcile_partition_removes_stale_farms(run_db):
    async def scenario():
        await replace.apply(D, 24, [rec("A"), rec("B")])
        d, written = await replace.reconcile_partition(D, 24, [rec("A")])
        return d, written, await replace.load_partition(D, 24)

    d, written, rows = run_db(scenario)
    assert d.stale == ["B"]
    assert written == 1
    assert [r.farm_id for r in rows] == ["A"]


def test_keep_stale_carries_absent_farms_over(run_db):
    async def scenario():
        await replace.apply(D, 24, [rec("A"), rec("B", volume=-1.0)])
        d, inserted = await replace.reconcile_partition(D, 24, [rec("A"), rec("C")], keep_stale=True)
        farms = await CurtailmentRecord.filter(settlement_date=D, settlement_period=24).order_by("farm_id").values_list("farm_id", flat=True)
        return d, inserted, list(farms)

    d, inserted, farms = run_db(scenario)
    assert d.kept == ["B"]
    assert d.stale == []
    assert inserted == 3
    assert farms == ["A", "B", "C"]
