from datetime import date

from schemas import CurtailmentRecordIn
from services.reconciliation import diff

D = date(2025, 3, 28)


def rec(farm="T_SGRWO-1", volume=-5.2, price=45.0, so=True, cadl=False, lead="Seagreen Wind Energy Limited"):
    return CurtailmentRecordIn(
        settlement_date=D, settlement_period=24, farm_id=farm, lead_party_name=lead,
        volume=volume, payment=abs(volume) * price, original_price=price, final_price=price,
        so_flag=so, cadl_flag=cadl,
    )


def test_classifies_missing_changed_identical_and_stale():
    authoritative = [rec("A"), rec("B", volume=-3.0), rec("C")]
    persisted = [rec("B", volume=-2.0), rec("C"), rec("D")]

    d = diff(authoritative, persisted, tolerance=0.01)
    assert [r.farm_id for r in d.missing] == ["A"]
    assert [p.authoritative.farm_id for p in d.changed] == ["B"]
    assert d.changed[0].fields == ["volume"]
    assert [r.farm_id for r in d.identical] == ["C"]
    assert d.stale == ["D"]
    assert d.needs_replace


def test_small_volume_drift_is_identical():
    d = diff([rec(volume=-5.201)], [rec(volume=-5.2)], tolerance=0.01)
    assert len(d.identical) == 1
    assert not d.changed
    assert not d.needs_replace


def test_price_outside_tolerance_is_changed():
    d = diff([rec(price=45.02)], [rec(price=45.0)], tolerance=0.01)
    assert d.changed[0].fields == ["original_price", "final_price"]


def test_flags_compare_exactly():
    d = diff([rec(so=True, cadl=True)], [rec(so=True, cadl=False)], tolerance=0.01)
    assert d.changed[0].fields == ["cadl_flag"]


def test_stale_records_alone_force_a_replace():
    d = diff([], [rec("A")], tolerance=0.01)
    assert d.stale == ["A"]
    assert d.needs_replace


def test_empty_against_empty_is_a_no_op():
    d = diff([], [])
    assert not d.needs_replace
