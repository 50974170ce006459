from __future__ import annotations

import pytest

from risk.fees import DEFAULT_VENUE_FEES, FALLBACK_FEES, FeeSchedule, VenueFees


def test_lookup_is_case_insensitive():
    fees = FeeSchedule()
    assert fees.canonical_name("binance") == "Binance"
    assert fees.lookup(" KRAKEN ") == DEFAULT_VENUE_FEES["Kraken"]
    assert fees.taker_rate("kraken") == pytest.approx(0.0026)


def test_unknown_venue_falls_back_to_default_only_in_fees_for():
    fees = FeeSchedule()
    assert fees.lookup("Nowhere") is None
    assert fees.fees_for("Nowhere") == FALLBACK_FEES

    strict = FeeSchedule(default=None)
    with pytest.raises(KeyError):
        strict.fees_for("Nowhere")


def test_overrides_return_new_schedule():
    base = FeeSchedule()
    patched = base.with_overrides({"binance": {"taker": 0.0004}, "Deribit": {"maker": 0.0, "taker": 0.0005}})

    assert patched.taker_rate("Binance") == pytest.approx(0.0004)
    assert patched.maker_rate("Binance") == pytest.approx(0.001)  # unchanged fields are kept
    assert patched.taker_rate("deribit") == pytest.approx(0.0005)
    assert base.taker_rate("Binance") == pytest.approx(0.001)


@pytest.mark.parametrize(
    "fees",
    [
        VenueFees(maker=-0.1, taker=0.001),
        VenueFees(maker=0.001, taker=1.0),
        VenueFees(maker=0.001, taker=0.001, max_leverage=0.5),
    ],
)
def test_invalid_fees_rejected(fees):
    with pytest.raises(ValueError):
        fees.validate()


def test_duplicate_venue_names_rejected():
    with pytest.raises(ValueError):
        FeeSchedule(venues={"OKX": FALLBACK_FEES, "okx": FALLBACK_FEES})
