"""Tests for upstream payload classification and section resolution."""

from __future__ import annotations

from options_pipeline.core.enums import PayloadVariant
from options_pipeline.ingestion.payloads import ContractSnapshot, classify_payload, first_present

UNIFIED = {
    "contract": {
        "ticker": "O:XYZ250620P00090000",
        "contract_type": "put",
        "expiration_date": "2025-06-20",
        "strike_price": 90,
    },
    "nbbo": {"bid": 2.0, "ask": 2.2},
    "greeks": {"delta": -0.4},
    "last_trade": {"price": 2.1},
}

CHAIN = {
    "contract": {"contract_id": "O:XYZ250620C00110000", "expiration_date": "2025-06-20"},
    "last_quote": {"bid": 0.5, "ask": 0.6},
    "delta": 0.3,
}

FLAT = {
    "contract_id": "O:XYZ250620C00120000",
    "expiration_date": "2025-06-20",
    "strike_price": 120,
    "bid": 0.1,
    "ask": 0.15,
    "delta": 0.1,
    "price": 0.12,
    "day": {"close": 0.11},
}


class TestClassifyPayload:
    def test_snapshot_v3(self, make_contract) -> None:
        assert classify_payload(make_contract()) is PayloadVariant.SNAPSHOT_V3

    def test_unified(self) -> None:
        assert classify_payload(UNIFIED) is PayloadVariant.UNIFIED

    def test_chain(self) -> None:
        assert classify_payload(CHAIN) is PayloadVariant.CHAIN

    def test_flat(self) -> None:
        assert classify_payload(FLAT) is PayloadVariant.FLAT

    def test_details_takes_precedence_over_contract(self, make_contract) -> None:
        payload = make_contract(contract={"ticker": "other"}, nbbo={"bid": 1})
        assert classify_payload(payload) is PayloadVariant.SNAPSHOT_V3

    def test_non_mapping_details_is_ignored(self) -> None:
        assert classify_payload({"details": "n/a", "contract_id": "X"}) is PayloadVariant.FLAT


class TestContractSnapshot:
    def test_snapshot_v3_sections(self, make_contract) -> None:
        snap = ContractSnapshot.from_payload(make_contract())
        assert snap.details["exercise_style"] == "american"
        assert snap.quote["bid"] == 1.0
        assert snap.trade["price"] == 1.15
        assert snap.greeks["theta"] == -0.15
        assert snap.underlying["price"] == 145.0
        assert snap.contract_id == "O:XYZ250620C00100000"

    def test_unified_reads_nbbo(self) -> None:
        snap = ContractSnapshot.from_payload(UNIFIED)
        assert snap.quote == {"bid": 2.0, "ask": 2.2}
        assert snap.detail("strike_price") == 90
        assert snap.contract_id == "O:XYZ250620P00090000"
        assert snap.underlying == {}

    def test_chain_greeks_fall_back_to_root(self) -> None:
        snap = ContractSnapshot.from_payload(CHAIN)
        assert snap.greeks.get("delta") == 0.3
        assert snap.quote["bid"] == 0.5
        assert snap.contract_id == "O:XYZ250620C00110000"

    def test_flat_sections_are_the_root(self) -> None:
        snap = ContractSnapshot.from_payload(FLAT)
        assert snap.quote["bid"] == 0.1
        assert snap.trade["price"] == 0.12
        assert snap.day == {"close": 0.11}
        assert snap.contract_id == "O:XYZ250620C00120000"

    def test_detail_falls_back_to_root(self) -> None:
        payload = {"contract": {"ticker": "T"}, "expiration_date": "2025-06-20"}
        snap = ContractSnapshot.from_payload(payload)
        assert snap.detail("expiration_date") == "2025-06-20"

    def test_missing_sections_are_empty(self) -> None:
        snap = ContractSnapshot.from_payload({"details": {"ticker": "T"}})
        assert snap.quote == {}
        assert snap.trade == {}
        assert snap.day == {}


def test_first_present() -> None:
    assert first_present(None, 0, 5) == 0
    assert first_present(None, None) is None
