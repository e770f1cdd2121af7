"""Upstream contract payload shapes.

A raw contract snapshot arrives in one of four shapes. ``classify_payload``
tags it with a PayloadVariant (checked in a fixed order) and
``ContractSnapshot.from_payload`` resolves the logical sections every shape
carries in a different place:

=========== ============= ============= ============= =========
section     SNAPSHOT_V3   UNIFIED       CHAIN         FLAT
=========== ============= ============= ============= =========
details     details       contract      contract      root
greeks      greeks/root   greeks/root   greeks/root   root
quote       last_quote    nbbo          last_quote    root
trade       last_trade    last_trade    last_trade    root
day         day           day           day           day
underlying  underlying_asset  --        --            --
=========== ============= ============= ============= =========

A section missing from the payload resolves to an empty mapping, so field
lookups never raise.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from options_pipeline.core.enums import PayloadVariant

_EMPTY: Mapping[str, Any] = {}


def classify_payload(raw: Mapping[str, Any]) -> PayloadVariant:
    """Return the variant tag of a raw contract snapshot."""
    if isinstance(raw.get("details"), Mapping):
        return PayloadVariant.SNAPSHOT_V3
    if isinstance(raw.get("contract"), Mapping):
        if isinstance(raw.get("nbbo"), Mapping):
            return PayloadVariant.UNIFIED
        return PayloadVariant.CHAIN
    return PayloadVariant.FLAT


def _section(raw: Mapping[str, Any], key: str, fallback: Mapping[str, Any] = _EMPTY) -> Mapping[str, Any]:
    value = raw.get(key)
    return value if isinstance(value, Mapping) else fallback


@dataclass(frozen=True)
class ContractSnapshot:
    """A raw payload with its sections resolved for its variant."""

    variant: PayloadVariant
    root: Mapping[str, Any]
    details: Mapping[str, Any] = field(default_factory=dict)
    greeks: Mapping[str, Any] = field(default_factory=dict)
    quote: Mapping[str, Any] = field(default_factory=dict)
    trade: Mapping[str, Any] = field(default_factory=dict)
    day: Mapping[str, Any] = field(default_factory=dict)
    underlying: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, raw: Mapping[str, Any]) -> ContractSnapshot:
        variant = classify_payload(raw)
        day = _section(raw, "day")

        if variant is PayloadVariant.FLAT:
            return cls(
                variant=variant,
                root=raw,
                details=raw,
                greeks=raw,
                quote=raw,
                trade=raw,
                day=day,
            )

        greeks = _section(raw, "greeks", fallback=raw)
        trade = _section(raw, "last_trade")

        if variant is PayloadVariant.SNAPSHOT_V3:
            return cls(
                variant=variant,
                root=raw,
                details=raw["details"],
                greeks=greeks,
                quote=_section(raw, "last_quote"),
                trade=trade,
                day=day,
                underlying=_section(raw, "underlying_asset"),
            )

        quote_key = "nbbo" if variant is PayloadVariant.UNIFIED else "last_quote"
        return cls(
            variant=variant,
            root=raw,
            details=raw["contract"],
            greeks=greeks,
            quote=_section(raw, quote_key),
            trade=trade,
            day=day,
        )

    @property
    def contract_id(self) -> Any:
        return first_present(
            self.details.get("ticker"),
            self.details.get("contract_id"),
            self.root.get("contract_id"),
        )

    def detail(self, name: str) -> Any:
        """Contract detail field, falling back to the payload root."""
        return first_present(self.details.get(name), self.root.get(name))


def first_present(*values: Any) -> Any:
    """Return the first value that is not None (or None)."""
    for value in values:
        if value is not None:
            return value
    return None
