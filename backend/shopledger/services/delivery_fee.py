# Overview: Delivery fee rules for home-delivery orders.

from __future__ import annotations

import unicodedata
from dataclasses import dataclass

from flask import current_app


@dataclass(frozen=True)
class DeliveryQuote:
    fee_cents: int
    zone: str | None
    is_free: bool
    free_threshold_cents: int

    def to_dict(self) -> dict:
        return {
            "fee_cents": self.fee_cents,
            "zone": self.zone,
            "is_free": self.is_free,
            "free_threshold_cents": self.free_threshold_cents,
        }


def normalize_zone(zone: str | None) -> str:
    """'Mont-Ngafula' / "N'djili" / 'Gombé' -> 'montngafula' / 'ndjili' / 'gombe'."""
    if not zone:
        return ""
    decomposed = unicodedata.normalize("NFKD", zone.strip().lower())
    return "".join(ch for ch in decomposed if ch.isalnum() and not unicodedata.combining(ch))


def quote_delivery(delivery_method: str, zone: str | None, subtotal_cents: int) -> DeliveryQuote:
    """
    STORE_PICKUP is always free. HOME_DELIVERY is free at or above the
    threshold, otherwise the zone's fee (unknown zones pay the default).
    """
    threshold = current_app.config["DELIVERY_FREE_THRESHOLD_CENTS"]
    if delivery_method != "HOME_DELIVERY":
        return DeliveryQuote(fee_cents=0, zone=None, is_free=True, free_threshold_cents=threshold)

    if subtotal_cents >= threshold:
        return DeliveryQuote(fee_cents=0, zone=zone, is_free=True, free_threshold_cents=threshold)

    fees = current_app.config["DELIVERY_ZONE_FEES_CENTS"]
    fee = fees.get(normalize_zone(zone), current_app.config["DELIVERY_DEFAULT_FEE_CENTS"])
    return DeliveryQuote(fee_cents=fee, zone=zone, is_free=False, free_threshold_cents=threshold)


def list_zones() -> list[dict]:
    fees = current_app.config["DELIVERY_ZONE_FEES_CENTS"]
    return [
        {"zone": name, "fee_cents": fee}
        for name, fee in sorted(fees.items(), key=lambda kv: (kv[1], kv[0]))
    ]
