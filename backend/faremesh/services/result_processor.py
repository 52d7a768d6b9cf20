"""
Merge dei risultati multi-supplier: dedupe → sort → limit, più i filtri a posteriori.

Tutte funzioni pure su liste in memoria: nessuna chiamata di rete qui.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from faremesh.config import MergeSettings
from faremesh.services.suppliers.base import NormalizedOffer


def _timestamp(value: datetime | None) -> float:
    return value.timestamp() if value is not None else 0.0


def fingerprint(offer: NormalizedOffer) -> str:
    """origine | destinazione | partenza al secondo | compagnia validante | primo volo."""
    leg = offer.first_leg
    if leg is None:
        return offer.id or f"{offer.supplier_code}:{offer.reference_id}"

    departure = leg.departure.at.strftime("%Y-%m-%d %H:%M:%S") if leg.departure.at else ""
    flight_number = leg.segments[0].flight_number if leg.segments else ""
    return "|".join([
        leg.departure.airport_code,
        leg.arrival.airport_code,
        departure,
        offer.validating_airline.code,
        flight_number or "",
    ])


def deduplicate(offers: list[NormalizedOffer]) -> list[NormalizedOffer]:
    """Tiene la prima offerta incontrata per ogni fingerprint."""
    seen: set[str] = set()
    unique: list[NormalizedOffer] = []
    for offer in offers:
        key = fingerprint(offer)
        if key in seen:
            continue
        seen.add(key)
        unique.append(offer)
    return unique


_SORT_KEYS: dict[str, Callable[[NormalizedOffer], float]] = {
    "price":     lambda o: o.price.total,
    "duration":  lambda o: o.first_leg.duration_minutes if o.first_leg else 0,
    "departure": lambda o: _timestamp(o.first_leg.departure.at) if o.first_leg else 0.0,
    "arrival":   lambda o: _timestamp(o.first_leg.arrival.at) if o.first_leg else 0.0,
    "stops":     lambda o: o.first_leg.stops if o.first_leg else 0,
}


def sort_offers(offers: list[NormalizedOffer], sort_by: str = "price", direction: str = "asc") -> list[NormalizedOffer]:
    """
    Ordinamento stabile per chiave; chiave sconosciuta → price.
    "desc" è esattamente l'inverso dell'ordine ascendente (anche sui pari merito).
    """
    key = _SORT_KEYS.get(sort_by, _SORT_KEYS["price"])
    ordered = sorted(offers, key=key)
    if direction == "desc":
        ordered.reverse()
    return ordered


def process_results(offers: list[NormalizedOffer], merge: MergeSettings | None = None) -> list[NormalizedOffer]:
    merge = merge or MergeSettings()
    if merge.deduplicate:
        offers = deduplicate(offers)
    offers = sort_offers(offers, merge.sort_by, merge.sort_direction)
    return offers[:max(merge.max_results, 0)]


# ---------------------------------------------------------------------------
# Filtri a posteriori (applicati dal chiamante dopo search())
# ---------------------------------------------------------------------------

@dataclass
class OfferFilters:
    min_price: float | None = None
    max_price: float | None = None
    airline_code: str | None = None
    max_stops: int | None = None
    refundable: bool | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OfferFilters":
        return cls(**{k: data.get(k) for k in ("min_price", "max_price", "airline_code", "max_stops", "refundable")})


def filter_results(offers: list[NormalizedOffer], filters: OfferFilters | dict[str, Any]) -> list[NormalizedOffer]:
    """Filtri in AND; valori None sono no-op. refundable=True tiene solo le rimborsabili."""
    if isinstance(filters, dict):
        filters = OfferFilters.from_dict(filters)

    def _keep(offer: NormalizedOffer) -> bool:
        if filters.min_price is not None and offer.price.total < filters.min_price:
            return False
        if filters.max_price is not None and offer.price.total > filters.max_price:
            return False
        if filters.airline_code is not None and offer.validating_airline.code != filters.airline_code:
            return False
        if filters.max_stops is not None:
            stops = offer.first_leg.stops if offer.first_leg else 0
            if stops > filters.max_stops:
                return False
        if filters.refundable and not offer.refundable:
            return False
        return True

    return [o for o in offers if _keep(o)]
