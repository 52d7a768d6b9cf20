"""
Test per result_processor: fingerprint, dedupe, sort, limit e filtri.

Funzioni pure: nessun mock necessario.
"""
from datetime import datetime

import pytest

from conftest import make_offer

from faremesh.config import MergeSettings
from faremesh.services.result_processor import (
    OfferFilters,
    deduplicate,
    filter_results,
    fingerprint,
    process_results,
    sort_offers,
)
from faremesh.services.suppliers.base import Airline, NormalizedOffer, Price


def _offer_without_legs(reference_id="x"):
    return NormalizedOffer(
        supplier_code="duffel",
        reference_id=reference_id,
        price=Price(total=10.0),
        legs=[],
        validating_airline=Airline(code="BA"),
    )


# ---------------------------------------------------------------------------
# fingerprint / deduplicate
# ---------------------------------------------------------------------------

class TestFingerprint:
    def test_format(self):
        offer = make_offer(departure=datetime(2026, 6, 1, 8, 0, 0))
        assert fingerprint(offer) == "JFK|LAX|2026-06-01 08:00:00|AA|AA100"

    def test_ignores_supplier_and_price(self):
        a = make_offer(supplier_code="amadeus", reference_id="1", total=100)
        b = make_offer(supplier_code="duffel", reference_id="off_9", total=95)
        assert fingerprint(a) == fingerprint(b)

    def test_different_flight_number(self):
        a = make_offer(flight_number="AA100")
        b = make_offer(flight_number="AA200")
        assert fingerprint(a) != fingerprint(b)

    def test_no_legs_falls_back_to_id(self):
        offer = _offer_without_legs("abc")
        assert fingerprint(offer) == "duffel_abc"


class TestDeduplicate:
    def test_keeps_first_occurrence(self):
        a = make_offer(supplier_code="amadeus", total=100)
        b = make_offer(supplier_code="duffel", reference_id="2", total=95)
        result = deduplicate([a, b])
        assert result == [a]

    def test_idempotent(self):
        offers = [
            make_offer(reference_id="1"),
            make_offer(reference_id="2"),
            make_offer(reference_id="3", flight_number="AA300"),
        ]
        once = deduplicate(offers)
        assert deduplicate(once) == once
        assert len(once) == 2

    def test_offers_without_legs_are_distinct(self):
        offers = [_offer_without_legs("a"), _offer_without_legs("b")]
        assert len(deduplicate(offers)) == 2


# ---------------------------------------------------------------------------
# sort_offers
# ---------------------------------------------------------------------------

class TestSortOffers:
    def test_by_price_asc(self):
        offers = [make_offer(reference_id=str(p), total=p) for p in (300, 100, 200)]
        result = sort_offers(offers, "price", "asc")
        assert [o.price.total for o in result] == [100, 200, 300]

    @pytest.mark.parametrize("sort_by", ["price", "duration", "departure", "arrival", "stops"])
    def test_desc_is_exact_reverse(self, sort_by):
        offers = [
            make_offer(reference_id="a", total=100, duration=300, stops=1),
            make_offer(reference_id="b", total=100, duration=300, stops=1),
            make_offer(reference_id="c", total=50, duration=90, departure=datetime(2026, 6, 1, 6, 0)),
            _offer_without_legs("no_legs"),
            make_offer(reference_id="d", total=400, duration=600, departure=datetime(2026, 6, 1, 22, 0), stops=2),
        ]
        asc = sort_offers(offers, sort_by, "asc")
        desc = sort_offers(offers, sort_by, "desc")
        assert desc == list(reversed(asc))

    def test_missing_legs_sort_first(self):
        offers = [make_offer(reference_id="a", stops=1), _offer_without_legs("no_legs")]
        assert sort_offers(offers, "arrival")[0].reference_id == "no_legs"

    def test_by_duration(self):
        offers = [
            make_offer(reference_id="long", duration=500),
            make_offer(reference_id="short", duration=120),
        ]
        result = sort_offers(offers, "duration")
        assert [o.reference_id for o in result] == ["short", "long"]

    def test_by_departure(self):
        offers = [
            make_offer(reference_id="late", departure=datetime(2026, 6, 1, 20, 0)),
            make_offer(reference_id="early", departure=datetime(2026, 6, 1, 6, 0)),
        ]
        result = sort_offers(offers, "departure")
        assert [o.reference_id for o in result] == ["early", "late"]

    def test_by_arrival(self):
        offers = [
            # parte prima ma arriva dopo
            make_offer(reference_id="early_dep", departure=datetime(2026, 6, 1, 6, 0), duration=900),
            make_offer(reference_id="late_dep", departure=datetime(2026, 6, 1, 12, 0), duration=60),
        ]
        result = sort_offers(offers, "arrival")
        assert [o.reference_id for o in result] == ["late_dep", "early_dep"]

    def test_by_stops(self):
        offers = [make_offer(reference_id="1stop", stops=1), make_offer(reference_id="direct", stops=0)]
        assert sort_offers(offers, "stops")[0].reference_id == "direct"

    def test_unknown_key_falls_back_to_price(self):
        offers = [make_offer(reference_id="b", total=200), make_offer(reference_id="a", total=100)]
        assert sort_offers(offers, "nonsense")[0].reference_id == "a"


# ---------------------------------------------------------------------------
# process_results
# ---------------------------------------------------------------------------

class TestProcessResults:
    def test_limit_applied_after_sort(self):
        offers = [
            make_offer(reference_id=str(i), total=1000 - i, flight_number=f"AA{i}")
            for i in range(150)
        ]
        result = process_results(offers, MergeSettings(max_results=100))
        assert len(result) == 100
        # le 100 più economiche, in ordine crescente
        assert result[0].price.total == 851
        assert result[-1].price.total == 950

    def test_max_results_zero(self):
        offers = [make_offer(reference_id="1")]
        assert process_results(offers, MergeSettings(max_results=0)) == []

    def test_dedupe_disabled(self):
        offers = [make_offer(reference_id="1"), make_offer(reference_id="2")]
        result = process_results(offers, MergeSettings(deduplicate=False))
        assert len(result) == 2

    def test_dedupe_then_sort(self):
        a = make_offer(supplier_code="amadeus", reference_id="1", total=120)
        b = make_offer(supplier_code="duffel", reference_id="2", total=95)
        c = make_offer(supplier_code="duffel", reference_id="3", total=80, flight_number="DL5")
        result = process_results([a, b, c], MergeSettings())
        # b è un duplicato di a (stesso volo): resta a, la prima vista
        assert [o.id for o in result] == ["duffel_3", "amadeus_1"]

    def test_default_settings(self):
        assert process_results([]) == []


# ---------------------------------------------------------------------------
# filter_results
# ---------------------------------------------------------------------------

class TestFilterResults:
    def _offers(self):
        return [
            make_offer(reference_id="cheap", total=80, airline="AA", stops=0),
            make_offer(reference_id="mid", total=150, airline="DL", flight_number="DL1", stops=1, refundable=True),
            make_offer(reference_id="pricey", total=400, airline="AA", flight_number="AA9", stops=2),
        ]

    def test_empty_filters_keep_everything(self):
        offers = self._offers()
        assert filter_results(offers, {}) == offers

    def test_price_range(self):
        result = filter_results(self._offers(), {"min_price": 100, "max_price": 200})
        assert [o.reference_id for o in result] == ["mid"]

    def test_airline(self):
        result = filter_results(self._offers(), OfferFilters(airline_code="AA"))
        assert [o.reference_id for o in result] == ["cheap", "pricey"]

    def test_max_stops(self):
        result = filter_results(self._offers(), {"max_stops": 1})
        assert [o.reference_id for o in result] == ["cheap", "mid"]

    def test_refundable(self):
        result = filter_results(self._offers(), {"refundable": True})
        assert [o.reference_id for o in result] == ["mid"]

    def test_refundable_false_is_noop(self):
        assert len(filter_results(self._offers(), {"refundable": False})) == 3

    def test_filters_are_and_composed(self):
        result = filter_results(self._offers(), {"airline_code": "AA", "max_price": 100})
        assert [o.reference_id for o in result] == ["cheap"]
