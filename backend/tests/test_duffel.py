"""
Test per DuffelSupplier con httpx.MockTransport.
"""
import json
from datetime import date
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from faremesh.config import SupplierSettings
from faremesh.services.flight_search import FlightSearchService
from faremesh.services.suppliers.base import SearchRequest
from faremesh.services.suppliers.duffel import DuffelSupplier
from faremesh.services.suppliers.errors import SupplierError

_CONFIG = {"api_key": "duffel_test_tok", "retry_delay": 0}


def _segment(origin, destination, departing, arriving, number, baggages=()):
    return {
        "origin": {"iata_code": origin, "city_name": origin.title()},
        "destination": {"iata_code": destination, "city_name": destination.title()},
        "departing_at": departing,
        "arriving_at": arriving,
        "origin_terminal": "1",
        "duration": "PT2H",
        "marketing_carrier": {"iata_code": "BA", "name": "British Airways"},
        "marketing_carrier_flight_number": number,
        "operating_carrier": {"iata_code": "IB", "name": "Iberia"},
        "aircraft": {"name": "Airbus A320"},
        "passengers": [{"cabin_class": "economy", "baggages": list(baggages)}],
    }


_OFFER = {
    "id": "off_123",
    "total_amount": "180.50",
    "base_amount": "150.00",
    "tax_amount": "30.50",
    "total_currency": "GBP",
    "expires_at": "2026-05-30T12:00:00+00:00",
    "owner": {"iata_code": "BA", "name": "British Airways"},
    "conditions": {"refund_before_departure": {"allowed": True}},
    "slices": [{
        "duration": "PT5H",
        "segments": [
            _segment("LHR", "MAD", "2026-06-01T08:00:00", "2026-06-01T11:00:00", "456",
                     baggages=[{"type": "checked", "quantity": 2}]),
            _segment("MAD", "LIS", "2026-06-01T12:00:00", "2026-06-01T13:00:00", "789"),
        ],
    }],
}


@pytest.fixture
def one_way():
    return SearchRequest(origin="LHR", destination="LIS", departure_date=date(2026, 6, 1), children=1)


def _supplier(handler, **config):
    return DuffelSupplier({**_CONFIG, **config}, transport=httpx.MockTransport(handler))


class TestSearch:
    async def test_request_and_normalization(self, one_way):
        seen: list[httpx.Request] = []

        def handler(request):
            seen.append(request)
            return httpx.Response(201, json={"data": {"offers": [_OFFER, {"id": "broken"}]}})

        offers = await _supplier(handler).search(one_way)

        request = seen[0]
        assert request.url.path == "/air/offer_requests"
        assert request.url.params["return_offers"] == "true"
        assert request.headers["Duffel-Version"] == "v2"
        assert request.headers["Authorization"] == "Bearer duffel_test_tok"
        body = json.loads(request.content)["data"]
        assert body["slices"] == [{"origin": "LHR", "destination": "LIS", "departure_date": "2026-06-01"}]
        assert body["passengers"] == [{"type": "adult"}, {"type": "child"}]

        assert len(offers) == 1
        offer = offers[0]
        assert offer.id == "duffel_off_123"
        assert offer.price.total == 180.5
        assert offer.price.currency == "GBP"
        assert offer.refundable is True
        assert offer.validating_airline.code == "BA"
        assert offer.valid_until.year == 2026

        leg = offer.first_leg
        assert leg.stops == 1
        assert leg.duration_minutes == 300
        assert leg.departure.airport_code == "LHR"
        assert leg.arrival.airport_code == "LIS"
        assert [s.flight_number for s in leg.segments] == ["BA456", "BA789"]
        assert leg.segments[0].baggage == "2 PC"
        assert leg.segments[1].baggage is None
        assert leg.segments[0].operating_airline.code == "IB"

    async def test_no_offers(self, one_way):
        def handler(request):
            return httpx.Response(201, json={"data": {"offers": []}})

        assert await _supplier(handler).search(one_way) == []

    async def test_api_error(self, one_way):
        def handler(request):
            return httpx.Response(422, json={"errors": [{"message": "invalid"}]})

        with pytest.raises(SupplierError, match="422"):
            await _supplier(handler).search(one_way)

    async def test_timeout_becomes_supplier_error(self, one_way):
        def handler(request):
            raise httpx.ReadTimeout("slow")

        with pytest.raises(SupplierError, match="ReadTimeout"):
            await _supplier(handler).search(one_way)


class TestOfferDetails:
    async def test_found(self):
        def handler(request):
            assert request.url.path == "/air/offers/off_123"
            return httpx.Response(200, json={"data": _OFFER})

        offer = await _supplier(handler).get_offer_details("off_123")
        assert offer.reference_id == "off_123"

    async def test_not_found(self):
        def handler(request):
            return httpx.Response(404, json={"errors": [{"message": "not found"}]})

        assert await _supplier(handler).get_offer_details("off_x") is None

    async def test_server_error_raises(self):
        def handler(request):
            return httpx.Response(500, text="boom")

        with pytest.raises(SupplierError):
            await _supplier(handler).get_offer_details("off_x")


class TestConnection:
    async def test_ok(self):
        def handler(request):
            return httpx.Response(200, json={"data": []})

        result = await _supplier(handler).test_connection()
        assert result.success is True
        assert result.latency_ms >= 0

    async def test_error_message(self):
        def handler(request):
            return httpx.Response(401, json={"errors": [{"message": "invalid token"}]})

        result = await _supplier(handler).test_connection()
        assert result.success is False
        assert result.message == "Duffel API error: invalid token"

    def test_availability(self):
        assert DuffelSupplier(_CONFIG).is_available()
        assert not DuffelSupplier({}).is_available()


class TestMalformedDetails:
    async def test_malformed_offer_raises_supplier_error(self):
        def handler(request):
            return httpx.Response(200, json={"data": {"id": "off_1"}})

        with pytest.raises(SupplierError, match="off_1"):
            await _supplier(handler).get_offer_details("off_1")

    async def test_service_degrades_malformed_offer_to_none(self):
        def handler(request):
            return httpx.Response(200, json={"data": {"id": "off_1"}})

        registry = MagicMock()
        registry.driver = AsyncMock(return_value=_supplier(handler))
        service = FlightSearchService(registry, SupplierSettings())

        assert await service.get_offer_details("duffel", "off_1") is None

    async def test_non_object_json(self):
        def handler(request):
            return httpx.Response(200, json=["unexpected"])

        with pytest.raises(SupplierError, match="inattesa"):
            await _supplier(handler).get_offer_details("off_1")
