"""
Fixture condivise per la test suite FareMesh.

Tutte le dipendenze esterne (DB, HTTP, Redis) vengono simulate con
unittest.mock o httpx.MockTransport: nessun servizio reale è necessario
per eseguire i test.
"""
import asyncio
from datetime import date, datetime, timedelta, timezone

import pytest

from faremesh.services.suppliers import amadeus
from faremesh.services.suppliers.base import (
    Airline,
    FlightSupplier,
    Leg,
    Location,
    NormalizedOffer,
    Price,
    SearchRequest,
    Segment,
)
from faremesh.services.suppliers.errors import UnsupportedDriverError
from faremesh.services.suppliers.sources import StaticSupplierSource


# ---------------------------------------------------------------------------
# Offerte fittizie
# ---------------------------------------------------------------------------

def make_offer(
    supplier_code: str = "amadeus",
    reference_id: str = "1",
    total: float = 100.0,
    origin: str = "JFK",
    destination: str = "LAX",
    departure: datetime = datetime(2026, 6, 1, 8, 0, 0),
    duration: int = 360,
    airline: str = "AA",
    flight_number: str = "AA100",
    stops: int = 0,
    refundable: bool = False,
) -> NormalizedOffer:
    arrival = departure + timedelta(minutes=duration)
    segment = Segment(
        airline=Airline(code=airline, name=airline),
        flight_number=flight_number,
        departure=Location(airport_code=origin, at=departure),
        arrival=Location(airport_code=destination, at=arrival),
        duration_minutes=duration,
    )
    leg = Leg(
        departure=Location(airport_code=origin, at=departure),
        arrival=Location(airport_code=destination, at=arrival),
        duration_minutes=duration,
        stops=stops,
        cabin="economy",
        segments=[segment],
    )
    return NormalizedOffer(
        supplier_code=supplier_code,
        reference_id=reference_id,
        price=Price(total=total, base_fare=total * 0.8, taxes=total * 0.2, currency="USD"),
        legs=[leg],
        validating_airline=Airline(code=airline, name=airline),
        refundable=refundable,
        seats_available=9,
        valid_until=datetime(2026, 6, 1, 0, 0, tzinfo=timezone.utc),
    )


# ---------------------------------------------------------------------------
# Supplier fittizio (nessuna chiamata HTTP)
# ---------------------------------------------------------------------------

class FakeSupplier(FlightSupplier):
    """
    Supplier in memoria configurabile dai test:
      offers → lista restituita da search()
      error  → eccezione sollevata da search()
      delay  → secondi di attesa prima di rispondere (per i timeout)
    """

    def __init__(self, code="fake", offers=None, error=None, delay=0.0, timeout=30, healthy=True, **config):
        super().__init__({"timeout": timeout, **config})
        self.code = code
        self.offers = list(offers or [])
        self.error = error
        self.delay = delay
        self.healthy = healthy
        self.calls = 0

    async def search(self, request):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.offers)

    async def get_offer_details(self, reference_id):
        for offer in self.offers:
            if offer.reference_id == reference_id:
                return offer
        return None

    async def _probe(self):
        return self.healthy, "ok" if self.healthy else "down"


class FakeRegistry:
    """Registry minimale: restituisce sempre gli stessi supplier."""

    def __init__(self, suppliers):
        self.suppliers = {s.get_supplier_code(): s for s in suppliers}
        self.health: dict[str, bool] = {}

    async def get_active_suppliers(self):
        return list(self.suppliers.values())

    async def driver(self, name):
        if name not in self.suppliers:
            raise UnsupportedDriverError(name)
        return self.suppliers[name]

    def available_drivers(self):
        return list(self.suppliers)

    async def record_health(self, code, healthy):
        self.health[code] = healthy


@pytest.fixture
def search_request():
    """Ricerca JFK→LAX solo andata, 1 adulto."""
    return SearchRequest(origin="JFK", destination="LAX", departure_date=date(2026, 6, 1))


@pytest.fixture
def static_source():
    return StaticSupplierSource({
        "amadeus": {"driver": "amadeus", "client_id": "id", "client_secret": "secret"},
        "duffel": {"driver": "duffel", "api_key": "tok"},
    })


@pytest.fixture(autouse=True)
def _clear_amadeus_caches():
    """Token e offerte Amadeus sono cachati a livello di modulo."""
    amadeus._TOKEN_CACHE.clear()
    amadeus._OFFER_CACHE.clear()
    yield
    amadeus._TOKEN_CACHE.clear()
    amadeus._OFFER_CACHE.clear()
