"""
AmadeusSupplier — adapter di riferimento (API ufficiale, stabile).

Usa l'Amadeus Self-Service Flight Offers Search (POST v2/shopping/flight-offers),
che supporta andata/ritorno e multi-city tramite originDestinations.

Ottimizzazione token: il token OAuth2 (valido ~30 min) è cachato a livello
di modulo per evitare una POST /oauth2/token extra ad ogni ricerca.
Il lock asincrono serializza le richieste di token concorrenti
evitando burst multipli verso l'endpoint auth. Su HTTP 401 il token
viene scartato e la ricerca ritentata una volta.

Amadeus non espone un endpoint "offerta per id": le offerte restituite dalla
ricerca restano in memoria per 30 minuti e get_offer_details le serve da lì.
Le scadute vengono rimosse ad ogni scrittura e lettura, con un tetto di
_OFFER_CACHE_MAX voci.

Documentazione: https://developers.amadeus.com/self-service/category/flights
"""
import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from faremesh.services.suppliers.base import (
    Airline,
    FlightSupplier,
    Leg,
    Location,
    NormalizedOffer,
    Price,
    SearchRequest,
    Segment,
    parse_datetime,
    parse_iso_duration,
)
from faremesh.services.suppliers.errors import SupplierError

logger = logging.getLogger(__name__)

_AUTH_PATH = "/v1/security/oauth2/token"
_SEARCH_PATH = "/v2/shopping/flight-offers"

# Cache token a livello di modulo: (base_url, client_id) → (token, expires_at_monotonic)
_TOKEN_CACHE: dict[tuple[str, str], tuple[str, float]] = {}

# Offerte restituite dalla ricerca: "codice:reference_id" → (offerta, expires_at_monotonic)
_OFFER_CACHE: dict[str, tuple[NormalizedOffer, float]] = {}
_OFFER_TTL_SECONDS = 1800
_OFFER_CACHE_MAX = 5000

def _purge_offer_cache(now: float) -> None:
    """Rimuove le offerte scadute e, oltre _OFFER_CACHE_MAX, le più vecchie."""
    for key in [k for k, (_, expires_at) in _OFFER_CACHE.items() if now >= expires_at]:
        del _OFFER_CACHE[key]
    while len(_OFFER_CACHE) > _OFFER_CACHE_MAX:
        del _OFFER_CACHE[next(iter(_OFFER_CACHE))]


_CABINS = {
    "economy": "ECONOMY",
    "premium_economy": "PREMIUM_ECONOMY",
    "business": "BUSINESS",
    "first": "FIRST",
}


def _baggage_by_segment(item: dict) -> dict[str, str]:
    """Bagaglio in stiva incluso per segmento, dal primo travelerPricing."""
    result: dict[str, str] = {}
    pricings = item.get("travelerPricings") or []
    if not pricings:
        return result
    for detail in pricings[0].get("fareDetailsBySegment", []):
        bags = detail.get("includedCheckedBags") or {}
        if "quantity" in bags:
            result[detail.get("segmentId", "")] = f"{bags['quantity']} PC"
        elif "weight" in bags:
            result[detail.get("segmentId", "")] = f"{bags['weight']} {bags.get('weightUnit', 'KG')}"
    return result


def _is_refundable(item: dict) -> bool:
    for pricing in item.get("travelerPricings") or []:
        for detail in pricing.get("fareDetailsBySegment", []):
            for amenity in detail.get("amenities", []):
                if amenity.get("amenityType") == "REFUND" and amenity.get("isChargeable") is False:
                    return True
    return False


class AmadeusSupplier(FlightSupplier):

    code = "amadeus"
    default_base_url = "https://test.api.amadeus.com"
    required_credentials = (("client_id", "api_key"), ("client_secret", "api_secret"))

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._token_lock: asyncio.Lock | None = None

    # --- autenticazione -----------------------------------------------------

    @property
    def _token_key(self) -> tuple[str, str]:
        return (self.base_url, self.credential("client_id", "api_key"))

    async def _get_token(self, client: httpx.AsyncClient) -> str:
        """Restituisce un token OAuth2 valido, usando la cache se disponibile.

        Il lock serializza le richieste concorrenti: solo il primo task chiama
        l'endpoint auth, gli altri attendono e poi trovano il token in cache.
        """
        if self._token_lock is None:
            self._token_lock = asyncio.Lock()

        async with self._token_lock:
            now = time.monotonic()
            cached = _TOKEN_CACHE.get(self._token_key)
            if cached and now < cached[1] - 60:   # 60s di margine prima della scadenza
                return cached[0]

            client_id = self.credential("client_id", "api_key")
            client_secret = self.credential("client_secret", "api_secret")
            if not client_id or not client_secret:
                raise SupplierError(self.supplier_code, "credenziali Amadeus mancanti (client_id/client_secret)")

            try:
                resp = await client.post(
                    f"{self.base_url}{_AUTH_PATH}",
                    data={
                        "grant_type": "client_credentials",
                        "client_id": client_id,
                        "client_secret": client_secret,
                    },
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
            except httpx.HTTPError as exc:
                raise SupplierError(self.supplier_code, f"token OAuth2: {type(exc).__name__}: {exc}") from exc

            if resp.is_error:
                raise SupplierError(self.supplier_code, f"autenticazione fallita: HTTP {resp.status_code}")
            try:
                data = resp.json()
                token = data.get("access_token")
                expires_in = int(data.get("expires_in", 1799))
            except (ValueError, TypeError, AttributeError) as exc:
                raise SupplierError(self.supplier_code, "risposta token non valida") from exc
            if not token:
                raise SupplierError(self.supplier_code, "nessun access_token nella risposta Amadeus")
            _TOKEN_CACHE[self._token_key] = (token, now + expires_in)
            return token

    async def _headers(self, client: httpx.AsyncClient) -> dict[str, str]:
        token = await self._get_token(client)
        return {"Accept": "application/json", "Authorization": f"Bearer {token}"}

    # --- ricerca ------------------------------------------------------------

    def _build_payload(self, request: SearchRequest) -> dict:
        origin_destinations = [
            {
                "id": str(i),
                "originLocationCode": leg.origin,
                "destinationLocationCode": leg.destination,
                "departureDateTimeRange": {"date": leg.date.isoformat()},
            }
            for i, leg in enumerate(request.itinerary(), start=1)
        ]

        travelers: list[dict] = []
        for _ in range(request.adults):
            travelers.append({"id": str(len(travelers) + 1), "travelerType": "ADULT"})
        for _ in range(request.children):
            travelers.append({"id": str(len(travelers) + 1), "travelerType": "CHILD"})
        for _ in range(request.infants):
            travelers.append({
                "id": str(len(travelers) + 1),
                "travelerType": "SEATED_INFANT",
                "associatedAdultId": "1",
            })

        return {
            "currencyCode": request.currency,
            "originDestinations": origin_destinations,
            "travelers": travelers,
            "sources": ["GDS"],
            "searchCriteria": {
                "maxFlightOffers": int(self.config.get("max_offers", 50)),
                "flightFilters": {
                    "cabinRestrictions": [{
                        "cabin": _CABINS.get(request.cabin, "ECONOMY"),
                        "coverage": "MOST_SEGMENTS",
                        "originDestinationIds": [od["id"] for od in origin_destinations],
                    }],
                },
            },
        }

    async def search(self, request: SearchRequest) -> list[NormalizedOffer]:
        payload = self._build_payload(request)
        resp = await self._request("POST", _SEARCH_PATH, json=payload)
        if resp.status_code == 401:
            logger.info("Amadeus: token rifiutato, rinnovo e ritento")
            _TOKEN_CACHE.pop(self._token_key, None)
            resp = await self._request("POST", _SEARCH_PATH, json=payload)

        data = self._json(resp)
        offers = self._parse_response(data)
        logger.debug(
            "Amadeus %s→%s %s: %d offers",
            request.origin, request.destination, request.departure_date, len(offers),
        )

        now = time.monotonic()
        for offer in offers:
            key = f"{self.supplier_code}:{offer.reference_id}"
            _OFFER_CACHE.pop(key, None)   # reinserita in coda: l'ordine resta per scadenza
            _OFFER_CACHE[key] = (offer, now + _OFFER_TTL_SECONDS)
        _purge_offer_cache(now)
        return offers

    def _parse_response(self, data: dict) -> list[NormalizedOffer]:
        dictionaries = data.get("dictionaries") or {}
        offers: list[NormalizedOffer] = []
        for item in data.get("data") or []:
            try:
                offers.append(self._normalize_offer(item, dictionaries))
            except (KeyError, TypeError, ValueError, IndexError) as exc:
                logger.warning(
                    "Amadeus: offerta %s scartata: %s: %s",
                    item.get("id", "?") if isinstance(item, dict) else "?", type(exc).__name__, exc,
                )
        return offers

    def _normalize_offer(self, item: dict, dictionaries: dict) -> NormalizedOffer:
        carriers = dictionaries.get("carriers", {})
        baggage = _baggage_by_segment(item)
        legs = [self._normalize_itinerary(it, dictionaries, baggage) for it in item["itineraries"]]

        validating_code = (item.get("validatingAirlineCodes") or [""])[0]
        if not validating_code and legs and legs[0].segments:
            validating_code = legs[0].segments[0].airline.code

        price = item["price"]
        total = float(price.get("grandTotal") or price["total"])
        base = float(price.get("base", 0))
        taxes = sum(float(fee.get("amount", 0)) for fee in price.get("fees", []))
        if taxes == 0:
            taxes = max(total - base, 0.0)

        valid_until = parse_datetime(item.get("lastTicketingDate"))
        if valid_until is None:
            valid_until = datetime.now(timezone.utc) + timedelta(minutes=20)

        return NormalizedOffer(
            supplier_code=self.supplier_code,
            reference_id=str(item["id"]),
            price=Price(total=total, base_fare=base, taxes=taxes, currency=price.get("currency", "USD")),
            legs=legs,
            validating_airline=Airline(code=validating_code, name=carriers.get(validating_code, validating_code)),
            refundable=_is_refundable(item),
            seats_available=int(item.get("numberOfBookableSeats", 9)),
            valid_until=valid_until,
        )

    def _normalize_itinerary(self, itinerary: dict, dictionaries: dict, baggage: dict[str, str]) -> Leg:
        segments = [self._normalize_segment(s, dictionaries, baggage) for s in itinerary["segments"]]
        first_seg = segments[0]
        last_seg = segments[-1]
        cabin = (itinerary["segments"][0].get("cabin") or "economy").lower()
        return Leg(
            departure=first_seg.departure,
            arrival=last_seg.arrival,
            duration_minutes=parse_iso_duration(itinerary.get("duration")),
            stops=max(0, len(segments) - 1),
            cabin=cabin,
            segments=segments,
        )

    def _normalize_segment(self, segment: dict, dictionaries: dict, baggage: dict[str, str]) -> Segment:
        carriers = dictionaries.get("carriers", {})
        locations = dictionaries.get("locations", {})

        def _location(point: dict) -> Location:
            code = point["iataCode"]
            return Location(
                airport_code=code,
                city=locations.get(code, {}).get("cityCode", ""),
                at=parse_datetime(point.get("at")),
                terminal=point.get("terminal"),
            )

        carrier = segment["carrierCode"]
        operating = (segment.get("operating") or {}).get("carrierCode")
        aircraft_code = (segment.get("aircraft") or {}).get("code", "")
        return Segment(
            airline=Airline(code=carrier, name=carriers.get(carrier, carrier)),
            flight_number=f"{carrier}{segment.get('number', '')}",
            departure=_location(segment["departure"]),
            arrival=_location(segment["arrival"]),
            duration_minutes=parse_iso_duration(segment.get("duration")),
            baggage=baggage.get(str(segment.get("id", ""))),
            operating_airline=Airline(code=operating, name=carriers.get(operating, operating)) if operating else None,
            aircraft=dictionaries.get("aircraft", {}).get(aircraft_code, aircraft_code) or None,
        )

    # --- dettagli e health --------------------------------------------------

    async def get_offer_details(self, reference_id: str) -> NormalizedOffer | None:
        _purge_offer_cache(time.monotonic())
        cached = _OFFER_CACHE.get(f"{self.supplier_code}:{reference_id}")
        if cached is None:
            logger.warning("Amadeus: offerta %s non trovata (scaduta o mai cercata), ripetere la ricerca", reference_id)
            return None
        return cached[0]

    async def _probe(self) -> tuple[bool, str]:
        _TOKEN_CACHE.pop(self._token_key, None)
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            await self._get_token(client)
        return True, "Amadeus API connection successful"
