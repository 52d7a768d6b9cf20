"""
DuffelSupplier — secondo adapter HTTP.

Duffel crea una "offer request" (POST /air/offer_requests?return_offers=true)
e restituisce le offerte nella stessa risposta. Le slice corrispondono alle
nostre Leg, i segmenti ai Segment. A differenza di Amadeus espone
GET /air/offers/{id}, usato da get_offer_details.

Autenticazione: access token statico in header Bearer + Duffel-Version.

Documentazione: https://duffel.com/docs/api/v2/offer-requests
"""
import logging
from datetime import datetime, timedelta, timezone

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

_API_VERSION = "v2"
_PASSENGER_TYPES = (("adults", "adult"), ("children", "child"), ("infants", "infant_without_seat"))


def _location(place: dict, at: str | None, terminal: str | None) -> Location:
    return Location(
        airport_code=place.get("iata_code", ""),
        city=place.get("city_name") or (place.get("city") or {}).get("name", ""),
        at=parse_datetime(at),
        terminal=terminal,
    )


def _airline(carrier: dict | None) -> Airline | None:
    if not carrier:
        return None
    return Airline(code=carrier.get("iata_code", ""), name=carrier.get("name", ""))


class DuffelSupplier(FlightSupplier):

    code = "duffel"
    default_base_url = "https://api.duffel.com"
    required_credentials = (("api_key", "access_token"),)

    async def _headers(self, client: httpx.AsyncClient) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "Duffel-Version": _API_VERSION,
            "Authorization": f"Bearer {self.credential('api_key', 'access_token')}",
        }

    def _build_payload(self, request: SearchRequest) -> dict:
        passengers: list[dict] = []
        for attr, kind in _PASSENGER_TYPES:
            passengers.extend({"type": kind} for _ in range(getattr(request, attr)))
        return {
            "data": {
                "slices": [
                    {
                        "origin": leg.origin,
                        "destination": leg.destination,
                        "departure_date": leg.date.isoformat(),
                    }
                    for leg in request.itinerary()
                ],
                "passengers": passengers,
                "cabin_class": request.cabin,
            }
        }

    async def search(self, request: SearchRequest) -> list[NormalizedOffer]:
        resp = await self._request(
            "POST",
            "/air/offer_requests",
            params={"return_offers": "true"},
            json=self._build_payload(request),
        )
        data = self._json(resp).get("data") or {}

        offers: list[NormalizedOffer] = []
        for item in data.get("offers") or []:
            try:
                offers.append(self._normalize_offer(item))
            except (KeyError, TypeError, ValueError, IndexError) as exc:
                logger.warning(
                    "Duffel: offerta %s scartata: %s: %s",
                    item.get("id", "?") if isinstance(item, dict) else "?", type(exc).__name__, exc,
                )
        logger.debug(
            "Duffel %s→%s %s: %d offers",
            request.origin, request.destination, request.departure_date, len(offers),
        )
        return offers

    def _normalize_offer(self, item: dict) -> NormalizedOffer:
        owner = item.get("owner") or {}
        conditions = item.get("conditions") or {}
        refund = conditions.get("refund_before_departure") or {}

        valid_until = parse_datetime(item.get("expires_at"))
        if valid_until is None:
            valid_until = datetime.now(timezone.utc) + timedelta(minutes=30)

        return NormalizedOffer(
            supplier_code=self.supplier_code,
            reference_id=item["id"],
            price=Price(
                total=float(item["total_amount"]),
                base_fare=float(item.get("base_amount") or 0),
                taxes=float(item.get("tax_amount") or 0),
                currency=item.get("total_currency") or item.get("base_currency") or "USD",
            ),
            legs=[self._normalize_slice(s) for s in item["slices"]],
            validating_airline=Airline(code=owner.get("iata_code", ""), name=owner.get("name", "")),
            refundable=bool(refund.get("allowed", False)),
            # Duffel non espone i posti disponibili per segmento
            seats_available=int(item.get("available_seats") or 9),
            valid_until=valid_until,
        )

    def _normalize_slice(self, slice_: dict) -> Leg:
        raw_segments = slice_["segments"]
        segments = [self._normalize_segment(s) for s in raw_segments]
        passengers = raw_segments[0].get("passengers") or [{}]
        return Leg(
            departure=segments[0].departure,
            arrival=segments[-1].arrival,
            duration_minutes=parse_iso_duration(slice_.get("duration")),
            stops=max(0, len(segments) - 1),
            cabin=passengers[0].get("cabin_class") or "economy",
            segments=segments,
        )

    def _normalize_segment(self, segment: dict) -> Segment:
        marketing = segment.get("marketing_carrier") or {}
        passenger = (segment.get("passengers") or [{}])[0]

        baggage = None
        for bag in passenger.get("baggages", []):
            if bag.get("type") == "checked" and bag.get("quantity", 0) > 0:
                baggage = f"{bag['quantity']} PC"
                break

        return Segment(
            airline=_airline(marketing) or Airline(),
            flight_number=f"{marketing.get('iata_code', '')}{segment.get('marketing_carrier_flight_number', '')}",
            departure=_location(segment["origin"], segment.get("departing_at"), segment.get("origin_terminal")),
            arrival=_location(segment["destination"], segment.get("arriving_at"), segment.get("destination_terminal")),
            duration_minutes=parse_iso_duration(segment.get("duration")),
            baggage=baggage,
            operating_airline=_airline(segment.get("operating_carrier")),
            aircraft=(segment.get("aircraft") or {}).get("name"),
        )

    async def get_offer_details(self, reference_id: str) -> NormalizedOffer | None:
        resp = await self._request("GET", f"/air/offers/{reference_id}")
        if resp.status_code == 404:
            return None
        item = self._json(resp).get("data")
        if not item:
            return None
        try:
            return self._normalize_offer(item)
        except (KeyError, TypeError, ValueError, IndexError) as exc:
            raise SupplierError(self.supplier_code, f"offerta {reference_id} malformata: {type(exc).__name__}: {exc}") from exc

    async def _probe(self) -> tuple[bool, str]:
        resp = await self._request("GET", "/air/airlines", params={"limit": 1})
        if resp.is_success:
            return True, "Duffel API connection successful"
        try:
            detail = resp.json()["errors"][0]["message"]
        except (ValueError, KeyError, IndexError, TypeError):
            detail = f"HTTP {resp.status_code}"
        return False, f"Duffel API error: {detail}"
