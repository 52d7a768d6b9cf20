"""
Endpoint Voli.

GET /api/v1/flights/search
    Ricerca su tutti i supplier attivi (o su uno solo con ?supplier=).
    Parametri: from, to, date, return_date, trip_type, adults, children, infants, cabin, currency
    più i filtri opzionali min_price, max_price, airline_code, max_stops, refundable.

POST /api/v1/flights/search
    Stessa ricerca con body JSON; unico modo per passare tratte multi-city.

GET /api/v1/flights/offers/{supplier_code}/{reference_id}
    Dettaglio di un'offerta prima della prenotazione.
"""
import logging
from datetime import date
from typing import Annotated, Any

from fastapi import APIRouter, HTTPException, Query

from faremesh.api.v1.deps import SearchServiceDep
from faremesh.models.schemas import OfferOut, SearchIn, SearchOut
from faremesh.services.flight_search import FlightSearchService
from faremesh.services.result_processor import OfferFilters
from faremesh.services.suppliers.base import SearchRequest
from faremesh.services.suppliers.errors import UnsupportedDriverError

logger = logging.getLogger(__name__)

router = APIRouter()


async def _run_search(
    service: FlightSearchService,
    params: dict[str, Any],
    filters: OfferFilters,
    supplier: str | None,
) -> dict:
    try:
        request = SearchRequest.from_params(params)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    if supplier:
        offers = await service.search_supplier(supplier, request)
    else:
        offers = await service.search(request)
    offers = service.filter_results(offers, filters)

    logger.info("Ricerca %s→%s: %d offerte", request.origin, request.destination, len(offers))
    return {
        "data": [o.to_dict() for o in offers],
        "meta": {"total": len(offers), "search_params": request.to_dict()},
    }


@router.get("/search", response_model=SearchOut)
async def search_flights(
    service: SearchServiceDep,
    origin: Annotated[str, Query(alias="from", min_length=3, max_length=3, description="IATA partenza")],
    destination: Annotated[str, Query(alias="to", min_length=3, max_length=3, description="IATA arrivo")],
    departure_date: Annotated[date, Query(alias="date", description="Data di partenza")],
    return_date: Annotated[date | None, Query(description="Data di ritorno (roundTrip)")] = None,
    trip_type: Annotated[str | None, Query(description="oneWay | roundTrip (dedotto se assente)")] = None,
    adults: Annotated[int, Query(ge=1, le=9)] = 1,
    children: Annotated[int, Query(ge=0, le=9)] = 0,
    infants: Annotated[int, Query(ge=0, le=9)] = 0,
    cabin: str = "economy",
    currency: str = "USD",
    supplier: Annotated[str | None, Query(description="Cerca solo su questo supplier")] = None,
    min_price: float | None = None,
    max_price: float | None = None,
    airline_code: str | None = None,
    max_stops: Annotated[int | None, Query(ge=0)] = None,
    refundable: bool | None = None,
) -> dict:
    params = {
        "origin": origin,
        "destination": destination,
        "departure_date": departure_date,
        "return_date": return_date,
        "trip_type": trip_type,
        "adults": adults,
        "children": children,
        "infants": infants,
        "cabin": cabin,
        "currency": currency,
    }
    filters = OfferFilters(
        min_price=min_price,
        max_price=max_price,
        airline_code=airline_code,
        max_stops=max_stops,
        refundable=refundable,
    )
    return await _run_search(service, params, filters, supplier)


@router.post("/search", response_model=SearchOut)
async def search_flights_body(
    service: SearchServiceDep,
    body: SearchIn,
    supplier: Annotated[str | None, Query(description="Cerca solo su questo supplier")] = None,
) -> dict:
    params = body.model_dump()
    return await _run_search(service, params, OfferFilters.from_dict(params), supplier)


@router.get("/offers/{supplier_code}/{reference_id}", response_model=OfferOut)
async def get_offer(service: SearchServiceDep, supplier_code: str, reference_id: str) -> dict:
    try:
        offer = await service.get_offer_details(supplier_code, reference_id)
    except UnsupportedDriverError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    if offer is None:
        raise HTTPException(status_code=404, detail="Offerta non trovata o scaduta")
    return offer.to_dict()
