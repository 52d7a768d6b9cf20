from datetime import date, datetime

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Offerta normalizzata (stessa forma di NormalizedOffer.to_dict())
# ---------------------------------------------------------------------------

class AirlineOut(BaseModel):
    code: str
    name: str


class LocationOut(BaseModel):
    airport_code: str
    city: str
    at: datetime | None = None
    terminal: str | None = None


class PriceOut(BaseModel):
    total: float
    base_fare: float
    taxes: float
    currency: str


class SegmentOut(BaseModel):
    airline: AirlineOut
    flight_number: str
    departure: LocationOut
    arrival: LocationOut
    duration_minutes: int
    baggage: str | None = None
    operating_airline: AirlineOut | None = None
    aircraft: str | None = None


class LegOut(BaseModel):
    departure: LocationOut
    arrival: LocationOut
    duration_minutes: int
    stops: int
    cabin: str
    segments: list[SegmentOut]


class OfferOut(BaseModel):
    id: str
    supplier_code: str
    reference_id: str
    price: PriceOut
    legs: list[LegOut]
    validating_airline: AirlineOut
    refundable: bool
    seats_available: int
    valid_until: datetime | None = None


# ---------------------------------------------------------------------------
# Ricerca
# ---------------------------------------------------------------------------

class CityLegIn(BaseModel):
    origin: str = Field(min_length=3, max_length=3)
    destination: str = Field(min_length=3, max_length=3)
    date: date


class SearchIn(BaseModel):
    """Body di POST /flights/search, unico che supporta le tratte multi-city."""
    origin: str | None = Field(default=None, min_length=3, max_length=3)
    destination: str | None = Field(default=None, min_length=3, max_length=3)
    departure_date: date | None = None
    return_date: date | None = None
    trip_type: str | None = None      # "oneWay" | "roundTrip" | "multiCity"
    legs: list[CityLegIn] = []
    adults: int = Field(default=1, ge=1, le=9)
    children: int = Field(default=0, ge=0, le=9)
    infants: int = Field(default=0, ge=0, le=9)
    cabin: str = "economy"
    currency: str = "USD"

    # filtri a posteriori
    min_price: float | None = None
    max_price: float | None = None
    airline_code: str | None = None
    max_stops: int | None = Field(default=None, ge=0)
    refundable: bool | None = None


class SearchMetaOut(BaseModel):
    total: int
    search_params: dict


class SearchOut(BaseModel):
    data: list[OfferOut]
    meta: SearchMetaOut


# ---------------------------------------------------------------------------
# Supplier
# ---------------------------------------------------------------------------

class SupplierOut(BaseModel):
    code: str
    name: str


class SupplierListOut(BaseModel):
    drivers: list[str]
    active: list[SupplierOut]


class ConnectionOut(BaseModel):
    supplier_code: str
    success: bool
    message: str
    latency_ms: int
