"""
Flight Supplier Layer — modello normalizzato e interfaccia astratta (Strategy Pattern).

Ogni supplier esterno traduce una SearchRequest nella propria chiamata HTTP e
converte la risposta in NormalizedOffer. L'orchestratore (flight_search) usa
solo queste classi: un nuovo provider si aggiunge implementando FlightSupplier
e registrando il driver nel SupplierRegistry, senza toccare l'orchestratore.
"""
import asyncio
import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

import httpx

from faremesh.services.suppliers.errors import SupplierError

logger = logging.getLogger(__name__)

CABINS = ("economy", "premium_economy", "business", "first")


class TripType(str, Enum):
    ONE_WAY = "oneWay"
    ROUND_TRIP = "roundTrip"
    MULTI_CITY = "multiCity"


# ---------------------------------------------------------------------------
# Richiesta di ricerca
# ---------------------------------------------------------------------------

def _as_date(value: date | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


@dataclass(frozen=True)
class CityLeg:
    """Una singola tratta da quotare (andata, ritorno o tratta multi-city)."""
    origin: str       # codice IATA (es. "CTA")
    destination: str  # codice IATA (es. "ATH")
    date: date

    def __post_init__(self) -> None:
        object.__setattr__(self, "origin", self.origin.strip().upper())
        object.__setattr__(self, "destination", self.destination.strip().upper())
        object.__setattr__(self, "date", _as_date(self.date))


@dataclass(frozen=True)
class SearchRequest:
    origin: str
    destination: str
    departure_date: date
    return_date: date | None = None
    trip_type: TripType = TripType.ONE_WAY
    legs: tuple[CityLeg, ...] = ()
    adults: int = 1
    children: int = 0
    infants: int = 0
    cabin: str = "economy"
    currency: str = "USD"

    def __post_init__(self) -> None:
        object.__setattr__(self, "origin", self.origin.strip().upper())
        object.__setattr__(self, "destination", self.destination.strip().upper())
        object.__setattr__(self, "departure_date", _as_date(self.departure_date))
        if self.return_date is not None:
            object.__setattr__(self, "return_date", _as_date(self.return_date))
        object.__setattr__(self, "trip_type", TripType(self.trip_type))
        object.__setattr__(self, "legs", tuple(self.legs))
        object.__setattr__(self, "cabin", self.cabin.strip().lower().replace(" ", "_"))
        object.__setattr__(self, "currency", self.currency.strip().upper())

        for name in ("adults", "children", "infants"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValueError(f"{name} deve essere un intero non negativo")
        if self.adults < 1:
            raise ValueError("adults deve essere almeno 1")
        if self.infants > self.adults:
            raise ValueError("infants non può superare adults")
        if self.trip_type is not TripType.MULTI_CITY and not (self.origin and self.destination):
            raise ValueError("origin e destination obbligatori")
        if self.cabin not in CABINS:
            raise ValueError(f"cabin non valida: {self.cabin}")
        if self.trip_type is TripType.ROUND_TRIP:
            if self.return_date is None:
                raise ValueError("return_date obbligatoria per roundTrip")
            if self.return_date < self.departure_date:
                raise ValueError("return_date deve essere >= departure_date")
        if self.trip_type is TripType.MULTI_CITY and not self.legs:
            raise ValueError("multiCity richiede almeno una tratta in legs")

    @classmethod
    def from_params(cls, data: dict[str, Any]) -> "SearchRequest":
        """Costruisce la richiesta dai parametri HTTP (accetta alias from/to/date)."""
        legs = tuple(
            CityLeg(origin=leg["origin"], destination=leg["destination"], date=leg["date"])
            for leg in data.get("legs") or []
        )
        origin = data.get("from") or data.get("origin") or (legs[0].origin if legs else "")
        destination = data.get("to") or data.get("destination") or (legs[-1].destination if legs else "")
        departure = data.get("date") or data.get("departure_date") or (legs[0].date if legs else None)
        if departure is None:
            raise ValueError("departure_date mancante")
        return_date = data.get("return_date")

        trip_type = data.get("trip_type") or data.get("tripType")
        if not trip_type:
            if legs:
                trip_type = TripType.MULTI_CITY
            elif return_date:
                trip_type = TripType.ROUND_TRIP
            else:
                trip_type = TripType.ONE_WAY

        return cls(
            origin=origin,
            destination=destination,
            departure_date=departure,
            return_date=return_date or None,
            trip_type=trip_type,
            legs=legs,
            adults=int(data.get("adults") if data.get("adults") is not None else 1),
            children=int(data.get("children") or 0),
            infants=int(data.get("infants") or 0),
            cabin=data.get("cabin") or "economy",
            currency=data.get("currency") or "USD",
        )

    @property
    def total_passengers(self) -> int:
        return self.adults + self.children + self.infants

    @property
    def is_round_trip(self) -> bool:
        return self.trip_type is TripType.ROUND_TRIP and self.return_date is not None

    def itinerary(self) -> list[CityLeg]:
        """Tratte da quotare nell'ordine: andata (+ ritorno) oppure le tratte multi-city."""
        if self.trip_type is TripType.MULTI_CITY:
            return list(self.legs)
        legs = [CityLeg(self.origin, self.destination, self.departure_date)]
        if self.is_round_trip:
            legs.append(CityLeg(self.destination, self.origin, self.return_date))
        return legs

    def to_dict(self) -> dict[str, Any]:
        return {
            "origin": self.origin,
            "destination": self.destination,
            "departure_date": self.departure_date.isoformat(),
            "return_date": self.return_date.isoformat() if self.return_date else None,
            "trip_type": self.trip_type.value,
            "legs": [
                {"origin": l.origin, "destination": l.destination, "date": l.date.isoformat()}
                for l in self.legs
            ],
            "adults": self.adults,
            "children": self.children,
            "infants": self.infants,
            "cabin": self.cabin,
            "currency": self.currency,
        }


# ---------------------------------------------------------------------------
# Offerta normalizzata (indipendente dal supplier)
# ---------------------------------------------------------------------------

def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def parse_iso_duration(duration: str | None) -> int:
    """Converte durata ISO 8601 'PT2H30M' (anche 'P1DT2H') in minuti totali."""
    if not duration:
        return 0
    days = re.search(r"(\d+)D", duration)
    hours = re.search(r"(\d+)H", duration)
    mins = re.search(r"(\d+)M", duration.split("T")[-1])
    total = int(hours.group(1)) * 60 if hours else 0
    total += int(mins.group(1)) if mins else 0
    total += int(days.group(1)) * 1440 if days else 0
    return total


@dataclass
class Airline:
    code: str = ""
    name: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "Airline":
        data = data or {}
        return cls(code=data.get("code", ""), name=data.get("name", ""))


@dataclass
class Location:
    airport_code: str = ""
    city: str = ""
    at: datetime | None = None
    terminal: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "Location":
        data = data or {}
        return cls(
            airport_code=data.get("airport_code", ""),
            city=data.get("city", ""),
            at=parse_datetime(data.get("at")),
            terminal=data.get("terminal"),
        )


@dataclass
class Price:
    total: float
    base_fare: float = 0.0
    taxes: float = 0.0
    currency: str = "USD"


@dataclass
class Segment:
    """Un singolo volo fisico."""
    airline: Airline
    flight_number: str
    departure: Location
    arrival: Location
    duration_minutes: int = 0
    baggage: str | None = None
    operating_airline: Airline | None = None
    aircraft: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Segment":
        operating = data.get("operating_airline")
        return cls(
            airline=Airline.from_dict(data.get("airline")),
            flight_number=data.get("flight_number", ""),
            departure=Location.from_dict(data.get("departure")),
            arrival=Location.from_dict(data.get("arrival")),
            duration_minutes=data.get("duration_minutes", 0),
            baggage=data.get("baggage"),
            operating_airline=Airline.from_dict(operating) if operating else None,
            aircraft=data.get("aircraft"),
        )


@dataclass
class Leg:
    """Un itinerario direzionale (andata, ritorno o tratta multi-city)."""
    departure: Location
    arrival: Location
    duration_minutes: int
    stops: int
    cabin: str
    segments: list[Segment] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Leg":
        return cls(
            departure=Location.from_dict(data.get("departure")),
            arrival=Location.from_dict(data.get("arrival")),
            duration_minutes=data.get("duration_minutes", 0),
            stops=data.get("stops", 0),
            cabin=data.get("cabin", ""),
            segments=[Segment.from_dict(s) for s in data.get("segments", [])],
        )


@dataclass
class NormalizedOffer:
    supplier_code: str
    reference_id: str
    price: Price
    legs: list[Leg]
    validating_airline: Airline
    refundable: bool = False
    seats_available: int = 0
    valid_until: datetime | None = None
    id: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            self.id = f"{self.supplier_code}_{self.reference_id}"

    @property
    def first_leg(self) -> Leg | None:
        return self.legs[0] if self.legs else None

    def is_well_formed(self) -> bool:
        """Almeno una tratta con almeno un segmento."""
        return any(leg.segments for leg in self.legs)

    def to_dict(self) -> dict[str, Any]:
        return _jsonable(asdict(self))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NormalizedOffer":
        price = data.get("price") or {}
        return cls(
            id=data.get("id", ""),
            supplier_code=data["supplier_code"],
            reference_id=data["reference_id"],
            price=Price(
                total=float(price.get("total", 0)),
                base_fare=float(price.get("base_fare", 0)),
                taxes=float(price.get("taxes", 0)),
                currency=price.get("currency", "USD"),
            ),
            legs=[Leg.from_dict(l) for l in data.get("legs", [])],
            validating_airline=Airline.from_dict(data.get("validating_airline")),
            refundable=bool(data.get("refundable", False)),
            seats_available=int(data.get("seats_available", 0)),
            valid_until=parse_datetime(data.get("valid_until")),
        )


# ---------------------------------------------------------------------------
# Descrittore supplier e risultato del test di connessione
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SupplierDescriptor:
    """Metadati di un supplier (tabella suppliers). Sola lettura per il core."""
    code: str
    driver: str
    name: str = ""
    is_active: bool = True
    is_healthy: bool = True
    priority: int = 0                    # valore più basso = priorità più alta
    config: dict[str, Any] = field(default_factory=dict)
    base_url: str | None = None
    api_key: str | None = None
    api_secret: str | None = None
    timeout: int | None = None
    retry_times: int | None = None


@dataclass
class ConnectionResult:
    success: bool
    message: str
    latency_ms: int = 0


def merge_config(config: dict[str, Any], descriptor: SupplierDescriptor | None) -> dict[str, Any]:
    """Config statica ← campi tipizzati del descrittore ← blob config del descrittore."""
    merged = dict(config)
    if descriptor is not None:
        overrides = {
            "base_url": descriptor.base_url,
            "api_key": descriptor.api_key,
            "api_secret": descriptor.api_secret,
            "timeout": descriptor.timeout,
            "retry_times": descriptor.retry_times,
        }
        merged.update({k: v for k, v in overrides.items() if v is not None})
        merged.update(descriptor.config or {})
    return merged


# ---------------------------------------------------------------------------
# Interfaccia supplier
# ---------------------------------------------------------------------------

class FlightSupplier(ABC):
    """
    Capability comune a tutti gli adapter.

    Le sottoclassi definiscono `code`, `default_base_url`, le credenziali
    richieste e implementano search / get_offer_details / _probe.
    Il plumbing HTTP condiviso (timeout, retry su 429, semaforo di
    concorrenza) vive qui.
    """

    code: str = ""
    default_base_url: str = ""
    # Ogni voce è una tupla di alias: basta che uno sia valorizzato
    required_credentials: tuple[tuple[str, ...], ...] = ()

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        descriptor: SupplierDescriptor | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.descriptor = descriptor
        self.config = merge_config(config or {}, descriptor)
        self._transport = transport
        # Limite di chiamate concorrenti verso il provider (rate limit lato adapter)
        self._semaphore = asyncio.Semaphore(int(self.config.get("max_concurrency", 4)))

    # --- identità -----------------------------------------------------------

    @property
    def supplier_code(self) -> str:
        return self.descriptor.code if self.descriptor else self.code

    def get_supplier_code(self) -> str:
        return self.supplier_code

    @property
    def name(self) -> str:
        if self.descriptor and self.descriptor.name:
            return self.descriptor.name
        return self.supplier_code.title()

    # --- configurazione -----------------------------------------------------

    @property
    def base_url(self) -> str:
        return (self.config.get("base_url") or self.default_base_url).rstrip("/")

    @property
    def timeout(self) -> float:
        return float(self.config.get("timeout", 30))

    @property
    def retry_times(self) -> int:
        return int(self.config.get("retry_times", 2))

    def credential(self, *keys: str) -> str:
        for key in keys:
            value = self.config.get(key)
            if value:
                return str(value)
        return ""

    def is_available(self) -> bool:
        if self.descriptor is not None and not (self.descriptor.is_active and self.descriptor.is_healthy):
            return False
        return all(self.credential(*aliases) for aliases in self.required_credentials)

    # --- HTTP ---------------------------------------------------------------

    async def _headers(self, client: httpx.AsyncClient) -> dict[str, str]:
        return {"Accept": "application/json"}

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Chiamata HTTP con retry automatico su HTTP 429 (backoff esponenziale)."""
        attempts = self.retry_times + 1
        delay = float(self.config.get("retry_delay", 1.0))

        async with self._semaphore:
            for attempt in range(attempts):
                try:
                    async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                        headers = await self._headers(client)
                        resp = await client.request(method, f"{self.base_url}{path}", headers=headers, **kwargs)
                except httpx.HTTPError as exc:
                    raise SupplierError(self.supplier_code, f"{type(exc).__name__}: {exc}") from exc

                if resp.status_code != 429:
                    return resp

                wait = delay * 2 ** attempt
                logger.warning(
                    "%s %s %s: HTTP 429 (tentativo %d/%d), retry in %.1fs",
                    self.supplier_code, method, path, attempt + 1, attempts, wait,
                )
                await asyncio.sleep(wait)

        raise SupplierError(self.supplier_code, f"HTTP 429 dopo {attempts} tentativi")

    def _json(self, resp: httpx.Response) -> dict[str, Any]:
        if resp.is_error:
            raise SupplierError(self.supplier_code, f"HTTP {resp.status_code}: {resp.text[:300]}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise SupplierError(self.supplier_code, "risposta non JSON") from exc
        if not isinstance(data, dict):
            raise SupplierError(self.supplier_code, "risposta JSON inattesa")
        return data

    # --- contratto ----------------------------------------------------------

    @abstractmethod
    async def search(self, request: SearchRequest) -> list[NormalizedOffer]:
        """
        Cerca voli presso il supplier.
        Nessun risultato → lista vuota; errori di trasporto/auth/parsing → SupplierError.
        """
        ...

    @abstractmethod
    async def get_offer_details(self, reference_id: str) -> NormalizedOffer | None:
        ...

    @abstractmethod
    async def _probe(self) -> tuple[bool, str]:
        """Chiamata minima usata da test_connection."""
        ...

    async def test_connection(self) -> ConnectionResult:
        start = time.monotonic()
        try:
            success, message = await self._probe()
        except SupplierError as exc:
            success, message = False, f"Connection failed: {exc.message}"
        latency = int((time.monotonic() - start) * 1000)
        return ConnectionResult(success=success, message=message, latency_ms=latency)
