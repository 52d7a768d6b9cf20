"""
Supplier Registry — risolve nomi supplier in istanze di adapter.

Ordine di risoluzione per driver(name):
  1. resolver custom registrato con extend(name, ...)
  2. descrittore persistito (tabella suppliers) con code == name
  3. config statica settings.suppliers.suppliers[name]

Il driver usato è: descrittore.driver → config["driver"] → name stesso.
Un driver non registrato solleva UnsupportedDriverError.

Le istanze sono cachate per nome per tutta la vita del registry (uno per
processo, creato nel lifespan FastAPI). La prima risoluzione di un nome è
serializzata da un lock per-nome: due ricerche concorrenti non creano due
istanze dello stesso supplier.
"""
import asyncio
import logging
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError

from faremesh.services.suppliers.amadeus import AmadeusSupplier
from faremesh.services.suppliers.base import FlightSupplier, SupplierDescriptor
from faremesh.services.suppliers.duffel import DuffelSupplier
from faremesh.services.suppliers.errors import UnsupportedDriverError
from faremesh.services.suppliers.sources import DatabaseSupplierSource, StaticSupplierSource

logger = logging.getLogger(__name__)

DriverFactory = Callable[[dict[str, Any], SupplierDescriptor | None], FlightSupplier]
Resolver = Callable[[], FlightSupplier]

DEFAULT_DRIVERS: dict[str, DriverFactory] = {
    "amadeus": AmadeusSupplier,
    "duffel": DuffelSupplier,
}


class SupplierRegistry:

    def __init__(
        self,
        static: StaticSupplierSource,
        persisted: DatabaseSupplierSource | None = None,
        default: str = "amadeus",
        drivers: dict[str, DriverFactory] | None = None,
    ) -> None:
        self._static = static
        self._persisted = persisted
        self._default = default
        self._drivers: dict[str, DriverFactory] = dict(DEFAULT_DRIVERS if drivers is None else drivers)
        self._resolvers: dict[str, Resolver] = {}
        self._instances: dict[str, FlightSupplier] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    # --- risoluzione ----------------------------------------------------------

    async def driver(self, name: str) -> FlightSupplier:
        """Istanza cachata o risolta. Gli errori di risoluzione si propagano."""
        instance = self._instances.get(name)
        if instance is not None:
            return instance

        lock = self._locks.setdefault(name, asyncio.Lock())
        async with lock:
            instance = self._instances.get(name)
            if instance is None:
                instance = await self._resolve(name)
                self._instances[name] = instance
        return instance

    async def _resolve(self, name: str) -> FlightSupplier:
        resolver = self._resolvers.get(name)
        if resolver is not None:
            return resolver()

        descriptor = None
        if self._persisted is not None:
            try:
                descriptor = await self._persisted.get(name)
            except (SQLAlchemyError, OSError) as exc:
                logger.warning("Descrittore '%s' non leggibile, uso config statica: %s: %s",
                               name, type(exc).__name__, exc)
        config = self._static.get(name)
        driver_name = (descriptor.driver if descriptor else None) or config.get("driver") or name

        factory = self._drivers.get(driver_name)
        if factory is None:
            raise UnsupportedDriverError(driver_name)
        logger.debug("Supplier '%s' risolto con driver '%s'", name, driver_name)
        return factory(config, descriptor)

    async def get_active_suppliers(self) -> list[FlightSupplier]:
        """
        Supplier attivi e sani dalla tabella, per priorità.
        Un supplier non risolvibile viene loggato e saltato.
        Se la tabella non produce nessun supplier usabile si ripiega sulla
        config statica, includendo solo gli adapter con is_available() True.
        """
        suppliers: list[FlightSupplier] = []

        descriptors: list[SupplierDescriptor] = []
        if self._persisted is not None:
            try:
                descriptors = await self._persisted.active()
            except (SQLAlchemyError, OSError) as exc:
                logger.warning("Lettura tabella suppliers fallita, uso config statica: %s: %s",
                               type(exc).__name__, exc)

        for descriptor in descriptors:
            try:
                suppliers.append(await self.driver(descriptor.code))
            except Exception as exc:
                logger.warning("Supplier '%s' non caricabile: %s: %s", descriptor.code, type(exc).__name__, exc)

        if suppliers:
            return suppliers

        for name in self._static.names():
            try:
                supplier = await self.driver(name)
            except Exception as exc:
                logger.warning("Supplier '%s' da config non caricabile: %s: %s", name, type(exc).__name__, exc)
                continue
            if supplier.is_available():
                suppliers.append(supplier)
            else:
                logger.debug("Supplier '%s' da config non disponibile (credenziali mancanti)", name)
        return suppliers

    async def get_default_supplier(self) -> FlightSupplier:
        return await self.driver(self._default)

    # --- estensione -----------------------------------------------------------

    def extend(self, name: str, resolver: Resolver) -> None:
        """Registra un resolver custom, controllato prima di ogni altra sorgente."""
        self._resolvers[name] = resolver

    def register_driver(self, name: str, factory: DriverFactory) -> None:
        self._drivers[name] = factory

    def available_drivers(self) -> list[str]:
        return list(self._drivers)

    def clear_instances(self) -> None:
        """Svuota la cache: il prossimo driver() risolve di nuovo (test, hot-reload config)."""
        self._instances.clear()

    async def record_health(self, code: str, healthy: bool) -> None:
        if self._persisted is None:
            return
        await self._persisted.set_health(code, healthy)
