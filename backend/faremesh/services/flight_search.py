"""
Core logic della ricerca multi-supplier.

Flusso:
  1. Il registry restituisce i supplier attivi (tabella suppliers → config statica).
     Nessun supplier → warning e lista vuota (stato di configurazione, non errore).
  2. Fan-out: in parallelo con asyncio.gather se parallel_search e più di un
     supplier, altrimenti in sequenza. Ogni chiamata ha il proprio timeout e
     il proprio try/except: un supplier che fallisce contribuisce zero offerte
     e non blocca gli altri.
  3. Ogni task restituisce la propria lista; l'unione avviene dopo il gather.
     Le offerte senza tratte/segmenti vengono scartate e loggate.
  4. result_processor: dedupe → sort → limit secondo settings.suppliers.merge.

L'ordine finale dipende solo dal sort, non dall'ordine di completamento dei supplier.
"""
import asyncio
import logging

from faremesh.config import SupplierSettings
from faremesh.services.cache import SearchCache
from faremesh.services.result_processor import OfferFilters, filter_results, process_results
from faremesh.services.suppliers.base import ConnectionResult, FlightSupplier, NormalizedOffer, SearchRequest
from faremesh.services.suppliers.errors import SupplierError
from faremesh.services.suppliers.registry import SupplierRegistry

logger = logging.getLogger(__name__)


class FlightSearchService:

    def __init__(
        self,
        registry: SupplierRegistry,
        config: SupplierSettings,
        cache: SearchCache | None = None,
    ) -> None:
        self.registry = registry
        self.config = config
        self.cache = cache

    async def search(self, request: SearchRequest) -> list[NormalizedOffer]:
        """Cerca su tutti i supplier attivi e restituisce le offerte unite e ordinate."""
        suppliers = await self.registry.get_active_suppliers()
        if not suppliers:
            logger.warning("Nessun supplier attivo per la ricerca %s→%s", request.origin, request.destination)
            return []

        if self.config.parallel_search and len(suppliers) > 1:
            batches = await asyncio.gather(*[self._search_one(s, request) for s in suppliers])
        else:
            batches = [await self._search_one(s, request) for s in suppliers]

        merged: list[NormalizedOffer] = []
        for batch in batches:
            merged.extend(batch)
        return process_results(merged, self.config.merge)

    async def search_supplier(self, supplier_code: str, request: SearchRequest) -> list[NormalizedOffer]:
        """Ricerca su un solo supplier; qualsiasi errore → log e lista vuota."""
        try:
            supplier = await self.registry.driver(supplier_code)
        except Exception as exc:
            logger.error("Supplier %s non risolvibile: %s: %s", supplier_code, type(exc).__name__, exc)
            return []
        return await self._search_one(supplier, request)

    async def _search_one(self, supplier: FlightSupplier, request: SearchRequest) -> list[NormalizedOffer]:
        code = supplier.get_supplier_code()

        cached = await self._cache_get(code, request)
        if cached is not None:
            logger.debug("Supplier %s: %d offerte da cache", code, len(cached))
            return cached

        try:
            offers = await asyncio.wait_for(supplier.search(request), timeout=supplier.timeout)
            offers = list(offers)
            valid = [o for o in offers if isinstance(o, NormalizedOffer) and o.is_well_formed()]
        except asyncio.TimeoutError:
            logger.warning("Supplier %s: timeout dopo %.0fs, nessuna offerta", code, supplier.timeout)
            return []
        except Exception as exc:
            logger.warning("Supplier %s fallito: %s: %s", code, type(exc).__name__, exc)
            return []

        if len(valid) != len(offers):
            logger.warning("Supplier %s: %d offerte senza tratte/segmenti scartate", code, len(offers) - len(valid))

        await self._cache_save(code, request, valid)
        return valid

    # La cache non deve mai far fallire la ricerca: qualsiasi errore → log e si prosegue senza.

    async def _cache_get(self, code: str, request: SearchRequest) -> list[NormalizedOffer] | None:
        if self.cache is None or not self.cache.enabled:
            return None
        try:
            return await self.cache.get(code, request)
        except Exception as exc:
            logger.warning("Cache %s: lettura saltata: %s: %s", code, type(exc).__name__, exc)
            return None

    async def _cache_save(self, code: str, request: SearchRequest, offers: list[NormalizedOffer]) -> None:
        if self.cache is None or not self.cache.enabled:
            return
        try:
            await self.cache.save(code, request, offers)
        except Exception as exc:
            logger.warning("Cache %s: scrittura saltata: %s: %s", code, type(exc).__name__, exc)

    async def get_offer_details(self, supplier_code: str, reference_id: str) -> NormalizedOffer | None:
        """
        Dettaglio di un'offerta per proseguire la prenotazione.
        UnsupportedDriverError si propaga (il chiamante ha chiesto un supplier preciso).
        """
        supplier = await self.registry.driver(supplier_code)
        try:
            return await supplier.get_offer_details(reference_id)
        except SupplierError as exc:
            logger.error("Dettaglio offerta %s/%s fallito: %s", supplier_code, reference_id, exc)
            return None

    def filter_results(
        self,
        offers: list[NormalizedOffer],
        filters: OfferFilters | dict,
    ) -> list[NormalizedOffer]:
        return filter_results(offers, filters)

    async def check_supplier_health(self, supplier_code: str) -> ConnectionResult:
        """Test di connessione; l'esito aggiorna is_healthy nella tabella suppliers."""
        supplier = await self.registry.driver(supplier_code)
        result = await supplier.test_connection()
        await self.registry.record_health(supplier_code, result.success)
        if not result.success:
            logger.warning("Supplier %s non sano: %s", supplier_code, result.message)
        return result
