"""
Endpoint Supplier.

GET  /api/v1/suppliers
    Driver registrati e supplier attualmente usati dalla ricerca.

POST /api/v1/suppliers/{code}/health
    Test di connessione; l'esito aggiorna is_healthy nella tabella suppliers.
"""
from fastapi import APIRouter, HTTPException

from faremesh.api.v1.deps import SearchServiceDep
from faremesh.models.schemas import ConnectionOut, SupplierListOut
from faremesh.services.suppliers.errors import UnsupportedDriverError

router = APIRouter()


@router.get("", response_model=SupplierListOut)
async def list_suppliers(service: SearchServiceDep) -> SupplierListOut:
    active = await service.registry.get_active_suppliers()
    return SupplierListOut(
        drivers=service.registry.available_drivers(),
        active=[{"code": s.get_supplier_code(), "name": s.name} for s in active],
    )


@router.post("/{code}/health", response_model=ConnectionOut)
async def supplier_health(service: SearchServiceDep, code: str) -> ConnectionOut:
    try:
        result = await service.check_supplier_health(code)
    except UnsupportedDriverError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return ConnectionOut(
        supplier_code=code,
        success=result.success,
        message=result.message,
        latency_ms=result.latency_ms,
    )
