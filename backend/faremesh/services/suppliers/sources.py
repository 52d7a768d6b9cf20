"""
Sorgenti dei descrittori supplier — risoluzione a due livelli.

  1. DatabaseSupplierSource → tabella suppliers (gestita da un pannello admin esterno)
  2. StaticSupplierSource   → settings.suppliers.suppliers (fallback da .env)

Il SupplierRegistry prova sempre prima la sorgente persistita, poi quella statica.
"""
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from faremesh.models.supplier import Supplier
from faremesh.services.suppliers.base import SupplierDescriptor


def _to_descriptor(row: Supplier) -> SupplierDescriptor:
    return SupplierDescriptor(
        code=row.code,
        driver=row.driver,
        name=row.name,
        is_active=row.is_active,
        is_healthy=row.is_healthy,
        priority=row.priority,
        config=dict(row.config or {}),
        base_url=row.api_base_url,
        api_key=row.api_key,
        api_secret=row.api_secret,
        timeout=row.timeout,
        retry_times=row.retry_times,
    )


class DatabaseSupplierSource:

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self._session_maker = session_maker

    async def get(self, code: str) -> SupplierDescriptor | None:
        async with self._session_maker() as session:
            result = await session.execute(select(Supplier).where(Supplier.code == code))
            row = result.scalar_one_or_none()
        return _to_descriptor(row) if row is not None else None

    async def active(self) -> list[SupplierDescriptor]:
        """Supplier attivi e sani, per priorità crescente (a parità: per codice)."""
        stmt = (
            select(Supplier)
            .where(Supplier.is_active.is_(True), Supplier.is_healthy.is_(True))
            .order_by(Supplier.priority.asc(), Supplier.code.asc())
        )
        async with self._session_maker() as session:
            result = await session.execute(stmt)
            rows = list(result.scalars().all())
        return [_to_descriptor(r) for r in rows]

    async def set_health(self, code: str, healthy: bool) -> None:
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        async with self._session_maker() as session:
            await session.execute(
                update(Supplier)
                .where(Supplier.code == code)
                .values(is_healthy=healthy, last_health_check=now)
            )
            await session.commit()


class StaticSupplierSource:

    def __init__(self, suppliers: dict[str, dict[str, Any]]) -> None:
        self._suppliers = dict(suppliers)

    def get(self, name: str) -> dict[str, Any]:
        return dict(self._suppliers.get(name) or {})

    def names(self) -> list[str]:
        """Nomi nell'ordine di dichiarazione."""
        return list(self._suppliers)
