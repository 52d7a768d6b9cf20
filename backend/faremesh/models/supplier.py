from datetime import datetime

from sqlalchemy import Boolean, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from faremesh.db.database import Base


class Supplier(Base):
    __tablename__ = "suppliers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # Identificativo univoco (es. "amadeus", "duffel-prod")
    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    # Quale adapter usare (chiave nel SupplierRegistry)
    driver: Mapped[str] = mapped_column(String(50), nullable=False)
    api_base_url: Mapped[str | None] = mapped_column(String(255))
    api_key: Mapped[str | None] = mapped_column(Text)
    api_secret: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_healthy: Mapped[bool] = mapped_column(Boolean, default=True)
    # Valore più basso = interrogato per primo
    priority: Mapped[int] = mapped_column(Integer, default=0)
    config: Mapped[dict | None] = mapped_column(JSONB)
    timeout: Mapped[int] = mapped_column(Integer, default=30)
    retry_times: Mapped[int] = mapped_column(Integer, default=2)
    last_health_check: Mapped[datetime | None] = mapped_column()
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())

    __table_args__ = (
        Index("idx_suppliers_active", "is_active", "is_healthy", "priority"),
    )
