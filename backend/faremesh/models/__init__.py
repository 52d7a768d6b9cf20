# Importare tutti i modelli qui serve a "registrarli" con Base.
# SQLAlchemy deve conoscere tutte le tabelle prima di poter
# chiamare create_all() o generare migrazioni Alembic.
from faremesh.models.supplier import Supplier  # noqa: F401
