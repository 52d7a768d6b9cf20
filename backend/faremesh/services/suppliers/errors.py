"""Eccezioni del layer supplier."""


class SupplierError(Exception):
    """Errore di un singolo supplier: trasporto, autenticazione o risposta malformata."""

    def __init__(self, supplier_code: str, message: str) -> None:
        super().__init__(f"[{supplier_code}] {message}")
        self.supplier_code = supplier_code
        self.message = message


class UnsupportedDriverError(Exception):
    """Il nome del driver risolto non ha un'implementazione registrata."""

    def __init__(self, driver: str) -> None:
        super().__init__(f"Unsupported flight supplier driver: {driver}")
        self.driver = driver
