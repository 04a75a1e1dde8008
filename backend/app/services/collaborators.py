"""
Contratti dei collaboratori esterni
Progetto: Gestionale Edile (Preventivi e Commesse)

Anagrafica clienti, commesse, fatturazione, spese e generatore IA
sono implementati fuori da questo pacchetto. I service li ricevono
per dependency injection; nei test si usano AsyncMock.
"""

from typing import Optional, Protocol

from app.schemas.collaborators import (
    AdvanceInvoiceRequest,
    ExpenseRecord,
    InvoiceRecord,
    ProjectSeed,
)
from app.schemas.quote import ClientSnapshot, GeneratedQuote


class ClientDirectory(Protocol):
    """Anagrafica clienti, usata solo in fase di redazione."""

    async def get_client(self, client_id: str) -> Optional[ClientSnapshot]:
        ...


class ProjectGateway(Protocol):
    """Creazione commesse."""

    async def create_project(self, seed: ProjectSeed) -> str:
        """Crea la commessa e ne restituisce l'ID."""
        ...


class InvoiceGateway(Protocol):
    """Fatturazione."""

    async def list_invoices_by_project(self, project_id: str) -> list[InvoiceRecord]:
        ...

    async def create_invoice(self, request: AdvanceInvoiceRequest) -> str:
        """Emette la fattura e ne restituisce l'ID."""
        ...


class ExpenseGateway(Protocol):
    """Spese di commessa."""

    async def list_expenses_by_project(self, project_id: str) -> list[ExpenseRecord]:
        ...


class QuoteGenerator(Protocol):
    """Generatore IA di bozze di preventivo (totali solo indicativi)."""

    async def generate(self, prompt: str) -> GeneratedQuote:
        ...
