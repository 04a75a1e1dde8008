"""
Schemas Pydantic per i collaboratori esterni
Progetto: Gestionale Edile (Preventivi e Commesse)

Record scambiati con anagrafica commesse, fatturazione e spese.
I collaboratori sono implementati altrove: qui si fissa solo
la forma dei dati attraversando il confine.
"""

import datetime
import uuid
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from app.schemas.quote import ClientSnapshot, Currency, SiteLocation


INVOICE_STATE_COLLECTED = "collected"
EXPENSE_STATUS_PAID = "paid"


class ProjectPhaseStatus(str, Enum):
    """Stato iniziale delle fasi di una nuova commessa."""
    PENDING = "pending"
    BLOCKED = "blocked"


# -------------------------------------------------------------------
# Commessa e fattura di acconto (conversione)
# -------------------------------------------------------------------

class ProjectPhaseSeed(BaseModel):
    """Fase della commessa creata da un preventivo."""

    number: int = Field(..., ge=1)
    name: str
    description: Optional[str] = None
    amount: Decimal
    estimated_duration_days: int = 0
    status: ProjectPhaseStatus


class ProjectSeed(BaseModel):
    """Dati con cui il collaboratore crea la commessa."""

    quote_id: uuid.UUID
    quote_number: str
    name: str
    client: Optional[ClientSnapshot] = None
    site_location: Optional[SiteLocation] = None
    budget: Decimal = Field(..., description="Totale del preventivo IVA inclusa")
    currency: Currency = Currency.EUR
    phases: list[ProjectPhaseSeed] = Field(default_factory=list)


class AdvanceInvoiceRequest(BaseModel):
    """Richiesta di emissione della fattura di acconto."""

    project_id: str
    quote_id: uuid.UUID
    amount: Decimal = Field(..., ge=0)
    phase_number: Optional[int] = Field(
        default=None,
        description="Numero della rata del piano pagamenti fatturata",
    )
    concept: str = "Acconto di progetto"
    description: Optional[str] = None
    currency: Currency = Currency.EUR
    client: Optional[ClientSnapshot] = None
    due_date: Optional[datetime.date] = None


# -------------------------------------------------------------------
# Fatture e spese (analisi di redditività)
# -------------------------------------------------------------------

class InvoiceRecord(BaseModel):
    """Fattura emessa su una commessa."""

    id: str
    project_id: str
    total: Decimal = Decimal("0")
    state: str = Field(default="draft", description="draft | sent | collected | ...")


class CostCode(BaseModel):
    """Voce di costo a cui è imputata una spesa."""

    category: str = ""
    name: str = ""


class ExpenseRecord(BaseModel):
    """Spesa sostenuta su una commessa."""

    id: Optional[str] = None
    project_id: str
    cost_code: CostCode = Field(default_factory=CostCode)
    total_amount: Decimal = Decimal("0")
    payment_status: str = Field(default="pending", description="pending | paid | ...")
