"""
Schemas Pydantic per i Preventivi
Progetto: Gestionale Edile (Preventivi e Commesse)

Contiene:
- Enums: QuoteState, MeasurementUnit, Currency, PaymentStatus, SignerType
- Matrice delle transizioni di stato (VALID_TRANSITIONS)
- Value object incorporati nel preventivo (cliente, cantiere, voci, fasi,
  importi, piano pagamenti, firme, dettaglio stato)
- Aggregato Quote e schemi di input/output dei service
"""

import datetime
import re
import uuid
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, computed_field, field_validator


# -------------------------------------------------------------------
# Enum
# -------------------------------------------------------------------

class QuoteState(str, Enum):
    """Stati del ciclo di vita di un preventivo."""
    DRAFT = "draft"
    SENT = "sent"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CONVERTED = "converted"


class MeasurementUnit(str, Enum):
    """Unità di misura delle voci di computo."""
    SQUARE_METER = "m2"
    CUBIC_METER = "m3"
    LINEAR_METER = "ml"
    UNIT = "ud"
    KILOGRAM = "kg"
    HOUR = "h"


class Currency(str, Enum):
    """Valute supportate (nessuna conversione tra valute)."""
    EUR = "EUR"
    USD = "USD"


class PaymentStatus(str, Enum):
    """Stato di una rata del piano pagamenti."""
    PENDING = "pending"
    INVOICED = "invoiced"
    COLLECTED = "collected"


class SignerType(str, Enum):
    """Chi ha apposto la firma digitale."""
    COMPANY = "company"
    CLIENT = "client"


# -------------------------------------------------------------------
# Matrice Transizioni di Stato
# -------------------------------------------------------------------

VALID_TRANSITIONS: dict[QuoteState, list[QuoteState]] = {
    QuoteState.DRAFT: [QuoteState.SENT],
    QuoteState.SENT: [QuoteState.APPROVED, QuoteState.REJECTED, QuoteState.EXPIRED],
    QuoteState.APPROVED: [QuoteState.CONVERTED],
    QuoteState.REJECTED: [],  # Stato finale (solo nuova versione)
    QuoteState.EXPIRED: [],  # Stato finale (solo nuova versione)
    QuoteState.CONVERTED: [],  # Stato finale
}

EDITABLE_STATES: frozenset[QuoteState] = frozenset({QuoteState.DRAFT})

DELETABLE_STATES: frozenset[QuoteState] = frozenset(
    {QuoteState.DRAFT, QuoteState.REJECTED, QuoteState.EXPIRED}
)

SIGNABLE_STATES: frozenset[QuoteState] = frozenset(
    {QuoteState.DRAFT, QuoteState.SENT, QuoteState.APPROVED}
)

_VERSION_SUFFIX = re.compile(r"\s*\(v\d+\)$")


def base_quote_name(name: str) -> str:
    """Nome del preventivo senza il suffisso di versione " (vN)"."""
    return _VERSION_SUFFIX.sub("", name or "").strip()


# -------------------------------------------------------------------
# Value object: cliente e cantiere
# -------------------------------------------------------------------

class Address(BaseModel):
    """Indirizzo postale."""

    street: str = Field(default="", max_length=255, description="Via e numero civico")
    city: str = Field(default="", max_length=100, description="Città")
    province: Optional[str] = Field(default=None, max_length=100, description="Provincia")
    postal_code: Optional[str] = Field(default=None, max_length=10, description="CAP")
    country: Optional[str] = Field(default=None, max_length=100, description="Nazione")


class ClientSnapshot(BaseModel):
    """
    Copia dei dati del cliente al momento della redazione.

    Non è un riferimento vivo: modifiche o cancellazioni del cliente
    nell'anagrafica non alterano i preventivi già emessi.
    """

    id: str = Field(..., description="ID del cliente nell'anagrafica")
    name: str = Field(..., min_length=1, max_length=255, description="Nome o ragione sociale")
    company: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=50)
    tax_id: Optional[str] = Field(default=None, max_length=20, description="Codice fiscale / P.IVA")
    address: Optional[Address] = None


class Coordinates(BaseModel):
    """Coordinate geografiche del cantiere."""

    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class SiteLocation(BaseModel):
    """Ubicazione del cantiere."""

    address: Address = Field(default_factory=Address)
    coordinates: Optional[Coordinates] = None
    cadastral_reference: Optional[str] = Field(
        default=None,
        max_length=50,
        description="Riferimento catastale",
    )


# -------------------------------------------------------------------
# Voci di computo e fasi
# -------------------------------------------------------------------

class LineItem(BaseModel):
    """
    Voce di computo (lavorazione prezzata).

    Il totale è derivato (quantità × prezzo) solo in creazione o
    ricalcolo; un totale incoerente salvato in bozza viene segnalato
    dal validatore, non corretto.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    code: str = Field(default="", max_length=20, description="Codice gerarchico (es. 01.01)")
    name: str = Field(default="", max_length=255)
    description: Optional[str] = None
    unit: MeasurementUnit = MeasurementUnit.UNIT
    quantity: Decimal = Field(default=Decimal("0"), description="Quantità")
    unit_price: Decimal = Field(default=Decimal("0"), description="Prezzo unitario")
    total: Decimal = Field(default=Decimal("0"), description="Totale voce")

    @field_validator("quantity", "unit_price", "total", mode="before")
    @classmethod
    def convert_decimal_from_string(cls, v):
        """Gestisce input con virgola convertendolo in punto."""
        if isinstance(v, str):
            v = v.replace(",", ".")
        return v


class Phase(BaseModel):
    """Fase di cantiere, ordinata per numero."""

    number: int = Field(..., ge=1, description="Numero fase (da 1)")
    name: str = Field(default="", max_length=255)
    description: Optional[str] = None
    amount: Decimal = Field(default=Decimal("0"), description="Somma dei totali delle voci")
    estimated_duration_days: int = Field(default=0, ge=0)
    billing_percentage: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        le=100,
        description="Quota del totale fatturata al completamento della fase",
    )
    line_items: list[LineItem] = Field(default_factory=list)


# -------------------------------------------------------------------
# Importi e piano pagamenti
# -------------------------------------------------------------------

class PhaseAmount(BaseModel):
    """Riga del riepilogo importi per fase."""

    phase_number: int
    name: str
    amount: Decimal


class MoneyBreakdown(BaseModel):
    """Riepilogo economico: imponibile, IVA al 21% e totale."""

    subtotal: Decimal = Field(..., description="Imponibile")
    tax: Decimal = Field(..., description="IVA")
    total: Decimal = Field(..., description="Totale IVA inclusa")
    currency: Currency = Currency.EUR
    per_phase: list[PhaseAmount] = Field(default_factory=list)


class PaymentPlanEntry(BaseModel):
    """Rata del piano pagamenti."""

    number: int = Field(..., ge=1)
    description: str = Field(default="", max_length=255)
    percentage: Decimal = Field(..., ge=0, le=100)
    amount: Decimal = Field(...)
    due_date: Optional[datetime.date] = None
    linked_phase_number: Optional[int] = Field(default=None, ge=1)
    status: PaymentStatus = PaymentStatus.PENDING


# -------------------------------------------------------------------
# Stato, firme, metadati IA
# -------------------------------------------------------------------

class StateDetail(BaseModel):
    """Timestamp e flag associati alle transizioni di stato."""

    sent_to_client: bool = False
    sent_at: Optional[datetime.datetime] = None
    viewed_at: Optional[datetime.datetime] = None
    approved_at: Optional[datetime.datetime] = None
    rejected_at: Optional[datetime.datetime] = None
    rejection_reason: Optional[str] = None
    expired_at: Optional[datetime.datetime] = None
    converted_to_project: bool = False
    project_id: Optional[str] = None
    invoice_id: Optional[str] = None
    converted_at: Optional[datetime.datetime] = None


class Signature(BaseModel):
    """Firma digitale apposta sul preventivo."""

    signer_type: SignerType
    signer_name: str = Field(..., min_length=1, max_length=255)
    signed_at: datetime.datetime
    origin_ip: Optional[str] = Field(default=None, max_length=45)
    image: str = Field(..., description="Immagine della firma (data URL base64)")


class AIMetadata(BaseModel):
    """Metadati della generazione assistita."""

    model: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0, le=1)
    iterations: int = Field(default=0, ge=0)
    initial_prompt: Optional[str] = None
    conversation_id: Optional[str] = None


# -------------------------------------------------------------------
# Aggregato Preventivo
# -------------------------------------------------------------------

class QuoteContent(BaseModel):
    """
    Contenuto modificabile del preventivo.

    Volutamente permissivo: una bozza può essere incompleta o
    numericamente incoerente finché non viene inviata al cliente.
    """

    name: str = Field(default="", max_length=255)
    client: Optional[ClientSnapshot] = None
    site_location: Optional[SiteLocation] = None
    phases: list[Phase] = Field(default_factory=list)
    payment_plan: list[PaymentPlanEntry] = Field(default_factory=list)
    money: Optional[MoneyBreakdown] = None
    validity_days: int = Field(default=30, ge=1)
    ai_authored: bool = False
    ai_metadata: Optional[AIMetadata] = None
    conditions: list[str] = Field(default_factory=list, description="Condizioni contrattuali")
    notes: Optional[str] = None
    created_by: Optional[str] = None


class Quote(QuoteContent):
    """
    Preventivo (aggregate root).

    Possiede in esclusiva fasi, voci, rate e firme. Dopo la
    conversione mantiene solo un riferimento (per ID) a commessa
    e fattura di acconto.
    """

    id: uuid.UUID
    number: str = Field(..., pattern=r"^PRE-\d{4}-\d{3}$", description="Numero PRE-YYYY-NNN")
    version: int = Field(default=1, ge=1)
    family_id: Optional[uuid.UUID] = Field(
        default=None,
        description="Identificativo condiviso da tutte le versioni",
    )
    state: QuoteState = QuoteState.DRAFT
    state_detail: StateDetail = Field(default_factory=StateDetail)
    signatures: list[Signature] = Field(default_factory=list)
    valid_until: datetime.datetime
    created_at: datetime.datetime
    updated_at: datetime.datetime
    is_active: bool = True

    @property
    def base_name(self) -> str:
        """Nome senza suffisso di versione."""
        return base_quote_name(self.name)

    @property
    def total(self) -> Decimal:
        """Totale IVA inclusa (0 se gli importi non sono calcolati)."""
        return self.money.total if self.money is not None else Decimal("0")


# -------------------------------------------------------------------
# Input dei service
# -------------------------------------------------------------------

class QuoteCreate(BaseModel):
    """Schema per la creazione di un preventivo."""

    name: str = Field(..., min_length=1, max_length=255)
    client_id: str = Field(..., min_length=1, description="ID cliente in anagrafica")
    site_location: Optional[SiteLocation] = None
    phases: list[Phase] = Field(default_factory=list)
    payment_plan: Optional[list[PaymentPlanEntry]] = Field(
        default=None,
        description="Piano pagamenti esplicito; se assente viene generato",
    )
    include_down_payment: bool = True
    currency: Optional[Currency] = None
    validity_days: Optional[int] = Field(default=None, ge=1)
    conditions: list[str] = Field(default_factory=list)
    notes: Optional[str] = None
    created_by: Optional[str] = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Il nome del preventivo non può essere vuoto")
        return v


class GeneratedQuote(BaseModel):
    """Output del generatore IA esterno; i totali sono solo indicativi."""

    phases: list[Phase] = Field(default_factory=list)
    money: Optional[MoneyBreakdown] = None


class QuoteUpdate(BaseModel):
    """Schema per la modifica di una bozza (tutti i campi opzionali)."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    site_location: Optional[SiteLocation] = None
    phases: Optional[list[Phase]] = None
    payment_plan: Optional[list[PaymentPlanEntry]] = None
    money: Optional[MoneyBreakdown] = None
    validity_days: Optional[int] = Field(default=None, ge=1)
    conditions: Optional[list[str]] = None
    notes: Optional[str] = None


class SignatureCreate(BaseModel):
    """Schema per l'aggiunta di una firma."""

    signer_type: SignerType
    signer_name: str = Field(..., min_length=1, max_length=255)
    origin_ip: Optional[str] = Field(default=None, max_length=45)
    image: str = Field(..., min_length=1)


class QuoteFilters(BaseModel):
    """Filtri per la ricerca preventivi."""

    state: Optional[QuoteState] = None
    client_id: Optional[str] = None
    created_from: Optional[datetime.datetime] = None
    created_to: Optional[datetime.datetime] = None
    min_total: Optional[Decimal] = Field(default=None, ge=0)
    max_total: Optional[Decimal] = Field(default=None, ge=0)
    include_inactive: bool = False


# -------------------------------------------------------------------
# Output dei service
# -------------------------------------------------------------------

class ValidationResult(BaseModel):
    """Esito della validazione: gli errori bloccano, gli avvisi no."""

    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @computed_field
    @property
    def valid(self) -> bool:
        return not self.errors


class QuoteMetrics(BaseModel):
    """Statistiche aggregate sui preventivi attivi."""

    total_quotes: int = 0
    by_state: dict[QuoteState, int] = Field(default_factory=dict)
    approved_count: int = 0
    pending_count: int = 0
    expiring_soon_count: int = 0
    rejected_count: int = 0
    approval_rate: Decimal = Decimal("0")
    rejection_rate: Decimal = Decimal("0")
    approved_amount: Decimal = Decimal("0")


class ConversionResult(BaseModel):
    """Esito della conversione in commessa."""

    project_id: str
    invoice_id: str
    message: str


class ConversionCheck(BaseModel):
    """Verifica preliminare di convertibilità."""

    allowed: bool
    reason: Optional[str] = None


class ConversionSummary(BaseModel):
    """Riepilogo mostrato prima di confermare la conversione."""

    project_name: str
    client_name: Optional[str] = None
    total_amount: Decimal
    currency: Currency = Currency.EUR
    advance_amount: Decimal
    advance_percentage: Decimal
    phase_count: int
    payment_count: int
