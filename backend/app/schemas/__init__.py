"""
Schemas Pydantic per il progetto Gestionale Edile

Questo modulo contiene gli schemi Pydantic dei documenti di dominio
(preventivi, analisi di redditività) e dei record scambiati con i
collaboratori esterni.
"""

# Import degli schemi per renderli disponibili tramite import diretto
# es: from app.schemas import Quote, QuoteState, etc.

from app.schemas.quote import (
    DELETABLE_STATES,
    EDITABLE_STATES,
    SIGNABLE_STATES,
    VALID_TRANSITIONS,
    AIMetadata,
    Address,
    ClientSnapshot,
    ConversionCheck,
    ConversionResult,
    ConversionSummary,
    Coordinates,
    Currency,
    GeneratedQuote,
    LineItem,
    MeasurementUnit,
    MoneyBreakdown,
    PaymentPlanEntry,
    PaymentStatus,
    Phase,
    PhaseAmount,
    Quote,
    QuoteContent,
    QuoteCreate,
    QuoteFilters,
    QuoteMetrics,
    QuoteState,
    QuoteUpdate,
    Signature,
    SignatureCreate,
    SignerType,
    SiteLocation,
    StateDetail,
    ValidationResult,
    base_quote_name,
)
from app.schemas.collaborators import (
    AdvanceInvoiceRequest,
    CostCode,
    ExpenseRecord,
    InvoiceRecord,
    ProjectPhaseSeed,
    ProjectPhaseStatus,
    ProjectSeed,
)
from app.schemas.profitability import (
    AnalysisNote,
    ComparativeConcept,
    ComparativeRow,
    DirectCosts,
    ExecutionTime,
    Income,
    OperatingExpenses,
    ProfitabilityAnalysis,
)

__all__ = [
    # Preventivi
    "DELETABLE_STATES",
    "EDITABLE_STATES",
    "SIGNABLE_STATES",
    "VALID_TRANSITIONS",
    "AIMetadata",
    "Address",
    "ClientSnapshot",
    "ConversionCheck",
    "ConversionResult",
    "ConversionSummary",
    "Coordinates",
    "Currency",
    "GeneratedQuote",
    "LineItem",
    "MeasurementUnit",
    "MoneyBreakdown",
    "PaymentPlanEntry",
    "PaymentStatus",
    "Phase",
    "PhaseAmount",
    "Quote",
    "QuoteContent",
    "QuoteCreate",
    "QuoteFilters",
    "QuoteMetrics",
    "QuoteState",
    "QuoteUpdate",
    "Signature",
    "SignatureCreate",
    "SignerType",
    "SiteLocation",
    "StateDetail",
    "ValidationResult",
    "base_quote_name",
    # Collaboratori
    "AdvanceInvoiceRequest",
    "CostCode",
    "ExpenseRecord",
    "InvoiceRecord",
    "ProjectPhaseSeed",
    "ProjectPhaseStatus",
    "ProjectSeed",
    # Redditività
    "AnalysisNote",
    "ComparativeConcept",
    "ComparativeRow",
    "DirectCosts",
    "ExecutionTime",
    "Income",
    "OperatingExpenses",
    "ProfitabilityAnalysis",
]
