"""
Schemas Pydantic per l'Analisi di Redditività
Progetto: Gestionale Edile (Preventivi e Commesse)

Confronto a consuntivo tra preventivo convertito, fatturato e spese
pagate della commessa. Un'analisi per commessa.
"""

import datetime
import uuid
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field


class ComparativeConcept(str, Enum):
    """Voci del confronto preventivato / consuntivo."""
    TOTAL_INCOME = "total_income"
    DIRECT_COSTS = "direct_costs"
    OPERATING_EXPENSES = "operating_expenses"
    NET_PROFIT = "net_profit"


class Income(BaseModel):
    """Ricavi della commessa."""

    original_budget: Decimal = Decimal("0")
    approved_changes: Decimal = Decimal("0")
    total_invoiced: Decimal = Decimal("0")
    total_collected: Decimal = Decimal("0")


class DirectCosts(BaseModel):
    """Costi diretti pagati, per categoria."""

    subcontractors: Decimal = Decimal("0")
    materials: Decimal = Decimal("0")
    equipment: Decimal = Decimal("0")
    other: Decimal = Decimal("0")
    total: Decimal = Decimal("0")


class OperatingExpenses(BaseModel):
    """Spese operative pagate, per categoria."""

    own_labor: Decimal = Decimal("0")
    transport: Decimal = Decimal("0")
    permits_licenses: Decimal = Decimal("0")
    other: Decimal = Decimal("0")
    total: Decimal = Decimal("0")


class ComparativeRow(BaseModel):
    """Riga preventivato / consuntivo con scostamento."""

    concept: ComparativeConcept
    budgeted: Decimal
    actual: Decimal
    variance: Decimal
    variance_percent: Decimal


class ExecutionTime(BaseModel):
    """Durata pianificata e reale in giorni."""

    planned_days: int = 0
    actual_days: int = 0
    variation_days: int = 0


class AnalysisNote(BaseModel):
    """Nota del registro (solo append)."""

    text: str = Field(..., min_length=1)
    created_at: datetime.datetime


class ProfitabilityAnalysis(BaseModel):
    """Analisi di redditività di una commessa."""

    project_id: str
    quote_id: uuid.UUID
    income: Income
    direct_costs: DirectCosts
    operating_expenses: OperatingExpenses
    gross_margin: Decimal
    gross_margin_percent: Decimal
    net_profit: Decimal
    net_profit_percent: Decimal
    roi: Decimal
    comparative: list[ComparativeRow] = Field(default_factory=list)
    execution_time: ExecutionTime = Field(default_factory=ExecutionTime)
    notes: list[AnalysisNote] = Field(default_factory=list)
    created_at: datetime.datetime
