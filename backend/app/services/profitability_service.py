"""
Service Layer per l'Analisi di Redditività
Progetto: Gestionale Edile (Preventivi e Commesse)

Riconcilia a consuntivo un preventivo convertito con il fatturato e
le spese pagate della commessa:
- ricavi (preventivo originale, varianti, fatturato, incassato)
- costi diretti e spese operative per categoria
- margine lordo, utile netto, ROI
- confronto preventivato / consuntivo (quote stimate configurabili)
- tempi di esecuzione pianificati e reali

Le spese sono classificate con una lista ordinata di regole a parole
chiave: vince la prima regola che corrisponde, cercando prima nella
categoria della voce di costo e poi nel suo nome.
"""

import datetime
import logging
from decimal import Decimal
from typing import Iterable, Optional

from app.core.clock import Clock, as_utc, utc_now
from app.core.config import Settings, get_settings
from app.core.exceptions import NotFoundError
from app.repositories.analysis_repository import AnalysisRepository
from app.repositories.quote_repository import QuoteId, QuoteRepository
from app.schemas.collaborators import (
    EXPENSE_STATUS_PAID,
    INVOICE_STATE_COLLECTED,
    ExpenseRecord,
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
from app.schemas.quote import Quote
from app.services.collaborators import ExpenseGateway, InvoiceGateway
from app.services.quote_math import percentage_of, round2

# Logger per questo modulo
logger = logging.getLogger(__name__)

DIRECT = "direct"
OPERATING = "operating"

# (parole chiave, gruppo, categoria): l'ordine conta
CLASSIFICATION_RULES: tuple[tuple[tuple[str, ...], str, str], ...] = (
    (("subcontract", "subcontrat", "subappalt"), DIRECT, "subcontractors"),
    (("material",), DIRECT, "materials"),
    (("equipment", "maquinaria", "equipo", "attrezzatur", "macchinari"), DIRECT, "equipment"),
    (("labor", "personal", "mano de obra", "manodopera"), OPERATING, "own_labor"),
    (("transport", "trasport", "vehic", "veicol"), OPERATING, "transport"),
    (("permit", "permis", "permess", "licen"), OPERATING, "permits_licenses"),
    (("overhead", "spese generali"), OPERATING, "other"),
)

UNMATCHED_BUCKET = (DIRECT, "other")

_DIRECT_BUCKETS = ("subcontractors", "materials", "equipment", "other")
_OPERATING_BUCKETS = ("own_labor", "transport", "permits_licenses", "other")


def classify_expense(expense: ExpenseRecord) -> tuple[str, str]:
    """
    Assegna la spesa a un solo gruppo (diretti/operativi) e categoria.

    Returns:
        tuple[str, str]: (gruppo, categoria)
    """
    for text in (expense.cost_code.category, expense.cost_code.name):
        text = (text or "").lower()
        if not text:
            continue
        for keywords, group, bucket in CLASSIFICATION_RULES:
            if any(keyword in text for keyword in keywords):
                return group, bucket
    return UNMATCHED_BUCKET


def _sum(values: Iterable[Decimal]) -> Decimal:
    return round2(sum(values, Decimal("0")))


def _comparative_row(
    concept: ComparativeConcept,
    budgeted: Decimal,
    actual: Decimal,
) -> ComparativeRow:
    variance = round2(actual - budgeted)
    variance_percent = percentage_of(variance, budgeted) if budgeted > 0 else Decimal("0.00")
    return ComparativeRow(
        concept=concept,
        budgeted=round2(budgeted),
        actual=round2(actual),
        variance=variance,
        variance_percent=variance_percent,
    )


class ProfitabilityService:
    """
    Service per il calcolo e la consultazione delle analisi di redditività.

    Legge fatture e spese dai collaboratori esterni e salva il
    risultato nell'AnalysisRepository (una analisi per commessa).
    """

    def __init__(
        self,
        quote_repository: QuoteRepository,
        analysis_repository: AnalysisRepository,
        invoice_gateway: InvoiceGateway,
        expense_gateway: ExpenseGateway,
        settings: Optional[Settings] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._quotes = quote_repository
        self._analyses = analysis_repository
        self._invoice_gateway = invoice_gateway
        self._expense_gateway = expense_gateway
        self._settings = settings or get_settings()
        self._clock = clock

    def _execution_time(
        self,
        quote: Quote,
        completed_at: Optional[datetime.datetime],
    ) -> ExecutionTime:
        planned = sum(phase.estimated_duration_days for phase in quote.phases)
        converted_at = quote.state_detail.converted_at
        if converted_at is None:
            actual = planned
        else:
            end = as_utc(completed_at) if completed_at is not None else self._clock()
            actual = int((end - converted_at).total_seconds() // 86400)
        return ExecutionTime(
            planned_days=planned,
            actual_days=actual,
            variation_days=actual - planned,
        )

    async def calculate(
        self,
        project_id: str,
        quote_id: QuoteId,
        completed_at: Optional[datetime.datetime] = None,
    ) -> ProfitabilityAnalysis:
        """
        Calcola (o ricalcola) l'analisi di redditività della commessa.

        Steps:
        1. Recupera il preventivo convertito
        2. Somma fatturato e incassato della commessa
        3. Classifica le sole spese pagate in costi diretti o operativi
        4. Calcola margini, ROI e confronto con le quote stimate
        5. Calcola i tempi di esecuzione
        6. Salva sostituendo l'analisi precedente (note mantenute)

        Args:
            project_id: ID della commessa
            quote_id: ID del preventivo di origine
            completed_at: Fine lavori (default: adesso)

        Returns:
            ProfitabilityAnalysis: L'analisi salvata

        Raises:
            NotFoundError: Se il preventivo non esiste
        """
        quote = await self._quotes.get(quote_id, include_inactive=True)
        if quote is None:
            logger.warning("Analisi richiesta per preventivo inesistente: %s", quote_id)
            raise NotFoundError(f"Preventivo {quote_id} non trovato")

        invoices = [
            invoice
            for invoice in await self._invoice_gateway.list_invoices_by_project(project_id)
            if invoice.project_id == project_id
        ]
        expenses = [
            expense
            for expense in await self._expense_gateway.list_expenses_by_project(project_id)
            if expense.project_id == project_id
        ]

        # Ricavi
        original_budget = round2(quote.total)
        total_invoiced = _sum(invoice.total for invoice in invoices)
        income = Income(
            original_budget=original_budget,
            approved_changes=round2(total_invoiced - original_budget),
            total_invoiced=total_invoiced,
            total_collected=_sum(
                invoice.total
                for invoice in invoices
                if invoice.state.lower() == INVOICE_STATE_COLLECTED
            ),
        )

        # Costi: solo spese pagate, ognuna in un solo gruppo
        buckets: dict[str, dict[str, Decimal]] = {
            DIRECT: {name: Decimal("0") for name in _DIRECT_BUCKETS},
            OPERATING: {name: Decimal("0") for name in _OPERATING_BUCKETS},
        }
        paid = [e for e in expenses if e.payment_status.lower() == EXPENSE_STATUS_PAID]
        for expense in paid:
            group, bucket = classify_expense(expense)
            buckets[group][bucket] += expense.total_amount

        direct_costs = DirectCosts(
            **{name: round2(value) for name, value in buckets[DIRECT].items()},
            total=_sum(buckets[DIRECT].values()),
        )
        operating_expenses = OperatingExpenses(
            **{name: round2(value) for name, value in buckets[OPERATING].items()},
            total=_sum(buckets[OPERATING].values()),
        )

        # Margini
        gross_margin = round2(total_invoiced - direct_costs.total)
        net_profit = round2(gross_margin - operating_expenses.total)

        # Confronto con le quote stimate
        budgeted_direct = original_budget * self._settings.budgeted_direct_cost_ratio
        budgeted_operating = original_budget * self._settings.budgeted_operating_expense_ratio
        comparative = [
            _comparative_row(ComparativeConcept.TOTAL_INCOME, original_budget, total_invoiced),
            _comparative_row(ComparativeConcept.DIRECT_COSTS, budgeted_direct, direct_costs.total),
            _comparative_row(
                ComparativeConcept.OPERATING_EXPENSES,
                budgeted_operating,
                operating_expenses.total,
            ),
            _comparative_row(
                ComparativeConcept.NET_PROFIT,
                original_budget - budgeted_direct - budgeted_operating,
                net_profit,
            ),
        ]

        analysis = ProfitabilityAnalysis(
            project_id=project_id,
            quote_id=quote.id,
            income=income,
            direct_costs=direct_costs,
            operating_expenses=operating_expenses,
            gross_margin=gross_margin,
            gross_margin_percent=percentage_of(gross_margin, total_invoiced),
            net_profit=net_profit,
            net_profit_percent=percentage_of(net_profit, total_invoiced),
            roi=percentage_of(net_profit, original_budget),
            comparative=comparative,
            execution_time=self._execution_time(quote, completed_at),
            notes=[],
            created_at=self._clock(),
        )

        stored = await self._analyses.upsert(analysis)
        logger.info(
            "Analisi commessa %s: fatturato %s, utile netto %s (%d spese pagate su %d)",
            project_id,
            total_invoiced,
            net_profit,
            len(paid),
            len(expenses),
        )
        return stored

    async def add_note(self, project_id: str, text: str) -> ProfitabilityAnalysis:
        """
        Aggiunge una nota all'analisi della commessa.

        Raises:
            NotFoundError: Se l'analisi non esiste
        """
        note = AnalysisNote(text=text, created_at=self._clock())
        return await self._analyses.append_note(project_id, note)

    async def get_analysis(self, project_id: str) -> Optional[ProfitabilityAnalysis]:
        """Analisi della commessa, None se non ancora calcolata."""
        return await self._analyses.get(project_id)

    async def list_analyses(self) -> list[ProfitabilityAnalysis]:
        """Tutte le analisi calcolate."""
        return await self._analyses.list()
