"""
Unit tests per ProfitabilityService.

Fatture e spese arrivano da AsyncMock; il preventivo è convertito
tramite il ciclo di vita reale (vedi conftest).
"""

import asyncio
import datetime
from decimal import Decimal

import pytest

from app.core.exceptions import NotFoundError
from app.schemas.collaborators import CostCode, ExpenseRecord, InvoiceRecord
from app.schemas.profitability import ComparativeConcept
from app.schemas.quote import QuoteState
from app.services.profitability_service import UNMATCHED_BUCKET, classify_expense
from app.services.quote_math import compute_money_breakdown, generate_payment_plan


def _expense(category, name, amount, status="paid", project_id="proj-001"):
    return ExpenseRecord(
        project_id=project_id,
        cost_code=CostCode(category=category, name=name),
        total_amount=Decimal(amount),
        payment_status=status,
    )


# ============================================================
# Classificazione spese
# ============================================================


class TestClassifyExpense:
    """Test classificazione delle spese per parole chiave."""

    @pytest.mark.parametrize(
        "category,expected",
        [
            ("Subappalti", ("direct", "subcontractors")),
            ("Materiali", ("direct", "materials")),
            ("Noleggio attrezzature", ("direct", "equipment")),
            ("Manodopera", ("operating", "own_labor")),
            ("Trasporti", ("operating", "transport")),
            ("Permessi comunali", ("operating", "permits_licenses")),
            ("Spese generali", ("operating", "other")),
        ],
    )
    def test_category_keywords(self, category, expected):
        """Test parole chiave sulla categoria."""
        assert classify_expense(_expense(category, "", "1")) == expected

    def test_category_wins_over_name(self):
        """Test la categoria ha precedenza sul nome."""
        expense = _expense("Attrezzature", "Materiale di consumo", "1")

        assert classify_expense(expense) == ("direct", "equipment")

    def test_name_used_when_category_is_empty(self):
        """Test senza categoria si cerca nel nome."""
        assert classify_expense(_expense("", "Trasporto inerti", "1")) == ("operating", "transport")

    def test_first_rule_wins(self):
        """Test più parole chiave: vince la prima regola."""
        expense = _expense("Subappalto materiali", "", "1")

        assert classify_expense(expense) == ("direct", "subcontractors")

    def test_unmatched_expense(self):
        """Test nessuna corrispondenza -> costi diretti, altro."""
        assert classify_expense(_expense("Varie", "Cancelleria", "1")) == UNMATCHED_BUCKET


# ============================================================
# Calcolo
# ============================================================


class TestCalculate:
    """Test calcolo dell'analisi di redditività."""

    def test_zero_data(self, profitability_service, quote_in_state, quote_content, phase_factory):
        """Test preventivo da 60500 senza fatture né spese: tutto a zero, nessun errore."""
        phases = [phase_factory(1, "Struttura", [(100, 500)], duration=60)]
        money = compute_money_breakdown(phases)
        content = quote_content.model_copy(
            update={
                "phases": phases,
                "money": money,
                "payment_plan": generate_payment_plan(phases, money.total),
            }
        )

        async def scenario():
            quote = await quote_in_state(QuoteState.CONVERTED, content)
            return await profitability_service.calculate("proj-001", quote.id)

        analysis = asyncio.run(scenario())

        assert analysis.income.original_budget == Decimal("60500.00")
        assert analysis.income.total_invoiced == Decimal("0.00")
        assert analysis.direct_costs.total == Decimal("0.00")
        assert analysis.operating_expenses.total == Decimal("0.00")
        assert analysis.gross_margin == Decimal("0.00")
        assert analysis.gross_margin_percent == Decimal("0.00")
        assert analysis.net_profit == Decimal("0.00")
        assert analysis.net_profit_percent == Decimal("0.00")
        assert analysis.roi == Decimal("0.00")

    def test_full_reconciliation(
        self, profitability_service, quote_in_state, invoice_gateway, expense_gateway, clock
    ):
        """Test ricavi, costi, margini e tempi su dati reali."""
        invoice_gateway.list_invoices_by_project.return_value = [
            InvoiceRecord(id="f1", project_id="proj-001", total=Decimal("726"), state="collected"),
            InvoiceRecord(id="f2", project_id="proj-001", total=Decimal("2000"), state="sent"),
            InvoiceRecord(id="f3", project_id="proj-002", total=Decimal("9999"), state="collected"),
        ]
        expense_gateway.list_expenses_by_project.return_value = [
            _expense("Materiali", "Piastrelle", "500"),
            _expense("Subappalti", "Idraulico", "300"),
            _expense("", "Manodopera interna", "400"),
            _expense("Trasporti", "Carburante", "50"),
            _expense("Varie", "Cancelleria", "20"),
            _expense("Materiali", "Sanitari", "999", status="pending"),
        ]

        async def scenario():
            quote = await quote_in_state(QuoteState.CONVERTED)
            completed_at = clock.now + datetime.timedelta(days=25, hours=5)
            return await profitability_service.calculate("proj-001", quote.id, completed_at)

        analysis = asyncio.run(scenario())

        income = analysis.income
        assert income.original_budget == Decimal("2420.00")
        assert income.total_invoiced == Decimal("2726.00")
        assert income.total_collected == Decimal("726.00")
        assert income.approved_changes == Decimal("306.00")

        assert analysis.direct_costs.materials == Decimal("500.00")
        assert analysis.direct_costs.subcontractors == Decimal("300.00")
        assert analysis.direct_costs.other == Decimal("20.00")
        assert analysis.direct_costs.total == Decimal("820.00")
        assert analysis.operating_expenses.own_labor == Decimal("400.00")
        assert analysis.operating_expenses.transport == Decimal("50.00")
        assert analysis.operating_expenses.total == Decimal("450.00")

        assert analysis.gross_margin == Decimal("1906.00")
        assert analysis.gross_margin_percent == Decimal("69.92")
        assert analysis.net_profit == Decimal("1456.00")
        assert analysis.net_profit_percent == Decimal("53.41")
        assert analysis.roi == Decimal("60.17")

        rows = {row.concept: row for row in analysis.comparative}
        assert rows[ComparativeConcept.TOTAL_INCOME].variance == Decimal("306.00")
        assert rows[ComparativeConcept.DIRECT_COSTS].budgeted == Decimal("1694.00")
        assert rows[ComparativeConcept.DIRECT_COSTS].variance == Decimal("-874.00")
        assert rows[ComparativeConcept.OPERATING_EXPENSES].budgeted == Decimal("363.00")

        assert analysis.execution_time.planned_days == 20
        assert analysis.execution_time.actual_days == 25
        assert analysis.execution_time.variation_days == 5

    def test_quote_not_converted_uses_planned_days(self, profitability_service, quote_in_state):
        """Test preventivo mai convertito: durata reale = pianificata."""

        async def scenario():
            quote = await quote_in_state(QuoteState.APPROVED)
            return await profitability_service.calculate("proj-001", quote.id)

        analysis = asyncio.run(scenario())

        assert analysis.execution_time.actual_days == analysis.execution_time.planned_days
        assert analysis.execution_time.variation_days == 0

    def test_naive_completion_read_as_utc(self, profitability_service, quote_in_state, clock):
        """Test fine lavori senza fuso orario interpretata come UTC."""

        async def scenario():
            quote = await quote_in_state(QuoteState.CONVERTED)
            completed_at = (clock.now + datetime.timedelta(days=25)).replace(tzinfo=None)
            return await profitability_service.calculate("proj-001", quote.id, completed_at)

        analysis = asyncio.run(scenario())

        assert analysis.execution_time.actual_days == 25
        assert analysis.execution_time.variation_days == 5

    def test_unknown_quote(self, profitability_service):
        """Test preventivo inesistente -> NotFoundError."""
        with pytest.raises(NotFoundError):
            asyncio.run(profitability_service.calculate("proj-001", "sconosciuto"))


# ============================================================
# Note e consultazione
# ============================================================


class TestNotesAndQueries:
    """Test registro note e letture."""

    def test_recalculation_keeps_notes(self, profitability_service, quote_in_state, invoice_gateway):
        """Test il ricalcolo sostituisce i numeri ma mantiene le note."""

        async def scenario():
            quote = await quote_in_state(QuoteState.CONVERTED)
            await profitability_service.calculate("proj-001", quote.id)
            await profitability_service.add_note("proj-001", "Ritardo per maltempo")
            invoice_gateway.list_invoices_by_project.return_value = [
                InvoiceRecord(id="f1", project_id="proj-001", total=Decimal("1000"), state="sent"),
            ]
            await profitability_service.calculate("proj-001", quote.id)
            return await profitability_service.get_analysis("proj-001"), await profitability_service.list_analyses()

        analysis, analyses = asyncio.run(scenario())

        assert [note.text for note in analysis.notes] == ["Ritardo per maltempo"]
        assert analysis.income.total_invoiced == Decimal("1000.00")
        assert len(analyses) == 1

    def test_note_without_analysis(self, profitability_service):
        """Test nota su commessa senza analisi -> NotFoundError."""
        with pytest.raises(NotFoundError):
            asyncio.run(profitability_service.add_note("proj-404", "Nota"))

    def test_missing_analysis(self, profitability_service):
        """Test analisi non calcolata -> None."""
        assert asyncio.run(profitability_service.get_analysis("proj-404")) is None
