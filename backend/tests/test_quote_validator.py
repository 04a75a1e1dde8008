"""
Unit tests per la validazione dei preventivi.
"""

import datetime
import uuid
from decimal import Decimal

from app.schemas.quote import (
    LineItem,
    MoneyBreakdown,
    PaymentPlanEntry,
    Phase,
    Quote,
    QuoteContent,
)
from app.services.quote_validator import validate_quote


def _as_quote(content: QuoteContent, created_at=None, validity_days=30) -> Quote:
    created_at = created_at or datetime.datetime(2024, 5, 1, tzinfo=datetime.timezone.utc)
    return Quote(
        **content.model_dump(),
        id=uuid.uuid4(),
        number="PRE-2024-001",
        valid_until=created_at + datetime.timedelta(days=validity_days),
        created_at=created_at,
        updated_at=created_at,
    )


# ============================================================
# Preventivo coerente
# ============================================================


class TestValidQuote:
    """Test preventivo completo e coerente."""

    def test_no_errors_no_warnings(self, quote_content):
        """Test nessun errore e nessun avviso."""
        result = validate_quote(_as_quote(quote_content))

        assert result.valid is True
        assert result.errors == []
        assert result.warnings == []

    def test_accepts_content_without_dates(self, quote_content):
        """Test i controlli sulle date vengono saltati per i contenuti parziali."""
        assert validate_quote(quote_content).valid is True


# ============================================================
# Errori bloccanti
# ============================================================


class TestValidationErrors:
    """Test errori che bloccano l'invio."""

    def test_empty_quote(self):
        """Test bozza vuota: nome, cliente, fasi e importi mancanti."""
        result = validate_quote(QuoteContent())

        assert result.valid is False
        assert "Il preventivo deve avere un nome" in result.errors
        assert "Il preventivo deve avere un cliente assegnato" in result.errors
        assert "Il preventivo deve avere almeno una fase" in result.errors
        assert "Gli importi del preventivo non sono stati calcolati" in result.errors
        assert "Il preventivo non ha un piano pagamenti definito" in result.warnings

    def test_blank_name(self, quote_content):
        """Test nome composto da soli spazi."""
        content = quote_content.model_copy(update={"name": "   "})

        assert "Il preventivo deve avere un nome" in validate_quote(content).errors

    def test_phase_without_name_and_items(self, quote_content):
        """Test fase senza nome e senza voci."""
        phases = [*quote_content.phases, Phase(number=3, name="")]
        content = quote_content.model_copy(update={"phases": phases})

        errors = validate_quote(content).errors

        assert "La fase 3 non ha un nome" in errors
        assert 'La fase "" non ha voci' in errors

    def test_invalid_quantity_and_price(self, quote_content):
        """Test quantità zero e prezzo negativo."""
        phase = Phase(
            number=1,
            name="Scavi",
            line_items=[
                LineItem(name="Scavo", quantity=Decimal("0"), unit_price=Decimal("10")),
                LineItem(name="Rinterro", quantity=Decimal("1"), unit_price=Decimal("-5"), total=Decimal("-5")),
            ],
        )
        content = quote_content.model_copy(update={"phases": [phase]})

        errors = validate_quote(content).errors

        assert 'La voce 1 della fase "Scavi" ha una quantità non valida' in errors
        assert 'La voce 2 della fase "Scavi" ha un prezzo unitario non valido' in errors

    def test_duplicate_phase_numbers(self, quote_content):
        """Test numeri di fase duplicati."""
        first = quote_content.phases[0]
        content = quote_content.model_copy(update={"phases": [first, first]})

        assert "Numeri di fase duplicati: 1" in validate_quote(content).errors

    def test_plan_percentages_not_100(self, quote_content):
        """Test percentuali del piano diverse da 100."""
        plan = [
            PaymentPlanEntry(number=1, percentage=Decimal("60"), amount=Decimal("1452")),
            PaymentPlanEntry(number=2, percentage=Decimal("30"), amount=Decimal("726")),
        ]
        content = quote_content.model_copy(update={"payment_plan": plan})

        errors = validate_quote(content).errors

        assert "Le percentuali del piano pagamenti devono sommare 100% (attuale: 90.00%)" in errors

    def test_percentages_within_tolerance(self, quote_content):
        """Test tolleranza di 0.01 sulla somma delle percentuali."""
        plan = [entry.model_copy() for entry in quote_content.payment_plan]
        plan[-1] = plan[-1].model_copy(update={"percentage": plan[-1].percentage - Decimal("0.005")})
        content = quote_content.model_copy(update={"payment_plan": plan})

        assert validate_quote(content).valid is True

    def test_valid_until_not_after_created_at(self, quote_content):
        """Test scadenza non successiva alla creazione."""
        quote = _as_quote(quote_content)
        quote = quote.model_copy(update={"valid_until": quote.created_at})

        assert (
            "La data di validità deve essere successiva alla data di creazione"
            in validate_quote(quote).errors
        )

    def test_zero_total(self, quote_content):
        """Test totale a zero."""
        money = MoneyBreakdown(subtotal=Decimal("0"), tax=Decimal("0"), total=Decimal("0"))
        content = quote_content.model_copy(update={"money": money})

        assert "L'importo totale deve essere maggiore di 0" in validate_quote(content).errors


# ============================================================
# Avvisi non bloccanti
# ============================================================


class TestValidationWarnings:
    """Test avvisi che non bloccano l'invio."""

    def test_stale_line_total(self, quote_content):
        """Test totale voce diverso da quantità × prezzo."""
        phase = quote_content.phases[0]
        item = phase.line_items[0].model_copy(update={"total": Decimal("999")})
        phases = [phase.model_copy(update={"line_items": [item]}), *quote_content.phases[1:]]
        content = quote_content.model_copy(update={"phases": phases})

        result = validate_quote(content)

        assert result.valid is True
        assert f'La voce "{item.name}" ha un totale diverso da quantità × prezzo' in result.warnings
        assert (
            'L\'importo della fase "Demolizioni" non corrisponde alla somma delle voci'
            in result.warnings
        )

    def test_payment_amount_mismatch(self, quote_content):
        """Test importo rata incoerente con la percentuale."""
        plan = list(quote_content.payment_plan)
        plan[0] = plan[0].model_copy(update={"amount": plan[0].amount + Decimal("10")})
        content = quote_content.model_copy(update={"payment_plan": plan})

        result = validate_quote(content)

        assert result.valid is True
        assert "La rata 1 ha un importo che non corrisponde alla sua percentuale" in result.warnings
        assert any(w.startswith("La somma delle rate") for w in result.warnings)

    def test_tax_and_total_mismatch(self, quote_content):
        """Test IVA e totale incoerenti."""
        money = quote_content.money.model_copy(update={"tax": Decimal("400.00")})
        content = quote_content.model_copy(update={"money": money})

        result = validate_quote(content)

        assert result.valid is True
        assert "L'IVA non corrisponde al 21% dell'imponibile" in result.warnings
        assert "Il totale non corrisponde a imponibile + IVA" in result.warnings

    def test_missing_payment_plan(self, quote_content):
        """Test piano pagamenti assente."""
        content = quote_content.model_copy(update={"payment_plan": []})

        result = validate_quote(content)

        assert result.valid is True
        assert result.warnings == ["Il preventivo non ha un piano pagamenti definito"]
