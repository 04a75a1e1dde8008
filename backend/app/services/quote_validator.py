"""
Validazione strutturale e numerica dei preventivi
Progetto: Gestionale Edile (Preventivi e Commesse)

Gli errori bloccano l'invio al cliente; gli avvisi no. Una bozza
può restare incoerente mentre viene modificata, ma deve essere
coerente prima di uscire dallo stato draft.
"""

import logging
from collections import Counter
from decimal import Decimal
from typing import Union

from app.schemas.quote import Quote, QuoteContent, ValidationResult
from app.services.quote_math import (
    TAX_RATE,
    TOLERANCE,
    check_plan_amounts,
    check_plan_percentages,
)

# Logger per questo modulo
logger = logging.getLogger(__name__)


def validate_quote(quote: Union[Quote, QuoteContent]) -> ValidationResult:
    """
    Controlla completezza e coerenza di un preventivo.

    Accetta anche contenuti parziali (senza date): i controlli sulle
    date vengono saltati se mancano.

    Args:
        quote: Preventivo completo o contenuto in bozza

    Returns:
        ValidationResult: Errori (bloccanti) e avvisi
    """
    errors: list[str] = []
    warnings: list[str] = []

    # Dati generali
    if not quote.name or not quote.name.strip():
        errors.append("Il preventivo deve avere un nome")

    if quote.client is None:
        errors.append("Il preventivo deve avere un cliente assegnato")

    # Fasi e voci
    if not quote.phases:
        errors.append("Il preventivo deve avere almeno una fase")
    else:
        duplicated = sorted(
            number
            for number, count in Counter(phase.number for phase in quote.phases).items()
            if count > 1
        )
        if duplicated:
            errors.append(
                "Numeri di fase duplicati: " + ", ".join(str(n) for n in duplicated)
            )

        for index, phase in enumerate(quote.phases, start=1):
            if not phase.name or not phase.name.strip():
                errors.append(f"La fase {index} non ha un nome")

            if not phase.line_items:
                errors.append(f'La fase "{phase.name}" non ha voci')
                continue

            for item_index, item in enumerate(phase.line_items, start=1):
                if item.quantity <= 0:
                    errors.append(
                        f'La voce {item_index} della fase "{phase.name}" '
                        "ha una quantità non valida"
                    )
                if item.unit_price < 0:
                    errors.append(
                        f'La voce {item_index} della fase "{phase.name}" '
                        "ha un prezzo unitario non valido"
                    )
                if abs(item.total - item.quantity * item.unit_price) > TOLERANCE:
                    warnings.append(
                        f'La voce "{item.name}" ha un totale diverso da quantità × prezzo'
                    )

            items_sum = sum((item.total for item in phase.line_items), Decimal("0"))
            if abs(phase.amount - items_sum) > TOLERANCE:
                warnings.append(
                    f'L\'importo della fase "{phase.name}" non corrisponde alla somma delle voci'
                )

    # Piano pagamenti: percentuali bloccanti, importi solo avvisi
    if quote.payment_plan:
        errors.extend(check_plan_percentages(quote.payment_plan))
        if quote.money is not None:
            warnings.extend(check_plan_amounts(quote.payment_plan, quote.money.total))
    else:
        warnings.append("Il preventivo non ha un piano pagamenti definito")

    # Importi
    if quote.money is None:
        errors.append("Gli importi del preventivo non sono stati calcolati")
    else:
        money = quote.money
        if money.total <= 0:
            errors.append("L'importo totale deve essere maggiore di 0")
        if abs(money.tax - money.subtotal * TAX_RATE) > TOLERANCE:
            warnings.append("L'IVA non corrisponde al 21% dell'imponibile")
        if abs(money.total - (money.subtotal + money.tax)) > TOLERANCE:
            warnings.append("Il totale non corrisponde a imponibile + IVA")

    # Date
    valid_until = getattr(quote, "valid_until", None)
    created_at = getattr(quote, "created_at", None)
    if valid_until is not None and created_at is not None and valid_until <= created_at:
        errors.append("La data di validità deve essere successiva alla data di creazione")

    result = ValidationResult(errors=errors, warnings=warnings)
    logger.debug(
        "Validazione preventivo %s: %d errori, %d avvisi",
        getattr(quote, "number", quote.name),
        len(errors),
        len(warnings),
    )
    return result
