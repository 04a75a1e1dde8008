"""
Calcoli economici dei preventivi
Progetto: Gestionale Edile (Preventivi e Commesse)

Funzioni pure, senza stato né I/O:
- totali di voce, fase e preventivo (IVA fissa al 21%)
- generazione del piano pagamenti
- numerazione PRE-YYYY-NNN
- controlli di coerenza del piano pagamenti e della scadenza

Tutti gli importi derivati sono arrotondati a 2 decimali con
ROUND_HALF_UP (metà lontano da zero), così che ricalcoli ripetuti
diano sempre lo stesso risultato.
"""

import datetime
import math
import re
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Sequence, Union

from app.core.clock import as_utc
from app.core.exceptions import ConflictError, InvalidInputError
from app.schemas.quote import (
    Currency,
    LineItem,
    MoneyBreakdown,
    PaymentPlanEntry,
    PaymentStatus,
    Phase,
    PhaseAmount,
    Quote,
)

Number = Union[Decimal, int, float, str]

TAX_RATE = Decimal("0.21")
DOWN_PAYMENT_PERCENT = Decimal("30")
TOLERANCE = Decimal("0.01")
QUOTE_NUMBER_PREFIX = "PRE"
MAX_QUOTE_SEQUENCE = 999
EXPIRING_SOON_DAYS = 7

DOWN_PAYMENT_DESCRIPTION = "Acconto all'avvio del progetto"

_QUOTE_NUMBER = re.compile(r"PRE-(\d{4})-(\d{3})")
_HUNDRED = Decimal("100")
_CENT = Decimal("0.01")


def _to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() evita la rappresentazione binaria dei float
    return Decimal(str(value))


def round2(value: Number) -> Decimal:
    """Arrotonda a 2 decimali, metà lontano da zero."""
    return _to_decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)


# -------------------------------------------------------------------
# Totali
# -------------------------------------------------------------------

def compute_line_total(quantity: Number, unit_price: Number) -> Decimal:
    """
    Totale di una voce: quantità × prezzo unitario.

    Args:
        quantity: Quantità (>= 0)
        unit_price: Prezzo unitario (>= 0)

    Returns:
        Decimal: Totale arrotondato a 2 decimali

    Raises:
        InvalidInputError: Se quantità o prezzo sono negativi
    """
    quantity = _to_decimal(quantity)
    unit_price = _to_decimal(unit_price)
    if quantity < 0:
        raise InvalidInputError(f"Quantità negativa non ammessa: {quantity}")
    if unit_price < 0:
        raise InvalidInputError(f"Prezzo unitario negativo non ammesso: {unit_price}")
    return round2(quantity * unit_price)


def compute_phase_amount(line_items: Iterable[LineItem]) -> Decimal:
    """Somma dei totali delle voci (0 per una fase senza voci)."""
    return round2(sum((item.total for item in line_items), Decimal("0")))


def compute_money_breakdown(
    phases: Sequence[Phase],
    currency: Currency = Currency.EUR,
) -> MoneyBreakdown:
    """
    Riepilogo economico del preventivo.

    subtotal = somma degli importi di fase
    tax = round2(subtotal × 21%)
    total = round2(subtotal + tax)

    Args:
        phases: Fasi con importo già calcolato
        currency: Valuta del preventivo

    Returns:
        MoneyBreakdown: Imponibile, IVA, totale e riepilogo per fase
    """
    subtotal = round2(sum((phase.amount for phase in phases), Decimal("0")))
    tax = round2(subtotal * TAX_RATE)
    total = round2(subtotal + tax)
    per_phase = [
        PhaseAmount(phase_number=phase.number, name=phase.name, amount=round2(phase.amount))
        for phase in phases
    ]
    return MoneyBreakdown(
        subtotal=subtotal,
        tax=tax,
        total=total,
        currency=currency,
        per_phase=per_phase,
    )


def recalculate_line_item(item: LineItem) -> LineItem:
    """Copia della voce con il totale derivato da quantità e prezzo."""
    return item.model_copy(update={"total": compute_line_total(item.quantity, item.unit_price)})


def recalculate_phase(phase: Phase) -> Phase:
    """Copia della fase con voci e importo ricalcolati."""
    line_items = [recalculate_line_item(item) for item in phase.line_items]
    return phase.model_copy(
        update={"line_items": line_items, "amount": compute_phase_amount(line_items)}
    )


def recalculate_phases(phases: Iterable[Phase]) -> list[Phase]:
    """Ricalcola tutte le fasi, mantenendo l'ordine."""
    return [recalculate_phase(phase) for phase in phases]


def percentage_of(part: Number, total: Number) -> Decimal:
    """Percentuale di `part` su `total` (0 se il totale è 0)."""
    total = _to_decimal(total)
    if total == 0:
        return Decimal("0.00")
    return round2(_to_decimal(part) / total * _HUNDRED)


# -------------------------------------------------------------------
# Piano pagamenti
# -------------------------------------------------------------------

def generate_payment_plan(
    phases: Sequence[Phase],
    total: Number,
    include_down_payment: bool = True,
) -> list[PaymentPlanEntry]:
    """
    Genera il piano pagamenti automatico.

    Con acconto la prima rata vale il 30% e non è legata a fasi;
    il restante 70% (o 100%) è distribuito tra le fasi in proporzione
    al loro importo, in parti uguali se gli importi sono tutti 0.
    Ogni rata è la differenza tra due percentuali cumulate arrotondate:
    nessuna rata è negativa, la somma delle percentuali è esattamente
    100 e quella degli importi è `total`.

    Args:
        phases: Fasi del preventivo (importi già calcolati)
        total: Totale IVA inclusa
        include_down_payment: Se aggiungere la rata di acconto

    Returns:
        list[PaymentPlanEntry]: Rate numerate da 1 ([] senza fasi né acconto)

    Raises:
        InvalidInputError: Se il totale è negativo
    """
    total = _to_decimal(total)
    if total < 0:
        raise InvalidInputError(f"Totale negativo non ammesso: {total}")

    rounded_total = round2(total)
    entries: list[PaymentPlanEntry] = []

    # Si arrotondano le percentuali cumulate, non le singole quote:
    # ogni rata è la differenza tra due cumulate, quindi mai negativa.
    previous_percentage = Decimal("0")
    previous_amount = Decimal("0")

    def _append(description: str, cumulative: Decimal, phase_number: Optional[int]) -> None:
        nonlocal previous_percentage, previous_amount
        percentage = round2(cumulative)
        amount = rounded_total if percentage == _HUNDRED else round2(total * percentage / _HUNDRED)
        entries.append(
            PaymentPlanEntry(
                number=len(entries) + 1,
                description=description,
                percentage=percentage - previous_percentage,
                amount=amount - previous_amount,
                linked_phase_number=phase_number,
                status=PaymentStatus.PENDING,
            )
        )
        previous_percentage = percentage
        previous_amount = amount

    if include_down_payment:
        # Senza fasi l'acconto copre l'intero totale
        _append(DOWN_PAYMENT_DESCRIPTION, DOWN_PAYMENT_PERCENT if phases else _HUNDRED, None)
        start = DOWN_PAYMENT_PERCENT
    else:
        start = Decimal("0")
    remaining = _HUNDRED - start

    phases_amount = sum((phase.amount for phase in phases), Decimal("0"))
    covered = Decimal("0")

    for index, phase in enumerate(phases, start=1):
        if index == len(phases):
            cumulative = _HUNDRED
        else:
            covered += phase.amount
            if phases_amount > 0:
                cumulative = start + covered * remaining / phases_amount
            else:
                cumulative = start + remaining * index / len(phases)
        _append(f"Pagamento al completamento di {phase.name}", cumulative, phase.number)

    return entries


def check_plan_percentages(plan: Sequence[PaymentPlanEntry]) -> list[str]:
    """Errore se le percentuali non sommano 100 (tolleranza 0.01)."""
    percentage_sum = sum((entry.percentage for entry in plan), Decimal("0"))
    if abs(percentage_sum - _HUNDRED) > TOLERANCE:
        return [
            "Le percentuali del piano pagamenti devono sommare 100% "
            f"(attuale: {percentage_sum:.2f}%)"
        ]
    return []


def check_plan_amounts(plan: Sequence[PaymentPlanEntry], total: Number) -> list[str]:
    """Rate con importo incoerente con la percentuale e somma diversa dal totale."""
    total = _to_decimal(total)
    problems: list[str] = []

    for index, entry in enumerate(plan, start=1):
        expected = total * entry.percentage / _HUNDRED
        if abs(entry.amount - expected) > TOLERANCE:
            problems.append(
                f"La rata {index} ha un importo che non corrisponde alla sua percentuale"
            )

    amount_sum = sum((entry.amount for entry in plan), Decimal("0"))
    if abs(amount_sum - total) > TOLERANCE:
        problems.append(
            f"La somma delle rate ({amount_sum:.2f}) non corrisponde al totale ({total:.2f})"
        )

    return problems


def validate_payment_plan(plan: Sequence[PaymentPlanEntry], total: Number) -> list[str]:
    """
    Controlla la coerenza di un piano pagamenti rispetto al totale.

    Returns:
        list[str]: Problemi trovati (lista vuota se il piano è coerente)
    """
    if not plan:
        return ["Il piano pagamenti è vuoto"]
    return check_plan_percentages(plan) + check_plan_amounts(plan, total)


# -------------------------------------------------------------------
# Numerazione
# -------------------------------------------------------------------

def generate_quote_number(
    last_number: Optional[str],
    today: Optional[datetime.date] = None,
) -> str:
    """
    Genera il numero del preventivo successivo.

    Formato: PRE-YYYY-NNN (es. PRE-2025-001). Il formato compare sui
    documenti e sui link inviati ai clienti e non va modificato.

    Logica:
    1. Nessun numero precedente, formato non riconosciuto o anno
       precedente: si riparte da 001
    2. Altrimenti si incrementa il progressivo

    Args:
        last_number: Ultimo numero emesso
        today: Data di riferimento (default: oggi)

    Returns:
        str: Numero formattato

    Raises:
        ConflictError: Se si supera il progressivo 999 nell'anno
    """
    year = (today or datetime.date.today()).year

    match = _QUOTE_NUMBER.fullmatch(last_number or "")
    if match is None or int(match.group(1)) < year:
        next_number = 1
    else:
        next_number = int(match.group(2)) + 1

    if next_number > MAX_QUOTE_SEQUENCE:
        raise ConflictError(
            f"Limite numerazione preventivi raggiunto per l'anno {year}"
        )

    return f"{QUOTE_NUMBER_PREFIX}-{year}-{next_number:03d}"


def quote_number_key(number: str) -> tuple[int, int]:
    """Chiave di ordinamento (anno, progressivo); (0, 0) se non riconosciuto."""
    match = _QUOTE_NUMBER.fullmatch(number or "")
    if match is None:
        return (0, 0)
    return (int(match.group(1)), int(match.group(2)))


# -------------------------------------------------------------------
# Scadenza
# -------------------------------------------------------------------

def is_expired(quote: Quote, now: datetime.datetime) -> bool:
    """True se la data di validità è già passata (now naive = UTC)."""
    return quote.valid_until < as_utc(now)


def days_until_expiration(quote: Quote, now: datetime.datetime) -> int:
    """Giorni (arrotondati per eccesso) alla scadenza; negativi se scaduto."""
    seconds = (quote.valid_until - as_utc(now)).total_seconds()
    return math.ceil(seconds / 86400)
