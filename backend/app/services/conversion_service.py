"""
Service Layer per la conversione Preventivo -> Commessa
Progetto: Gestionale Edile (Preventivi e Commesse)

La conversione è a senso unico:
1. Crea la commessa dalle fasi del preventivo
2. Emette la fattura di acconto sulla prima rata del piano pagamenti
3. Segna il preventivo come convertito

Se 1 o 2 falliscono il preventivo resta approvato. Se fallisce solo
il passo 3, commessa e fattura esistono già a valle: l'errore viene
segnalato come PartialConversionError per la riconciliazione manuale.
"""

import datetime
import logging
from typing import Optional, Sequence

from app.core.clock import Clock, utc_now
from app.core.config import Settings, get_settings
from app.core.exceptions import ConversionNotAllowedError, PartialConversionError
from app.repositories.quote_repository import QuoteId, QuoteRepository
from app.schemas.collaborators import (
    AdvanceInvoiceRequest,
    ProjectPhaseSeed,
    ProjectPhaseStatus,
    ProjectSeed,
)
from app.schemas.quote import (
    ConversionCheck,
    ConversionResult,
    ConversionSummary,
    Currency,
    PaymentPlanEntry,
    Quote,
    QuoteState,
)
from app.services.collaborators import InvoiceGateway, ProjectGateway
from app.services.quote_lifecycle_service import QuoteLifecycleService
from app.services.quote_math import percentage_of, round2

# Logger per questo modulo
logger = logging.getLogger(__name__)

ADVANCE_KEYWORDS = ("down payment", "adelanto", "anticipo", "acconto")
DEFAULT_ADVANCE_CONCEPT = "Acconto di progetto"


def find_advance_entry(plan: Sequence[PaymentPlanEntry]) -> Optional[PaymentPlanEntry]:
    """
    Rata da fatturare come acconto: la prima con numero 1 o con una
    descrizione da acconto, altrimenti la prima del piano.
    """
    for entry in plan:
        description = entry.description.lower()
        if entry.number == 1 or any(keyword in description for keyword in ADVANCE_KEYWORDS):
            return entry
    return plan[0] if plan else None


def _refusal_reason(quote: Quote) -> Optional[str]:
    if quote.state == QuoteState.CONVERTED or quote.state_detail.converted_to_project:
        return "Il preventivo è già stato convertito in commessa"
    if quote.state != QuoteState.APPROVED:
        return f"Il preventivo deve essere approvato (stato attuale: '{quote.state.value}')"
    if not quote.payment_plan:
        return "Il preventivo non ha un piano pagamenti definito"
    return None


class ConversionService:
    """
    Service che orchestra la conversione di un preventivo approvato.

    Commessa e fattura sono create dai collaboratori esterni; lo stato
    del preventivo passa dal QuoteLifecycleService.
    """

    def __init__(
        self,
        repository: QuoteRepository,
        lifecycle: QuoteLifecycleService,
        project_gateway: ProjectGateway,
        invoice_gateway: InvoiceGateway,
        settings: Optional[Settings] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._repository = repository
        self._lifecycle = lifecycle
        self._project_gateway = project_gateway
        self._invoice_gateway = invoice_gateway
        self._settings = settings or get_settings()
        self._clock = clock

    @staticmethod
    def _build_project_seed(quote: Quote) -> ProjectSeed:
        """La prima fase parte in attesa, le successive restano bloccate."""
        phases = sorted(quote.phases, key=lambda phase: phase.number)
        return ProjectSeed(
            quote_id=quote.id,
            quote_number=quote.number,
            name=quote.name,
            client=quote.client,
            site_location=quote.site_location,
            budget=quote.total,
            currency=quote.money.currency if quote.money else Currency.EUR,
            phases=[
                ProjectPhaseSeed(
                    number=phase.number,
                    name=phase.name,
                    description=phase.description,
                    amount=phase.amount,
                    estimated_duration_days=phase.estimated_duration_days,
                    status=ProjectPhaseStatus.PENDING if index == 0 else ProjectPhaseStatus.BLOCKED,
                )
                for index, phase in enumerate(phases)
            ],
        )

    async def can_convert(self, quote_id: QuoteId) -> ConversionCheck:
        """Verifica senza effetti se il preventivo è convertibile."""
        quote = await self._repository.get(quote_id)
        if quote is None:
            return ConversionCheck(allowed=False, reason="Preventivo non trovato")
        reason = _refusal_reason(quote)
        return ConversionCheck(allowed=reason is None, reason=reason)

    async def get_conversion_summary(self, quote_id: QuoteId) -> ConversionSummary:
        """
        Riepilogo da mostrare prima di confermare la conversione.

        Raises:
            NotFoundError: Se il preventivo non esiste
        """
        quote = await self._repository.get_or_fail(quote_id)
        advance = find_advance_entry(quote.payment_plan)
        advance_amount = advance.amount if advance else round2(0)
        return ConversionSummary(
            project_name=quote.name,
            client_name=quote.client.name if quote.client else None,
            total_amount=quote.total,
            currency=quote.money.currency if quote.money else Currency.EUR,
            advance_amount=advance_amount,
            advance_percentage=percentage_of(advance_amount, quote.total),
            phase_count=len(quote.phases),
            payment_count=len(quote.payment_plan),
        )

    async def convert(self, quote_id: QuoteId) -> ConversionResult:
        """
        Converte un preventivo approvato in commessa.

        Args:
            quote_id: ID del preventivo

        Returns:
            ConversionResult: ID di commessa e fattura di acconto

        Raises:
            NotFoundError: Se il preventivo non esiste
            ConversionNotAllowedError: Se il preventivo non è approvato,
                è già convertito o non ha un piano pagamenti
            PartialConversionError: Se commessa e fattura sono state create
                ma il preventivo non è stato segnato come convertito
        """
        quote = await self._repository.get_or_fail(quote_id)

        reason = _refusal_reason(quote)
        if reason is not None:
            logger.warning("Conversione rifiutata per %s: %s", quote.number, reason)
            raise ConversionNotAllowedError(reason)

        advance = find_advance_entry(quote.payment_plan)
        seed = self._build_project_seed(quote)

        # Step 1: commessa
        try:
            project_id = await self._project_gateway.create_project(seed)
        except Exception as e:
            logger.error("Creazione commessa fallita per %s: %s", quote.number, e)
            raise

        # Step 2: fattura di acconto
        now = self._clock()
        request = AdvanceInvoiceRequest(
            project_id=project_id,
            quote_id=quote.id,
            amount=advance.amount,
            phase_number=advance.number,
            concept=advance.description or DEFAULT_ADVANCE_CONCEPT,
            description=f"Acconto preventivo {quote.number} - {quote.name}",
            currency=seed.currency,
            client=quote.client,
            due_date=(now + datetime.timedelta(days=self._settings.advance_invoice_due_days)).date(),
        )
        try:
            invoice_id = await self._invoice_gateway.create_invoice(request)
        except Exception as e:
            logger.error(
                "Emissione fattura di acconto fallita per %s (commessa %s già creata): %s",
                quote.number,
                project_id,
                e,
            )
            raise

        # Step 3: stato del preventivo
        try:
            await self._lifecycle.mark_converted(quote.id, project_id, invoice_id)
        except Exception as e:
            logger.critical(
                "Conversione parziale di %s: commessa %s e fattura %s create, "
                "stato non salvato: %s",
                quote.number,
                project_id,
                invoice_id,
                e,
            )
            raise PartialConversionError(quote.id, project_id, invoice_id) from e

        logger.info(
            "Preventivo %s convertito: commessa %s, fattura %s",
            quote.number,
            project_id,
            invoice_id,
        )
        return ConversionResult(
            project_id=project_id,
            invoice_id=invoice_id,
            message=(
                "Progetto creato con successo. Fattura di acconto generata per "
                f"{round2(advance.amount)} {seed.currency.value}"
            ),
        )
