"""
Service Layer per la redazione dei Preventivi
Progetto: Gestionale Edile (Preventivi e Commesse)

Definisce la logica di business per:
- creazione da anagrafica cliente (con totali e piano pagamenti derivati)
- import di bozze generate dall'assistente IA
- modifica e ricalcolo delle bozze
- firme digitali
- eliminazione logica, ricerca e statistiche
"""

import datetime
import logging
from decimal import Decimal
from typing import Optional

from app.core.clock import Clock, utc_now
from app.core.config import Settings, get_settings
from app.core.exceptions import BusinessValidationError, NotFoundError
from app.repositories.quote_repository import QuoteId, QuoteRepository
from app.schemas.quote import (
    DELETABLE_STATES,
    SIGNABLE_STATES,
    AIMetadata,
    Currency,
    GeneratedQuote,
    Quote,
    QuoteContent,
    QuoteCreate,
    QuoteFilters,
    QuoteMetrics,
    QuoteState,
    QuoteUpdate,
    Signature,
    SignatureCreate,
)
from app.services.collaborators import ClientDirectory, QuoteGenerator
from app.services.quote_lifecycle_service import QuoteLifecycleService
from app.services.quote_math import (
    EXPIRING_SOON_DAYS,
    TOLERANCE,
    compute_money_breakdown,
    days_until_expiration,
    generate_payment_plan,
    is_expired,
    percentage_of,
    recalculate_phases,
    round2,
    validate_payment_plan,
)

# Logger per questo modulo
logger = logging.getLogger(__name__)

# Campi che una modifica può azzerare esplicitamente
_NULLABLE_FIELDS = frozenset({"site_location", "money", "notes"})


class QuoteService:
    """
    Service per la redazione dei preventivi.

    Le transizioni di stato restano nel QuoteLifecycleService;
    qui si gestisce il contenuto delle bozze.
    """

    def __init__(
        self,
        repository: QuoteRepository,
        lifecycle: QuoteLifecycleService,
        client_directory: ClientDirectory,
        settings: Optional[Settings] = None,
        clock: Clock = utc_now,
        generator: Optional[QuoteGenerator] = None,
    ) -> None:
        self._repository = repository
        self._lifecycle = lifecycle
        self._client_directory = client_directory
        self._settings = settings or get_settings()
        self._clock = clock
        self._generator = generator

    # ------------------------------------------------------------
    # Creazione
    # ------------------------------------------------------------

    async def create_quote(
        self,
        data: QuoteCreate,
        ai_metadata: Optional[AIMetadata] = None,
    ) -> Quote:
        """
        Crea un nuovo preventivo in bozza.

        Steps:
        1. Recupera il cliente dall'anagrafica (copia denormalizzata)
        2. Ricalcola totali di voci e fasi
        3. Calcola imponibile, IVA e totale
        4. Genera il piano pagamenti se non fornito
        5. Salva (numero e scadenza assegnati dal repository)

        Args:
            data: Dati del preventivo
            ai_metadata: Metadati se la bozza arriva dall'assistente IA

        Returns:
            Quote: Il preventivo creato

        Raises:
            NotFoundError: Se il cliente non esiste
        """
        client = await self._client_directory.get_client(data.client_id)
        if client is None:
            logger.warning("Cliente non trovato per nuovo preventivo: %s", data.client_id)
            raise NotFoundError(f"Cliente {data.client_id} non trovato")

        currency = data.currency or Currency(self._settings.quote_default_currency)
        phases = recalculate_phases(data.phases)
        money = compute_money_breakdown(phases, currency)

        if data.payment_plan is not None:
            payment_plan = data.payment_plan
            problems = validate_payment_plan(payment_plan, money.total)
            if problems:
                logger.warning(
                    "Piano pagamenti fornito incoerente per \"%s\": %s",
                    data.name,
                    "; ".join(problems),
                )
        else:
            payment_plan = generate_payment_plan(
                phases, money.total, data.include_down_payment
            )

        content = QuoteContent(
            name=data.name,
            client=client,
            site_location=data.site_location,
            phases=phases,
            payment_plan=payment_plan,
            money=money,
            validity_days=data.validity_days or self._settings.quote_default_validity_days,
            ai_authored=ai_metadata is not None,
            ai_metadata=ai_metadata,
            conditions=data.conditions,
            notes=data.notes,
            created_by=data.created_by,
        )
        return await self._repository.create(content)

    async def create_from_generated(
        self,
        generated: GeneratedQuote,
        data: QuoteCreate,
        ai_metadata: Optional[AIMetadata] = None,
    ) -> Quote:
        """
        Salva una bozza prodotta dal generatore IA.

        Le fasi generate sostituiscono quelle di `data`. I totali del
        generatore sono solo indicativi: tutto viene ricalcolato e
        un'eventuale discrepanza viene registrata nel log.
        """
        phases = recalculate_phases(generated.phases)
        if generated.money is not None:
            computed = compute_money_breakdown(phases)
            if abs(generated.money.total - computed.total) > TOLERANCE:
                logger.warning(
                    "Totale del generatore IA scartato: %s (ricalcolato %s)",
                    generated.money.total,
                    computed.total,
                )

        quote = await self.create_quote(
            data.model_copy(update={"phases": phases}),
            ai_metadata=ai_metadata or AIMetadata(),
        )
        logger.info("Importata bozza IA come preventivo %s", quote.number)
        return quote

    async def generate_draft(self, prompt: str, data: QuoteCreate) -> Quote:
        """
        Chiede una bozza al generatore IA e la salva.

        Raises:
            BusinessValidationError: Se nessun generatore è configurato
        """
        if self._generator is None:
            raise BusinessValidationError("Generatore IA non configurato")
        generated = await self._generator.generate(prompt)
        return await self.create_from_generated(
            generated,
            data,
            AIMetadata(initial_prompt=prompt, iterations=1),
        )

    # ------------------------------------------------------------
    # Modifica bozze
    # ------------------------------------------------------------

    async def edit(self, quote_id: QuoteId, data: QuoteUpdate) -> Quote:
        """
        Modifica una bozza.

        I valori sono salvati così come arrivano: una bozza può essere
        incoerente fino all'invio. Se cambia validity_days viene
        ricalcolata la scadenza a partire da created_at.

        Raises:
            NotFoundError: Se il preventivo non esiste
            BusinessValidationError: Se il preventivo non è in bozza
        """
        quote = await self._repository.get_or_fail(quote_id)
        self._lifecycle.ensure_editable(quote)

        patch = {
            key: value
            for key, value in data.model_dump(exclude_unset=True).items()
            if value is not None or key in _NULLABLE_FIELDS
        }
        if not patch:
            return quote

        if "validity_days" in patch:
            patch["valid_until"] = quote.created_at + datetime.timedelta(
                days=patch["validity_days"]
            )

        updated = await self._repository.update(quote.id, patch)
        logger.info("Modificata bozza %s: %s", updated.number, sorted(patch))
        return updated

    async def recalculate(
        self,
        quote_id: QuoteId,
        regenerate_payment_plan: bool = False,
    ) -> Quote:
        """
        Ricalcola totali di voci, fasi e preventivo di una bozza.

        Args:
            quote_id: ID del preventivo
            regenerate_payment_plan: Se rigenerare anche il piano pagamenti

        Raises:
            NotFoundError: Se il preventivo non esiste
            BusinessValidationError: Se il preventivo non è in bozza
        """
        quote = await self._repository.get_or_fail(quote_id)
        self._lifecycle.ensure_editable(quote)

        currency = quote.money.currency if quote.money else Currency(
            self._settings.quote_default_currency
        )
        phases = recalculate_phases(quote.phases)
        money = compute_money_breakdown(phases, currency)
        patch = {"phases": phases, "money": money}

        if regenerate_payment_plan:
            include_down_payment = (
                not quote.payment_plan
                or quote.payment_plan[0].linked_phase_number is None
            )
            patch["payment_plan"] = generate_payment_plan(
                phases, money.total, include_down_payment
            )

        updated = await self._repository.update(quote.id, patch)
        logger.info("Ricalcolato preventivo %s: totale %s", updated.number, money.total)
        return updated

    async def add_signature(self, quote_id: QuoteId, data: SignatureCreate) -> Quote:
        """
        Aggiunge una firma digitale.

        Raises:
            NotFoundError: Se il preventivo non esiste
            BusinessValidationError: Se lo stato non ammette firme
        """
        quote = await self._repository.get_or_fail(quote_id)
        if quote.state not in SIGNABLE_STATES:
            raise BusinessValidationError(
                f"Non è possibile firmare un preventivo in stato '{quote.state.value}'"
            )

        signature = Signature(
            signer_type=data.signer_type,
            signer_name=data.signer_name,
            signed_at=self._clock(),
            origin_ip=data.origin_ip,
            image=data.image,
        )
        updated = await self._repository.update(
            quote.id, {"signatures": [*quote.signatures, signature]}
        )
        logger.info(
            "Firma %s aggiunta al preventivo %s",
            data.signer_type.value,
            updated.number,
        )
        return updated

    async def delete(self, quote_id: QuoteId) -> None:
        """
        Elimina (soft delete) un preventivo.

        Solo bozze, rifiutati e scaduti; approvati e convertiti
        devono restare consultabili.

        Raises:
            NotFoundError: Se il preventivo non esiste
            BusinessValidationError: Se lo stato non ammette l'eliminazione
        """
        quote = await self._repository.get_or_fail(quote_id)
        if quote.state not in DELETABLE_STATES:
            logger.warning(
                "Eliminazione rifiutata per %s in stato %s",
                quote.number,
                quote.state.value,
            )
            raise BusinessValidationError(
                f"Non è possibile eliminare un preventivo in stato '{quote.state.value}'"
            )
        await self._repository.deactivate(quote.id)

    # ------------------------------------------------------------
    # Letture
    # ------------------------------------------------------------

    async def get(self, quote_id: QuoteId) -> Quote:
        """
        Recupera un preventivo attivo.

        Raises:
            NotFoundError: Se il preventivo non esiste
        """
        return await self._repository.get_or_fail(quote_id)

    async def search(self, filters: QuoteFilters) -> list[Quote]:
        """Ricerca preventivi per stato, cliente, data di creazione e totale."""
        quotes = await self._repository.list(
            state=filters.state,
            include_inactive=filters.include_inactive,
        )

        def matches(quote: Quote) -> bool:
            if filters.client_id and (quote.client is None or quote.client.id != filters.client_id):
                return False
            if filters.created_from and quote.created_at < filters.created_from:
                return False
            if filters.created_to and quote.created_at > filters.created_to:
                return False
            if filters.min_total is not None and quote.total < filters.min_total:
                return False
            if filters.max_total is not None and quote.total > filters.max_total:
                return False
            return True

        result = [quote for quote in quotes if matches(quote)]
        logger.debug("Ricerca preventivi: %d risultati", len(result))
        return result

    async def get_metrics(self) -> QuoteMetrics:
        """
        Statistiche sui preventivi attivi.

        Approvati include i convertiti; in attesa sono gli inviati.
        In scadenza sono gli inviati con validità residua entro
        EXPIRING_SOON_DAYS giorni.
        """
        quotes = await self._repository.list()
        now = self._clock()

        by_state = {state: 0 for state in QuoteState}
        approved_amount = Decimal("0")
        expiring_soon = 0
        for quote in quotes:
            by_state[quote.state] += 1
            if (
                quote.state == QuoteState.SENT
                and not is_expired(quote, now)
                and days_until_expiration(quote, now) <= EXPIRING_SOON_DAYS
            ):
                expiring_soon += 1
            if quote.state in (QuoteState.APPROVED, QuoteState.CONVERTED):
                approved_amount += quote.total

        total = len(quotes)
        approved = by_state[QuoteState.APPROVED] + by_state[QuoteState.CONVERTED]
        rejected = by_state[QuoteState.REJECTED]

        return QuoteMetrics(
            total_quotes=total,
            by_state=by_state,
            approved_count=approved,
            pending_count=by_state[QuoteState.SENT],
            expiring_soon_count=expiring_soon,
            rejected_count=rejected,
            approval_rate=percentage_of(approved, total),
            rejection_rate=percentage_of(rejected, total),
            approved_amount=round2(approved_amount),
        )
