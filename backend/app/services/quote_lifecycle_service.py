"""
Service Layer per il ciclo di vita dei Preventivi
Progetto: Gestionale Edile (Preventivi e Commesse)

Macchina a stati:
draft -> sent -> approved | rejected | expired, approved -> converted.

Ogni transizione è un compare-and-set sullo stato letto: se un'altra
scrittura ha cambiato lo stato nel frattempo, la transizione fallisce
senza effetti. Le nuove versioni sono record fratelli nella stessa
famiglia; l'approvazione di una versione rende obsolete le altre.
"""

import datetime
import logging
from typing import Any, Optional

from app.core.clock import Clock, as_utc, utc_now
from app.core.exceptions import (
    BusinessValidationError,
    InvalidTransitionError,
    QuoteValidationError,
)
from app.repositories.quote_repository import QuoteId, QuoteRepository
from app.schemas.quote import (
    EDITABLE_STATES,
    VALID_TRANSITIONS,
    Quote,
    QuoteContent,
    QuoteState,
)
from app.services.quote_math import is_expired
from app.services.quote_validator import validate_quote

# Logger per questo modulo
logger = logging.getLogger(__name__)

OBSOLETE_VERSION_NOTE = "[Versione obsoleta - un'altra versione è stata approvata]"

# Stati che l'approvazione di un'altra versione non tocca
_SUPERSESSION_EXEMPT = frozenset(
    {QuoteState.APPROVED, QuoteState.CONVERTED, QuoteState.EXPIRED}
)


def _append_note(notes: Optional[str], text: str) -> str:
    return f"{notes}\n{text}" if notes else text


class QuoteLifecycleService:
    """
    Service per le transizioni di stato e il versionamento dei preventivi.

    Riceve repository e orologio per dependency injection.
    """

    def __init__(self, repository: QuoteRepository, clock: Clock = utc_now) -> None:
        self._repository = repository
        self._clock = clock

    # ------------------------------------------------------------
    # Helper
    # ------------------------------------------------------------

    @staticmethod
    def _check_transition(quote: Quote, new_state: QuoteState) -> None:
        """
        Valida la transizione usando la matrice VALID_TRANSITIONS.

        Raises:
            InvalidTransitionError: Se la transizione non è consentita
        """
        allowed_transitions = VALID_TRANSITIONS.get(quote.state, [])
        if new_state not in allowed_transitions:
            logger.warning(
                "Transizione non consentita per %s: %s -> %s",
                quote.number,
                quote.state.value,
                new_state.value,
            )
            raise InvalidTransitionError(quote.state.value, new_state.value)

    async def _apply(
        self,
        quote: Quote,
        new_state: QuoteState,
        detail: dict[str, Any],
    ) -> Quote:
        """Scrive la transizione con compare-and-set sullo stato letto."""
        patch = {
            "state": new_state,
            "state_detail": quote.state_detail.model_copy(update=detail),
        }
        updated = await self._repository.update_many(
            {quote.id: patch},
            expected_states={quote.id: quote.state},
        )
        logger.info(
            "Preventivo %s: %s -> %s",
            quote.number,
            quote.state.value,
            new_state.value,
        )
        return updated[0]

    def ensure_editable(self, quote: Quote) -> None:
        """
        Verifica che il preventivo sia modificabile (solo bozze).

        Raises:
            BusinessValidationError: Se il preventivo non è in bozza
        """
        if quote.state not in EDITABLE_STATES:
            raise BusinessValidationError(
                "Solo i preventivi in bozza possono essere modificati "
                f"(stato attuale: '{quote.state.value}')"
            )

    # ------------------------------------------------------------
    # Transizioni
    # ------------------------------------------------------------

    async def send(self, quote_id: QuoteId) -> Quote:
        """
        Invia il preventivo al cliente (draft -> sent).

        Args:
            quote_id: ID del preventivo

        Returns:
            Quote: Il preventivo inviato

        Raises:
            NotFoundError: Se il preventivo non esiste
            InvalidTransitionError: Se il preventivo non è in bozza
            QuoteValidationError: Se la validazione riporta errori
        """
        quote = await self._repository.get_or_fail(quote_id)
        self._check_transition(quote, QuoteState.SENT)

        result = validate_quote(quote)
        if not result.valid:
            logger.warning(
                "Invio rifiutato per %s: %d errori di validazione",
                quote.number,
                len(result.errors),
            )
            raise QuoteValidationError(result.errors, result.warnings)
        for warning in result.warnings:
            logger.warning("Preventivo %s: %s", quote.number, warning)

        return await self._apply(
            quote,
            QuoteState.SENT,
            {"sent_to_client": True, "sent_at": self._clock()},
        )

    async def mark_viewed(self, quote_id: QuoteId) -> Quote:
        """
        Registra la prima apertura del preventivo da parte del cliente.

        Le aperture successive non modificano il record.

        Raises:
            NotFoundError: Se il preventivo non esiste
            BusinessValidationError: Se il preventivo non è mai stato inviato
        """
        quote = await self._repository.get_or_fail(quote_id)
        if not quote.state_detail.sent_to_client:
            raise BusinessValidationError(
                f"Il preventivo {quote.number} non è stato inviato al cliente"
            )
        if quote.state_detail.viewed_at is not None:
            return quote

        detail = quote.state_detail.model_copy(update={"viewed_at": self._clock()})
        updated = await self._repository.update_many(
            {quote.id: {"state_detail": detail}},
            expected_states={quote.id: quote.state},
        )
        logger.info("Preventivo %s visualizzato dal cliente", quote.number)
        return updated[0]

    async def approve(self, quote_id: QuoteId) -> Quote:
        """
        Approva il preventivo (sent -> approved).

        Nella stessa scrittura atomica ogni altra versione della famiglia
        non ancora approvata, convertita o scaduta passa a expired con
        una nota di obsolescenza.

        Raises:
            NotFoundError: Se il preventivo non esiste
            InvalidTransitionError: Se il preventivo non è inviato, o se
                lo stato di una versione è cambiato nel frattempo
        """
        quote = await self._repository.get_or_fail(quote_id)
        self._check_transition(quote, QuoteState.APPROVED)
        now = self._clock()

        patches: dict[QuoteId, dict[str, Any]] = {
            quote.id: {
                "state": QuoteState.APPROVED,
                "state_detail": quote.state_detail.model_copy(update={"approved_at": now}),
            }
        }
        expected: dict[QuoteId, QuoteState] = {quote.id: quote.state}

        siblings = [
            version
            for version in await self._repository.find_versions(quote.id)
            if version.id != quote.id and version.state not in _SUPERSESSION_EXEMPT
        ]
        for sibling in siblings:
            patches[sibling.id] = {
                "state": QuoteState.EXPIRED,
                "state_detail": sibling.state_detail.model_copy(update={"expired_at": now}),
                "notes": _append_note(sibling.notes, OBSOLETE_VERSION_NOTE),
            }
            expected[sibling.id] = sibling.state

        updated = await self._repository.update_many(patches, expected_states=expected)

        logger.info("Preventivo %s approvato", quote.number)
        for sibling in siblings:
            logger.info(
                "Versione %s (%s) resa obsoleta dall'approvazione di %s",
                sibling.number,
                sibling.state.value,
                quote.number,
            )
        return updated[0]

    async def reject(self, quote_id: QuoteId, reason: str) -> Quote:
        """
        Rifiuta il preventivo (sent -> rejected).

        Raises:
            NotFoundError: Se il preventivo non esiste
            InvalidTransitionError: Se il preventivo non è inviato
            QuoteValidationError: Se il motivo è vuoto
        """
        quote = await self._repository.get_or_fail(quote_id)
        self._check_transition(quote, QuoteState.REJECTED)

        if not reason or not reason.strip():
            raise QuoteValidationError(["Il motivo del rifiuto è obbligatorio"])

        return await self._apply(
            quote,
            QuoteState.REJECTED,
            {"rejected_at": self._clock(), "rejection_reason": reason.strip()},
        )

    async def check_expiration(self, now: Optional[datetime.datetime] = None) -> list[Quote]:
        """
        Sweep delle scadenze: ogni preventivo inviato con validità
        passata diventa expired. Idempotente; nessuna scrittura se
        nulla è scaduto. Le bozze non scadono mai.

        Args:
            now: Istante di riferimento (default: orologio del service;
                se naive è inteso in UTC)

        Returns:
            list[Quote]: I preventivi appena scaduti
        """
        now = as_utc(now) if now is not None else self._clock()
        expired = await self._repository.update_where(
            lambda quote: quote.state == QuoteState.SENT and is_expired(quote, now),
            lambda quote: {
                "state": QuoteState.EXPIRED,
                "state_detail": quote.state_detail.model_copy(update={"expired_at": now}),
            },
        )
        if expired:
            logger.info(
                "Scaduti %d preventivi: %s",
                len(expired),
                ", ".join(quote.number for quote in expired),
            )
        return expired

    async def mark_converted(
        self,
        quote_id: QuoteId,
        project_id: str,
        invoice_id: str,
    ) -> Quote:
        """
        Segna il preventivo come convertito (approved -> converted).

        project_id e converted_at non vengono più cancellati:
        converted è uno stato assorbente.

        Raises:
            NotFoundError: Se il preventivo non esiste
            InvalidTransitionError: Se il preventivo non è approvato
        """
        quote = await self._repository.get_or_fail(quote_id)
        self._check_transition(quote, QuoteState.CONVERTED)
        return await self._apply(
            quote,
            QuoteState.CONVERTED,
            {
                "converted_to_project": True,
                "project_id": project_id,
                "invoice_id": invoice_id,
                "converted_at": self._clock(),
            },
        )

    # ------------------------------------------------------------
    # Versioni
    # ------------------------------------------------------------

    async def create_new_version(self, quote_id: QuoteId) -> Quote:
        """
        Crea una nuova versione del preventivo, da qualsiasi stato.

        Il nuovo record è una bozza con nuovo id e numero, nessuna
        firma, nome "<base> (vN)" e la stessa famiglia; copia fasi,
        piano pagamenti, cliente, cantiere, importi e condizioni.

        Raises:
            NotFoundError: Se il preventivo di partenza non esiste
        """
        source = await self._repository.get_or_fail(quote_id)
        next_version = source.version + 1

        content = QuoteContent.model_validate(
            source.model_dump(include=set(QuoteContent.model_fields), exclude={"notes"})
        )
        content.name = f"{source.base_name} (v{next_version})"

        quote = await self._repository.create(
            content,
            version=next_version,
            family_id=source.family_id or source.id,
        )
        logger.info(
            "Creata versione %s di %s: %s",
            next_version,
            source.number,
            quote.number,
        )
        return quote

    async def get_versions(self, quote_id: QuoteId) -> list[Quote]:
        """Tutte le versioni della famiglia, in ordine di versione."""
        return await self._repository.find_versions(quote_id)
