"""
Repository dei Preventivi
Progetto: Gestionale Edile (Preventivi e Commesse)

Persiste i preventivi come collezione JSON sotto la chiave "quotes".
Ogni scrittura è un read-merge-write dell'intera collezione eseguito
in un'unica mutate dell'archivio: aggiornamenti concorrenti su
preventivi diversi non si sovrascrivono. Sullo stesso preventivo vince
l'ultima scrittura.

La numerazione PRE-YYYY-NNN è calcolata dentro la stessa mutate,
partendo dal numero più alto mai emesso (eliminati inclusi).
"""

from __future__ import annotations

import datetime
import logging
import uuid
from typing import Any, Callable, Mapping, Optional, Union

from app.core.clock import Clock, utc_now
from app.core.exceptions import ConflictError, InvalidTransitionError, NotFoundError
from app.core.storage import KeyValueStore, Record
from app.schemas.quote import Quote, QuoteContent, QuoteState, StateDetail
from app.services.quote_math import generate_quote_number, quote_number_key

# Logger per questo modulo
logger = logging.getLogger(__name__)

QUOTES_COLLECTION = "quotes"

IMMUTABLE_FIELDS = frozenset({"id", "number", "family_id", "created_at"})

QuoteId = Union[uuid.UUID, str]
Patch = Mapping[str, Any]


def _same_family(a: Quote, b: Quote) -> bool:
    # I record senza family_id si raggruppano per nome base
    if a.family_id is not None and b.family_id is not None:
        return a.family_id == b.family_id
    return a.base_name == b.base_name


class QuoteRepository:
    """
    Repository per i preventivi.

    Riceve l'archivio per dependency injection; non mantiene
    stato proprio oltre ai riferimenti ai collaboratori.
    """

    def __init__(
        self,
        store: KeyValueStore,
        clock: Clock = utc_now,
        collection: str = QUOTES_COLLECTION,
    ) -> None:
        self._store = store
        self._clock = clock
        self._collection = collection

    # ------------------------------------------------------------
    # Helper
    # ------------------------------------------------------------

    @staticmethod
    def _find_index(
        items: list[Record],
        quote_id: QuoteId,
        include_inactive: bool = False,
    ) -> Optional[int]:
        key = str(quote_id)
        for index, record in enumerate(items):
            if record.get("id") == key:
                if not include_inactive and not record.get("is_active", True):
                    return None
                return index
        return None

    def _require_index(self, items: list[Record], quote_id: QuoteId) -> int:
        index = self._find_index(items, quote_id)
        if index is None:
            raise NotFoundError(f"Preventivo {quote_id} non trovato")
        return index

    @staticmethod
    def _merge(record: Record, patch: Patch, now: datetime.datetime) -> Quote:
        """
        Applica una patch a un record, rivalidando il risultato.

        Raises:
            ConflictError: Se la patch tocca un campo immutabile
        """
        forbidden = IMMUTABLE_FIELDS.intersection(patch)
        if forbidden:
            raise ConflictError(
                "Campi non modificabili: " + ", ".join(sorted(forbidden))
            )
        data = Quote.model_validate(record).model_dump()
        data.update(patch)
        data["updated_at"] = now
        return Quote.model_validate(data)

    # ------------------------------------------------------------
    # Scritture
    # ------------------------------------------------------------

    async def create(
        self,
        data: QuoteContent,
        *,
        version: int = 1,
        family_id: Optional[uuid.UUID] = None,
    ) -> Quote:
        """
        Crea un preventivo in stato draft.

        Assegna id, numero progressivo, timestamp e scadenza
        (created_at + validity_days). La prima versione di una
        famiglia usa il proprio id come family_id.

        Args:
            data: Contenuto del preventivo
            version: Numero di versione (1 per un nuovo preventivo)
            family_id: Famiglia di appartenenza (nuove versioni)

        Returns:
            Quote: Il preventivo creato

        Raises:
            ConflictError: Se la numerazione annuale è esaurita
        """
        now = self._clock()
        content = data.model_dump(include=set(QuoteContent.model_fields))

        def mutator(items: list[Record]) -> Quote:
            last_number = max(
                (record.get("number", "") for record in items),
                key=quote_number_key,
                default=None,
            )
            quote_id = uuid.uuid4()
            quote = Quote(
                **content,
                id=quote_id,
                number=generate_quote_number(last_number, now.date()),
                version=version,
                family_id=family_id or quote_id,
                state=QuoteState.DRAFT,
                state_detail=StateDetail(),
                signatures=[],
                valid_until=now + datetime.timedelta(days=data.validity_days),
                created_at=now,
                updated_at=now,
                is_active=True,
            )
            items.append(quote.model_dump(mode="json"))
            return quote

        quote = await self._store.mutate(self._collection, mutator)
        logger.info(
            "Creato preventivo %s (id=%s, versione=%s)",
            quote.number,
            quote.id,
            quote.version,
        )
        return quote

    async def update(self, quote_id: QuoteId, patch: Patch) -> Quote:
        """
        Aggiorna un preventivo unendo la patch al record corrente.

        Args:
            quote_id: ID del preventivo
            patch: Campi da sostituire

        Returns:
            Quote: Il preventivo aggiornato

        Raises:
            NotFoundError: Se il preventivo non esiste
            ConflictError: Se la patch tocca un campo immutabile
        """
        now = self._clock()

        def mutator(items: list[Record]) -> Quote:
            index = self._require_index(items, quote_id)
            quote = self._merge(items[index], patch, now)
            items[index] = quote.model_dump(mode="json")
            return quote

        quote = await self._store.mutate(self._collection, mutator)
        logger.debug("Aggiornato preventivo %s: %s", quote.number, sorted(patch))
        return quote

    async def update_many(
        self,
        patches: Mapping[QuoteId, Patch],
        expected_states: Optional[Mapping[QuoteId, QuoteState]] = None,
    ) -> list[Quote]:
        """
        Aggiorna più preventivi in un'unica scrittura atomica.

        Per ogni id presente in `expected_states` lo stato corrente
        deve coincidere con quello atteso (compare-and-set); in caso
        contrario nessun preventivo viene modificato.

        Raises:
            NotFoundError: Se uno dei preventivi non esiste
            InvalidTransitionError: Se uno stato non è quello atteso
        """
        now = self._clock()
        expected = {str(k): QuoteState(v) for k, v in (expected_states or {}).items()}

        def mutator(items: list[Record]) -> list[Quote]:
            updated: list[Quote] = []
            for quote_id, patch in patches.items():
                index = self._require_index(items, quote_id)
                current_state = QuoteState(items[index]["state"])
                wanted = expected.get(str(quote_id))
                if wanted is not None and current_state != wanted:
                    requested = QuoteState(patch.get("state", current_state))
                    raise InvalidTransitionError(current_state.value, requested.value)
                quote = self._merge(items[index], patch, now)
                items[index] = quote.model_dump(mode="json")
                updated.append(quote)
            return updated

        updated = await self._store.mutate(self._collection, mutator)
        logger.debug("Aggiornati %d preventivi in blocco", len(updated))
        return updated

    async def update_where(
        self,
        predicate: Callable[[Quote], bool],
        patch_factory: Callable[[Quote], Patch],
    ) -> list[Quote]:
        """
        Aggiorna atomicamente tutti i preventivi attivi che soddisfano
        il predicato. Nessuna scrittura se nessuno lo soddisfa.

        Returns:
            list[Quote]: I preventivi aggiornati
        """
        now = self._clock()

        def mutator(items: list[Record]) -> list[Quote]:
            updated: list[Quote] = []
            for index, record in enumerate(items):
                if not record.get("is_active", True):
                    continue
                current = Quote.model_validate(record)
                if not predicate(current):
                    continue
                quote = self._merge(record, patch_factory(current), now)
                items[index] = quote.model_dump(mode="json")
                updated.append(quote)
            return updated

        return await self._store.mutate(self._collection, mutator)

    async def deactivate(self, quote_id: QuoteId) -> Quote:
        """
        Soft delete: il preventivo resta in archivio (il numero non
        viene riutilizzato) ma sparisce da get e list.

        Raises:
            NotFoundError: Se il preventivo non esiste o è già eliminato
        """
        quote = await self.update(quote_id, {"is_active": False})
        logger.info("Eliminato (soft delete) preventivo %s", quote.number)
        return quote

    # ------------------------------------------------------------
    # Letture
    # ------------------------------------------------------------

    async def _read_all(self) -> list[Quote]:
        return [Quote.model_validate(record) for record in await self._store.read(self._collection)]

    async def get(self, quote_id: QuoteId, include_inactive: bool = False) -> Optional[Quote]:
        """Recupera un preventivo tramite ID; None se non esiste."""
        items = await self._store.read(self._collection)
        index = self._find_index(items, quote_id, include_inactive)
        return Quote.model_validate(items[index]) if index is not None else None

    async def get_or_fail(self, quote_id: QuoteId, include_inactive: bool = False) -> Quote:
        """
        Recupera un preventivo tramite ID.

        Raises:
            NotFoundError: Se il preventivo non esiste
        """
        quote = await self.get(quote_id, include_inactive)
        if quote is None:
            logger.warning("Preventivo non trovato: %s", quote_id)
            raise NotFoundError(f"Preventivo {quote_id} non trovato")
        return quote

    async def list(
        self,
        state: Optional[QuoteState] = None,
        include_inactive: bool = False,
    ) -> list[Quote]:
        """Elenca i preventivi nell'ordine di creazione, con filtro di stato opzionale."""
        quotes = [
            quote
            for quote in await self._read_all()
            if (include_inactive or quote.is_active)
            and (state is None or quote.state == state)
        ]
        logger.debug("Recuperati %d preventivi (stato=%s)", len(quotes), state)
        return quotes

    async def find_versions(self, quote_id: QuoteId) -> list[Quote]:
        """
        Tutte le versioni attive della famiglia del preventivo,
        ordinate per versione crescente. Lista vuota se l'id è ignoto.
        """
        quotes = await self._read_all()
        source = next((q for q in quotes if str(q.id) == str(quote_id)), None)
        if source is None:
            return []
        versions = [q for q in quotes if q.is_active and _same_family(q, source)]
        return sorted(versions, key=lambda q: (q.version, q.created_at))
