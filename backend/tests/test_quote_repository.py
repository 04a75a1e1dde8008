"""
Unit tests per QuoteRepository.

Archivio in memoria e orologio fisso (vedi conftest).
"""

import asyncio
import datetime
import uuid

import pytest

from app.core.exceptions import ConflictError, InvalidTransitionError, NotFoundError
from app.core.storage import InMemoryKeyValueStore
from app.repositories.quote_repository import QUOTES_COLLECTION, QuoteRepository
from app.schemas.quote import QuoteState


# ============================================================
# Creazione e numerazione
# ============================================================


class TestCreate:
    """Test creazione preventivi."""

    def test_create_assigns_identity_and_dates(self, quote_repository, quote_content, clock):
        """Test id, numero, stato draft, famiglia e scadenza."""
        quote = asyncio.run(quote_repository.create(quote_content))

        assert quote.number == "PRE-2024-001"
        assert quote.state == QuoteState.DRAFT
        assert quote.version == 1
        assert quote.family_id == quote.id
        assert quote.is_active is True
        assert quote.created_at == clock.now
        assert quote.valid_until == clock.now + datetime.timedelta(days=30)
        assert quote.total == quote_content.money.total

    def test_sequential_numbers(self, quote_repository, quote_content):
        """Test numeri progressivi senza buchi."""

        async def scenario():
            return [await quote_repository.create(quote_content) for _ in range(3)]

        quotes = asyncio.run(scenario())

        assert [q.number for q in quotes] == ["PRE-2024-001", "PRE-2024-002", "PRE-2024-003"]

    def test_concurrent_creates_get_distinct_numbers(self, quote_repository, quote_content):
        """Test creazioni concorrenti -> numeri tutti diversi."""

        async def scenario():
            return await asyncio.gather(
                *(quote_repository.create(quote_content) for _ in range(10))
            )

        numbers = {q.number for q in asyncio.run(scenario())}

        assert len(numbers) == 10

    def test_numbers_not_reused_after_delete(self, quote_repository, quote_content):
        """Test il numero di un preventivo eliminato non viene riutilizzato."""

        async def scenario():
            first = await quote_repository.create(quote_content)
            await quote_repository.deactivate(first.id)
            return await quote_repository.create(quote_content)

        assert asyncio.run(scenario()).number == "PRE-2024-002"

    def test_numbering_restarts_in_new_year(self, store, clock, quote_content):
        """Test cambio anno -> si riparte da 001."""
        repository = QuoteRepository(store, clock=clock)

        async def scenario():
            await repository.create(quote_content)
            clock.now = datetime.datetime(2025, 1, 3, tzinfo=datetime.timezone.utc)
            return await repository.create(quote_content)

        assert asyncio.run(scenario()).number == "PRE-2025-001"

    def test_numbering_uses_highest_existing(self, clock, quote_content):
        """Test il progressivo parte dal numero più alto, non dall'ultimo inserito."""
        store = InMemoryKeyValueStore(
            {QUOTES_COLLECTION: [{"number": "PRE-2024-007"}, {"number": "PRE-2024-003"}]}
        )

        async def scenario():
            return await QuoteRepository(store, clock=clock).create(quote_content)

        assert asyncio.run(scenario()).number == "PRE-2024-008"


# ============================================================
# Aggiornamenti
# ============================================================


class TestUpdate:
    """Test aggiornamenti dei preventivi."""

    def test_update_merges_patch(self, quote_repository, quote_content, clock):
        """Test patch applicata e updated_at aggiornato."""

        async def scenario():
            quote = await quote_repository.create(quote_content)
            clock.advance(hours=2)
            return quote, await quote_repository.update(quote.id, {"notes": "Sopralluogo fatto"})

        original, updated = asyncio.run(scenario())

        assert updated.notes == "Sopralluogo fatto"
        assert updated.name == original.name
        assert updated.updated_at == original.updated_at + datetime.timedelta(hours=2)
        assert updated.created_at == original.created_at

    def test_update_missing_quote(self, quote_repository):
        """Test preventivo inesistente -> NotFoundError."""
        with pytest.raises(NotFoundError):
            asyncio.run(quote_repository.update(uuid.uuid4(), {"notes": "x"}))

    @pytest.mark.parametrize("field", ["id", "number", "family_id", "created_at"])
    def test_immutable_fields(self, quote_repository, quote_content, field):
        """Test i campi di identità non sono modificabili."""

        async def scenario():
            quote = await quote_repository.create(quote_content)
            await quote_repository.update(quote.id, {field: getattr(quote, field)})

        with pytest.raises(ConflictError):
            asyncio.run(scenario())

    def test_update_many_compare_and_set(self, quote_repository, quote_content):
        """Test stato atteso diverso -> nessuna modifica."""

        async def scenario():
            first = await quote_repository.create(quote_content)
            second = await quote_repository.create(quote_content)
            with pytest.raises(InvalidTransitionError):
                await quote_repository.update_many(
                    {
                        first.id: {"state": QuoteState.SENT},
                        second.id: {"state": QuoteState.APPROVED},
                    },
                    expected_states={first.id: QuoteState.DRAFT, second.id: QuoteState.SENT},
                )
            return await quote_repository.list()

        quotes = asyncio.run(scenario())

        assert [q.state for q in quotes] == [QuoteState.DRAFT, QuoteState.DRAFT]

    def test_update_where(self, quote_repository, quote_content):
        """Test aggiornamento per predicato."""

        async def scenario():
            await quote_repository.create(quote_content)
            other = await quote_repository.create(quote_content.model_copy(update={"name": "Altro"}))
            updated = await quote_repository.update_where(
                lambda q: q.name == "Altro",
                lambda q: {"notes": f"Visto {q.number}"},
            )
            return other, updated

        other, updated = asyncio.run(scenario())

        assert [q.id for q in updated] == [other.id]
        assert updated[0].notes == "Visto PRE-2024-002"

    def test_update_where_without_matches_does_not_write(self, store, quote_repository, quote_content):
        """Test nessun preventivo selezionato -> nessuna scrittura."""

        async def scenario():
            await quote_repository.create(quote_content)
            writes = store.write_count
            await quote_repository.update_where(lambda q: False, lambda q: {"notes": "x"})
            return writes

        writes = asyncio.run(scenario())

        assert store.write_count == writes


# ============================================================
# Letture e soft delete
# ============================================================


class TestReads:
    """Test letture e soft delete."""

    def test_get_missing_returns_none(self, quote_repository):
        """Test id sconosciuto -> None."""
        assert asyncio.run(quote_repository.get(uuid.uuid4())) is None

    def test_get_or_fail_missing(self, quote_repository):
        """Test id sconosciuto -> NotFoundError."""
        with pytest.raises(NotFoundError):
            asyncio.run(quote_repository.get_or_fail("non-esiste"))

    def test_deactivated_quote_is_hidden(self, quote_repository, quote_content):
        """Test il preventivo eliminato non compare in get e list."""

        async def scenario():
            quote = await quote_repository.create(quote_content)
            await quote_repository.deactivate(quote.id)
            return (
                quote,
                await quote_repository.get(quote.id),
                await quote_repository.get(quote.id, include_inactive=True),
                await quote_repository.list(),
                await quote_repository.list(include_inactive=True),
            )

        quote, hidden, archived, active, everything = asyncio.run(scenario())

        assert hidden is None
        assert archived.id == quote.id
        assert archived.is_active is False
        assert active == []
        assert len(everything) == 1

    def test_deactivate_twice(self, quote_repository, quote_content):
        """Test doppia eliminazione -> NotFoundError."""

        async def scenario():
            quote = await quote_repository.create(quote_content)
            await quote_repository.deactivate(quote.id)
            await quote_repository.deactivate(quote.id)

        with pytest.raises(NotFoundError):
            asyncio.run(scenario())

    def test_list_filters_by_state(self, quote_repository, quote_content):
        """Test filtro per stato."""

        async def scenario():
            first = await quote_repository.create(quote_content)
            await quote_repository.create(quote_content)
            await quote_repository.update(first.id, {"state": QuoteState.SENT})
            return await quote_repository.list(state=QuoteState.SENT)

        sent = asyncio.run(scenario())

        assert [q.number for q in sent] == ["PRE-2024-001"]

    def test_find_versions(self, quote_repository, quote_content):
        """Test versioni della famiglia ordinate per numero di versione."""

        async def scenario():
            first = await quote_repository.create(quote_content)
            third = await quote_repository.create(
                quote_content.model_copy(update={"name": "Ristrutturazione bagno (v3)"}),
                version=3,
                family_id=first.family_id,
            )
            second = await quote_repository.create(
                quote_content.model_copy(update={"name": "Ristrutturazione bagno (v2)"}),
                version=2,
                family_id=first.family_id,
            )
            await quote_repository.create(quote_content.model_copy(update={"name": "Altro"}))
            return [first, second, third], await quote_repository.find_versions(third.id)

        expected, versions = asyncio.run(scenario())

        assert [q.id for q in versions] == [q.id for q in expected]

    def test_find_versions_unknown_id(self, quote_repository):
        """Test id sconosciuto -> lista vuota."""
        assert asyncio.run(quote_repository.find_versions(uuid.uuid4())) == []
