"""
Archivio chiave-valore delle collezioni
Progetto: Gestionale Edile (Preventivi e Commesse)

Ogni collezione è una lista di record JSON salvata sotto una chiave.
Il contratto è read-modify-write sull'intera collezione:

- read(key): restituisce una copia della collezione
- mutate(key, mutator): legge, applica il mutator e riscrive
  in un'unica sezione critica, così che scritture concorrenti
  su record diversi non si sovrascrivano a vicenda

Se il mutator non modifica la collezione non viene scritto nulla.
Se il mutator solleva un'eccezione la collezione resta invariata.
"""

import asyncio
import copy
import logging
from typing import Any, Callable, Protocol, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import StorageError
from app.models import StoredCollection

# Logger per questo modulo
logger = logging.getLogger(__name__)

T = TypeVar("T")

Record = dict[str, Any]
Mutator = Callable[[list[Record]], T]


class KeyValueStore(Protocol):
    """Contratto dell'archivio usato dai repository."""

    async def read(self, key: str) -> list[Record]:
        ...

    async def mutate(self, key: str, mutator: Mutator[T]) -> T:
        ...


class InMemoryKeyValueStore:
    """
    Archivio in memoria, usato nei test e negli ambienti di sviluppo.

    Il lock copre la sola durata di una mutate (nessun lock tra chiamate).
    """

    def __init__(self, initial: dict[str, list[Record]] | None = None) -> None:
        self._collections: dict[str, list[Record]] = copy.deepcopy(initial or {})
        self._lock = asyncio.Lock()
        self.write_count = 0

    async def read(self, key: str) -> list[Record]:
        await asyncio.sleep(0)
        return copy.deepcopy(self._collections.get(key, []))

    async def mutate(self, key: str, mutator: Mutator[T]) -> T:
        async with self._lock:
            original = self._collections.get(key, [])
            items = copy.deepcopy(original)
            # Simula la sospensione I/O tra lettura e scrittura
            await asyncio.sleep(0)
            outcome = mutator(items)
            if items != original:
                await self._write(key, items)
            return outcome

    async def _write(self, key: str, items: list[Record]) -> None:
        self._collections[key] = items
        self.write_count += 1


class SqlKeyValueStore:
    """
    Archivio su database relazionale via SQLAlchemy 2.0 async.

    Una riga di `stored_collections` per chiave; la mutate blocca
    la riga con SELECT ... FOR UPDATE fino al commit.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def read(self, key: str) -> list[Record]:
        async with self._session_factory() as session:
            try:
                result = await session.execute(
                    select(StoredCollection).where(StoredCollection.key == key)
                )
            except SQLAlchemyError as e:
                logger.error("Errore lettura collezione %s: %s", key, e)
                raise StorageError(f"Errore lettura collezione {key}") from e
            row = result.scalar_one_or_none()
            return copy.deepcopy(row.payload) if row is not None else []

    async def mutate(self, key: str, mutator: Mutator[T]) -> T:
        async with self._session_factory() as session:
            try:
                result = await session.execute(
                    select(StoredCollection)
                    .where(StoredCollection.key == key)
                    .with_for_update()
                )
                row = result.scalar_one_or_none()
                original = row.payload if row is not None else []
                items = copy.deepcopy(original)

                # Eccezioni del mutator: nessuna scrittura, rollback alla chiusura
                outcome = mutator(items)

                if items == original:
                    await session.rollback()
                    return outcome

                if row is None:
                    session.add(StoredCollection(key=key, payload=items, revision=1))
                else:
                    # Nuova lista: il tipo JSON non traccia mutazioni in place
                    row.payload = items
                    row.revision = row.revision + 1

                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error("Errore scrittura collezione %s: %s", key, e)
                raise StorageError(f"Errore scrittura collezione {key}") from e

        logger.debug("Collezione %s aggiornata (%d record)", key, len(items))
        return outcome
