"""
Repository delle Analisi di Redditività
Progetto: Gestionale Edile (Preventivi e Commesse)

Una sola analisi per commessa, chiave project_id. Un ricalcolo
sostituisce l'analisi per intero tranne il registro delle note.
"""

from __future__ import annotations

import logging
from typing import Optional

from app.core.exceptions import NotFoundError
from app.core.storage import KeyValueStore, Record
from app.schemas.profitability import AnalysisNote, ProfitabilityAnalysis

# Logger per questo modulo
logger = logging.getLogger(__name__)

ANALYSES_COLLECTION = "profitability_analyses"


def _find_index(items: list[Record], project_id: str) -> Optional[int]:
    for index, record in enumerate(items):
        if record.get("project_id") == project_id:
            return index
    return None


class AnalysisRepository:
    """Repository per le analisi di redditività."""

    def __init__(self, store: KeyValueStore, collection: str = ANALYSES_COLLECTION) -> None:
        self._store = store
        self._collection = collection

    async def upsert(self, analysis: ProfitabilityAnalysis) -> ProfitabilityAnalysis:
        """
        Inserisce o sostituisce l'analisi della commessa.

        Le note già presenti vengono mantenute.

        Returns:
            ProfitabilityAnalysis: L'analisi salvata
        """

        def mutator(items: list[Record]) -> ProfitabilityAnalysis:
            index = _find_index(items, analysis.project_id)
            stored = analysis
            if index is not None:
                previous = ProfitabilityAnalysis.model_validate(items[index])
                stored = analysis.model_copy(update={"notes": previous.notes})
                items[index] = stored.model_dump(mode="json")
            else:
                items.append(stored.model_dump(mode="json"))
            return stored

        stored = await self._store.mutate(self._collection, mutator)
        logger.info("Salvata analisi di redditività della commessa %s", stored.project_id)
        return stored

    async def get(self, project_id: str) -> Optional[ProfitabilityAnalysis]:
        """Analisi della commessa, None se non ancora calcolata."""
        items = await self._store.read(self._collection)
        index = _find_index(items, project_id)
        return ProfitabilityAnalysis.model_validate(items[index]) if index is not None else None

    async def list(self) -> list[ProfitabilityAnalysis]:
        """Tutte le analisi salvate."""
        return [
            ProfitabilityAnalysis.model_validate(record)
            for record in await self._store.read(self._collection)
        ]

    async def append_note(self, project_id: str, note: AnalysisNote) -> ProfitabilityAnalysis:
        """
        Aggiunge una nota al registro dell'analisi.

        Raises:
            NotFoundError: Se la commessa non ha ancora un'analisi
        """

        def mutator(items: list[Record]) -> ProfitabilityAnalysis:
            index = _find_index(items, project_id)
            if index is None:
                raise NotFoundError(
                    f"Analisi di redditività non trovata per la commessa {project_id}"
                )
            analysis = ProfitabilityAnalysis.model_validate(items[index])
            analysis.notes.append(note)
            items[index] = analysis.model_dump(mode="json")
            return analysis

        return await self._store.mutate(self._collection, mutator)
