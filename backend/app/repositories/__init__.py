"""
Repository dei documenti di dominio
Progetto: Gestionale Edile (Preventivi e Commesse)

Ogni repository lavora su una collezione dell'archivio chiave-valore
(app.core.storage), ricevuto per dependency injection.
"""

from app.repositories.analysis_repository import ANALYSES_COLLECTION, AnalysisRepository
from app.repositories.quote_repository import QUOTES_COLLECTION, QuoteRepository

__all__ = [
    "ANALYSES_COLLECTION",
    "QUOTES_COLLECTION",
    "AnalysisRepository",
    "QuoteRepository",
]
