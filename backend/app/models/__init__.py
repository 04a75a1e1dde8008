"""
Modelli Database SQLAlchemy
Progetto: Gestionale Edile (Preventivi e Commesse)

Import centralizzato di tutti i modelli per la creazione dello schema.

I documenti di dominio (preventivi, analisi di redditività) sono
schemi Pydantic persistiti come collezioni JSON:
- StoredCollection: una riga per collezione
"""

# SQLAlchemy 2.0 Base declarativa
# Importato qui per essere disponibile per tutti i modelli
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class per tutti i modelli SQLAlchemy."""
    pass


# Import modelli implementati
from app.models.collection import StoredCollection

# Esportazione di tutti i modelli
__all__ = [
    "Base",
    "StoredCollection",
]
