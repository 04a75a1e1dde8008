"""
Modello SQLAlchemy per le collezioni documentali
Progetto: Gestionale Edile (Preventivi e Commesse)

Ogni riga conserva un'intera collezione (es. "quotes",
"profitability_analyses") come documento JSON. I repository
eseguono read-merge-write sull'intera collezione.
"""


from __future__ import annotations
import datetime
from typing import Any

from sqlalchemy import JSON, CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.models import Base


class StoredCollection(Base):
    """
    Collezione persistita sotto una singola chiave.

    Attributes:
        key: Chiave della collezione (primary key)
        payload: Lista di record serializzati in JSON
        revision: Contatore incrementato a ogni scrittura
        created_at: Data/ora creazione record
        updated_at: Data/ora ultima scrittura
    """

    __tablename__ = "stored_collections"

    key: Mapped[str] = mapped_column(
        String(100),
        primary_key=True,
        doc="Chiave della collezione",
    )

    payload: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        doc="Record della collezione serializzati in JSON",
    )

    revision: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        doc="Numero di scritture effettuate sulla collezione",
    )

    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        doc="Data/ora di creazione del record",
    )

    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
        doc="Data/ora ultima scrittura della collezione",
    )

    __table_args__ = (
        CheckConstraint("revision >= 1", name="ck_stored_collections_revision"),
    )

    def __repr__(self) -> str:
        return f"<StoredCollection(key={self.key}, revision={self.revision})>"
