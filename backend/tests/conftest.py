"""
Pytest configuration and fixtures per i test dei preventivi.

I service lavorano su InMemoryKeyValueStore con orologio fisso;
i collaboratori esterni (anagrafica, commesse, fatture, spese)
sono AsyncMock. Le coroutine si eseguono con asyncio.run.
"""

import datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings
from app.core.storage import InMemoryKeyValueStore
from app.repositories.analysis_repository import AnalysisRepository
from app.repositories.quote_repository import QuoteRepository
from app.schemas.quote import (
    Address,
    ClientSnapshot,
    LineItem,
    MeasurementUnit,
    Phase,
    QuoteContent,
    QuoteState,
)
from app.services.conversion_service import ConversionService
from app.services.profitability_service import ProfitabilityService
from app.services.quote_lifecycle_service import QuoteLifecycleService
from app.services.quote_math import (
    compute_money_breakdown,
    generate_payment_plan,
    recalculate_phase,
)
from app.services.quote_service import QuoteService


FIXED_NOW = datetime.datetime(2024, 5, 10, 9, 0, tzinfo=datetime.timezone.utc)


# ============================================================
# Orologio
# ============================================================


class FakeClock:
    """Orologio controllabile dai test."""

    def __init__(self, now: datetime.datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + datetime.timedelta(**kwargs)


@pytest.fixture
def clock():
    """Orologio fermo al 10/05/2024 09:00 UTC."""
    return FakeClock()


@pytest.fixture
def settings():
    """Settings di test (senza file .env)."""
    return Settings(_env_file=None, app_env="testing")


# ============================================================
# Fixtures per AsyncSession Mock
# ============================================================


@pytest.fixture
def mock_db():
    """Crea un mock di AsyncSession."""
    db = AsyncMock(spec=AsyncSession)
    db.execute = AsyncMock()
    db.add = MagicMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    return db


@pytest.fixture
def session_factory(mock_db):
    """Session factory che restituisce sempre mock_db come context manager."""
    factory = MagicMock()
    factory.return_value.__aenter__ = AsyncMock(return_value=mock_db)
    factory.return_value.__aexit__ = AsyncMock(return_value=False)
    return factory


# ============================================================
# Dati di dominio
# ============================================================


def build_phase(number, name, items, duration=10):
    """Fase con voci (quantità, prezzo) e totali ricalcolati."""
    line_items = [
        LineItem(
            code=f"{number:02d}.{index:02d}",
            name=f"Voce {number}.{index}",
            unit=MeasurementUnit.SQUARE_METER,
            quantity=Decimal(str(quantity)),
            unit_price=Decimal(str(price)),
        )
        for index, (quantity, price) in enumerate(items, start=1)
    ]
    return recalculate_phase(
        Phase(
            number=number,
            name=name,
            estimated_duration_days=duration,
            line_items=line_items,
        )
    )


@pytest.fixture
def phase_factory():
    """Factory di fasi: phase_factory(numero, nome, [(q, p), ...])."""
    return build_phase


@pytest.fixture
def client_snapshot():
    """Cliente di test."""
    return ClientSnapshot(
        id="cli-001",
        name="Mario Rossi",
        company="Rossi Costruzioni S.r.l.",
        email="mario.rossi@example.com",
        phone="+39 06 1234567",
        tax_id="RSSMRA85T10A562X",
        address=Address(street="Via Roma 1", city="Roma", province="RM", postal_code="00100"),
    )


@pytest.fixture
def quote_content(client_snapshot):
    """
    Contenuto completo e coerente:
    10 × 100 + 5 × 200 -> imponibile 2000, IVA 420, totale 2420.
    """
    phases = [
        build_phase(1, "Demolizioni", [(10, 100)], duration=5),
        build_phase(2, "Murature", [(5, 200)], duration=15),
    ]
    money = compute_money_breakdown(phases)
    return QuoteContent(
        name="Ristrutturazione bagno",
        client=client_snapshot,
        phases=phases,
        payment_plan=generate_payment_plan(phases, money.total),
        money=money,
        validity_days=30,
        conditions=["Prezzi validi salvo variazioni dei materiali"],
    )


# ============================================================
# Repository e service
# ============================================================


@pytest.fixture
def store():
    return InMemoryKeyValueStore()


@pytest.fixture
def quote_repository(store, clock):
    return QuoteRepository(store, clock=clock)


@pytest.fixture
def analysis_repository(store):
    return AnalysisRepository(store)


@pytest.fixture
def lifecycle(quote_repository, clock):
    return QuoteLifecycleService(quote_repository, clock=clock)


@pytest.fixture
def client_directory(client_snapshot):
    """Anagrafica clienti mock: conosce solo cli-001."""
    directory = AsyncMock()

    async def get_client(client_id):
        return client_snapshot if client_id == client_snapshot.id else None

    directory.get_client = AsyncMock(side_effect=get_client)
    return directory


@pytest.fixture
def quote_generator():
    generator = AsyncMock()
    generator.generate = AsyncMock()
    return generator


@pytest.fixture
def quote_service(quote_repository, lifecycle, client_directory, settings, clock, quote_generator):
    return QuoteService(
        quote_repository,
        lifecycle,
        client_directory,
        settings=settings,
        clock=clock,
        generator=quote_generator,
    )


@pytest.fixture
def project_gateway():
    gateway = AsyncMock()
    gateway.create_project = AsyncMock(return_value="proj-001")
    return gateway


@pytest.fixture
def invoice_gateway():
    gateway = AsyncMock()
    gateway.create_invoice = AsyncMock(return_value="inv-001")
    gateway.list_invoices_by_project = AsyncMock(return_value=[])
    return gateway


@pytest.fixture
def expense_gateway():
    gateway = AsyncMock()
    gateway.list_expenses_by_project = AsyncMock(return_value=[])
    return gateway


@pytest.fixture
def conversion_service(
    quote_repository, lifecycle, project_gateway, invoice_gateway, settings, clock
):
    return ConversionService(
        quote_repository,
        lifecycle,
        project_gateway,
        invoice_gateway,
        settings=settings,
        clock=clock,
    )


@pytest.fixture
def profitability_service(
    quote_repository, analysis_repository, invoice_gateway, expense_gateway, settings, clock
):
    return ProfitabilityService(
        quote_repository,
        analysis_repository,
        invoice_gateway,
        expense_gateway,
        settings=settings,
        clock=clock,
    )


@pytest.fixture
def quote_in_state(quote_repository, lifecycle, quote_content):
    """
    Factory asincrona: crea un preventivo e lo porta allo stato richiesto
    passando per le transizioni reali.
    """

    async def factory(state: QuoteState, content: QuoteContent = None):
        quote = await quote_repository.create(content or quote_content)
        if state == QuoteState.DRAFT:
            return quote
        quote = await lifecycle.send(quote.id)
        if state == QuoteState.SENT:
            return quote
        if state == QuoteState.REJECTED:
            return await lifecycle.reject(quote.id, "Prezzo troppo alto")
        if state == QuoteState.EXPIRED:
            expired = await lifecycle.check_expiration(
                quote.valid_until + datetime.timedelta(days=1)
            )
            return next(q for q in expired if q.id == quote.id)
        quote = await lifecycle.approve(quote.id)
        if state == QuoteState.APPROVED:
            return quote
        return await lifecycle.mark_converted(quote.id, "proj-000", "inv-000")

    return factory
