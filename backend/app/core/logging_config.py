"""
Configurazione Logging
Progetto: Gestionale Edile (Preventivi e Commesse)

Configura il logging standard per gli script operativi
(reset database, sweep scadenze preventivi).
"""

import logging
from typing import Optional

from app.core.config import Settings, get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(settings: Optional[Settings] = None) -> None:
    """
    Inizializza il root logger con livello e formato da configurazione.

    Args:
        settings: Impostazioni da usare (default: get_settings())
    """
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format=LOG_FORMAT,
    )
    # SQLAlchemy logga le query solo in debug
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.debug else logging.WARNING
    )
    logging.getLogger(__name__).debug(
        "Logging configurato (livello=%s, ambiente=%s)",
        settings.log_level,
        settings.app_env,
    )
