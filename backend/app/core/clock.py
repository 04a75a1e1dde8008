"""
Orologio applicativo.

I service ricevono una funzione `Clock` iniettabile, così i test
possono fissare l'istante corrente.
"""

import datetime
from typing import Callable

Clock = Callable[[], datetime.datetime]


def utc_now() -> datetime.datetime:
    """Istante corrente in UTC (timezone-aware)."""
    return datetime.datetime.now(datetime.timezone.utc)


def as_utc(value: datetime.datetime) -> datetime.datetime:
    """
    Riporta un istante a timezone-aware.

    Gli istanti naive sono interpretati come UTC, lo stesso fuso delle
    date salvate; quelli aware restano invariati.
    """
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value
