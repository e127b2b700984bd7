"""Collaborator interfaces the engines depend on."""

from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal


class PriceLookup(ABC):
    """Read side of the price store."""

    @abstractmethod
    def get_price_on_date(self, symbol: str, on_date: date) -> Decimal:
        """Price for symbol on a date, falling back to the nearest earlier record.

        Raises DataUnavailableError when nothing is reachable.
        """
        ...

    @abstractmethod
    def get_latest_price(self, symbol: str) -> Decimal:
        ...
