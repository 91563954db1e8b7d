"""
External services used by the Prize Engine.

The engine never reaches into client, membership, order or notification
storage directly; it talks to these interfaces.
"""
from abc import ABC, abstractmethod
from typing import Optional

from ..models import Client


class ClientDirectory(ABC):
    """Read-only access to gym clients."""

    @abstractmethod
    async def get_client(self, client_id: int) -> Optional[Client]:
        """Return the client or None when it does not exist."""


class MembershipService(ABC):
    """Membership operations needed by membership-days prizes."""

    @abstractmethod
    async def extend_membership(self, client_id: int, days: int) -> Optional[int]:
        """Extend the active membership end date.

        Returns the id of the extended membership, or None when the client
        has no active membership.
        """


class PointsLedger(ABC):
    """Client points ledger."""

    @abstractmethod
    async def credit_points(self, client_id: int, points: int, reason: str) -> None:
        ...


class OrderService(ABC):
    """Order/fulfilment service for free-product prizes."""

    @abstractmethod
    async def create_free_order(
        self,
        client_id: int,
        product_id: int,
        quantity: int
    ) -> Optional[int]:
        """Create a zero-cost pickup order, returns the order id."""


class Notifier(ABC):
    """Fire-and-forget client notifications."""

    @abstractmethod
    async def notify(
        self,
        client_id: int,
        category: str,
        title: str,
        message: str,
        priority: str = 'high',
        related_id: Optional[int] = None
    ) -> None:
        ...
