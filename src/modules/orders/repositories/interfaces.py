"""Order repository interface.

Extends ``IRepository[Order]`` with methods required by the Order
aggregate: atomic creation with items, status history tracking,
idempotency-key look-up, and the compare-and-set primitive the payment
engine uses for every payment state change.

The Service Layer depends exclusively on this contract (DIP).
"""

from __future__ import annotations

from abc import abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional
from uuid import UUID

from modules.core.repositories.interfaces import IRepository

if TYPE_CHECKING:
    from modules.orders.models import Order, OrderStatusHistory, PaymentDetails


class IOrderRepository(IRepository["Order"]):
    """Repository contract for the Order aggregate root.

    The Order aggregate includes OrderItem children, the PaymentDetails
    sub-record and OrderStatusHistory records.  Mutations must be atomic.
    """

    @abstractmethod
    def create(self, data: Dict[str, Any]) -> Order:
        """Create an order with its items atomically.

        ``data`` must include ``user_id``, ``items`` (list of dicts with
        ``product_id``, ``quantity``, ``unit_price``), the shipping fields
        and ``payment_method``; optionally ``idempotency_key`` and ``notes``.
        """

    @abstractmethod
    def get_by_id(self, id: str) -> Optional[Order]:
        """Retrieve an order with prefetched items and status history."""

    @abstractmethod
    def get_for_update(self, id: str) -> Optional[Order]:
        """Retrieve an order with a row-level lock."""

    @abstractmethod
    def list(self, filters: Optional[Dict[str, Any]] = None) -> Any:
        """List orders with optional filters."""

    @abstractmethod
    def add_history(
        self,
        order_id: UUID,
        status: str,
        notes: str = "",
        old_status: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> OrderStatusHistory:
        """Record a status change (or payment event) in the audit trail."""

    @abstractmethod
    def get_by_idempotency_key(self, user_id: int, key: str) -> Optional[Order]:
        """Retrieve a user's order by its idempotency key.

        Keys are scoped per user: two customers may send the same key.
        """

    # ------------------------------------------------------------------
    # Payment leg
    # ------------------------------------------------------------------

    @abstractmethod
    def get_by_payment_id(self, payment_id: str) -> Optional[Order]:
        """Retrieve the order whose stored intent id is *payment_id*."""

    @abstractmethod
    def transition_payment_state(
        self,
        order_id: UUID,
        expected: Iterable[str],
        new_state: str,
        expected_attempts: Optional[int] = None,
        **fields: Any,
    ) -> bool:
        """Move ``payment_state`` to *new_state* only if it is in *expected*.

        With *expected_attempts*, ``payment_attempts`` must match as well,
        so two initiations from the same snapshot cannot both win.
        Extra *fields* are written in the same statement.  Returns ``False``
        when the order was not in an expected state (nothing written).
        """

    @abstractmethod
    def get_payment_state(self, order_id: UUID) -> Optional[str]:
        """Current ``payment_state`` straight from the database."""

    @abstractmethod
    def update_payment_details(self, order_id: UUID, **fields: Any) -> PaymentDetails:
        """Create or update the order's PaymentDetails sub-record."""

    @abstractmethod
    def list_stuck_payments(self, state: str, older_than: datetime) -> List[Order]:
        """Orders left in *state* since before *older_than*."""
