"""Payment reconciliation engine (Use Cases).

Owns the payment leg of an order.  It is the only code that writes
``Order.payment_state`` (and the ``payment_status`` derived from it), the
``PaymentDetails`` sub-record and the stock side effects of a payment.

Every transition is a compare-and-set on ``payment_state`` executed in the
same ``transaction.atomic()`` block as its side effects (stock movement,
details, history note).  A compare-and-set that finds the order in another
state raises ``StaleTransition``; the engine logs it and treats the event
as already handled, which is what makes duplicate callbacks, replayed
webhooks and racing workers harmless.

No transaction is open while the gateway is called.  Intent creation
claims the attempt with one compare-and-set, calls the gateway, then
commits the intent (or hands the claim back) with a second one.  Every
move is checked against ``PAYMENT_TRANSITIONS`` before it is attempted.

State machine::

    NO_PAYMENT --create--> INTENT_CREATED --claim--> EXECUTING --> PAID --> REFUNDED
                             |   ^  |                  |  |
                             |   |  +-- re-issue       |  +--> FAILED (release)
                             |   +---------------------+ gateway down on both calls
                             +--> FAILED | CANCELLED (release)
    FAILED | CANCELLED --retry (re-reserve)--> INTENT_CREATED

Stock is held in every state except FAILED and CANCELLED, so the only
stock movements are the release on entering those two states and the
re-reservation on leaving them.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from functools import partial
from typing import TYPE_CHECKING, Iterable, List, Optional
from uuid import UUID

import structlog
from django.conf import settings
from django.core.exceptions import ObjectDoesNotExist
from django.db import transaction
from django.db.models import Case, F, Value, When
from django.utils import timezone

from modules.orders.constants import (
    RELEASED_STATES,
    STARTABLE_STATES,
    UNSETTLED_STATES,
    OrderStatus,
    PaymentMethod,
    PaymentState,
    is_payment_transition_allowed,
)
from modules.orders.exceptions import OrderNotFound
from modules.orders.repositories.django_repository import OrderDjangoRepository
from modules.payments import events as payment_events
from modules.payments.exceptions import (
    InvalidPaymentTransition,
    PaymentError,
    PaymentGatewayNotConfigured,
    PaymentGatewayRejected,
    PaymentGatewayUnavailable,
    PaymentNotFound,
    StaleTransition,
)
from modules.payments.gateway import get_gateway
from modules.payments.gateway.port import (
    COMPLETED,
    GatewayFailure,
    GatewayRejected,
    GatewayUnavailable,
    PaymentCreated,
    PaymentExecuted,
    PaymentGateway,
    PaymentQueried,
    PaymentRefunded,
)
from modules.products.inventory import InventoryAdjuster, StockLine
from shared.infrastructure.bus import event_bus as default_event_bus

if TYPE_CHECKING:
    from modules.orders.models import Order, PaymentDetails
    from modules.orders.repositories.interfaces import IOrderRepository
    from shared.domain.bus import IEventBus
    from shared.domain.events import DomainEvent

logger = structlog.get_logger(__name__)

FAILED = "Failed"
CANCELLED = "Cancelled"
# Gateway statuses that settle an intent as not paid.
UNPAID_STATUSES = {FAILED: PaymentState.FAILED, CANCELLED: PaymentState.CANCELLED}

AMOUNT_TOLERANCE = Decimal("0.01")


@dataclass(frozen=True)
class PaymentInitiation:
    """A fresh intent; the customer continues at ``redirect_url``."""

    order: Order
    payment_id: str
    redirect_url: str


@dataclass(frozen=True)
class CallbackOutcome:
    """What the customer should be told after the redirect callback."""

    order: Order
    status: str
    message: str
    trx_id: str = ""
    amount: Optional[Decimal] = None


@dataclass(frozen=True)
class ReportOutcome:
    order_id: UUID
    payment_state: str
    applied: bool


def _details(order: Order) -> Optional[PaymentDetails]:
    try:
        return order.payment_details
    except ObjectDoesNotExist:
        return None


def _translate(result: GatewayFailure) -> PaymentError:
    """Turn a gateway failure into the exception surfaced to callers.

    The provider's own wording stays in ``PaymentDetails``.
    """
    if isinstance(result, GatewayUnavailable):
        return PaymentGatewayUnavailable(
            "bKash is temporarily unavailable. Please try again shortly."
        )
    return PaymentGatewayRejected("bKash declined the payment request.", code=result.code)


class PaymentService:
    """Application service for the payment leg of orders.

    Receives its collaborators via constructor injection (DIP); every
    argument defaults to the production implementation.
    """

    def __init__(
        self,
        order_repository: Optional[IOrderRepository] = None,
        gateway: Optional[PaymentGateway] = None,
        inventory: Optional[InventoryAdjuster] = None,
        event_bus: Optional[IEventBus] = None,
    ) -> None:
        self._order_repo = order_repository or OrderDjangoRepository()
        self._gateway = gateway or get_gateway()
        self._inventory = inventory or InventoryAdjuster()
        self._event_bus = event_bus or default_event_bus

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def initiate_payment(self, order_id: UUID | str) -> PaymentInitiation:
        """Create a gateway intent for the order (first attempt or retry).

        From ``NO_PAYMENT`` or ``INTENT_CREATED`` the stock is already held.
        From ``FAILED``/``CANCELLED`` it is re-reserved together with the
        claim on the attempt.  The gateway is called after that short
        transaction commits; if it fails, the claim is handed back and any
        re-reserved stock released, leaving the order as it was apart from
        the failure diagnostics.

        Raises:
            PaymentGatewayNotConfigured: credentials missing / disabled.
            OrderNotFound: unknown order.
            InvalidPaymentTransition: not a bKash order, cancelled order,
                payment already executing/settled, or a concurrent attempt.
            InsufficientStock: retry and stock ran out meanwhile.
            PaymentGatewayUnavailable / PaymentGatewayRejected.
        """
        if not self._gateway.is_configured():
            raise PaymentGatewayNotConfigured("bKash payment gateway is not configured.")

        order = self._get_order(order_id)
        log = logger.bind(order_id=str(order.id), payment_state=order.payment_state)

        if order.payment_method != PaymentMethod.BKASH:
            raise InvalidPaymentTransition("This order is not paid with bKash.")
        if order.order_status == OrderStatus.CANCELLED:
            raise InvalidPaymentTransition("Cancelled orders cannot be paid.")
        if order.payment_state not in STARTABLE_STATES:
            raise InvalidPaymentTransition(
                f"Cannot start a payment while it is {order.payment_state}."
            )

        attempt = order.payment_attempts + 1
        details = _details(order)
        previous_payment_id = details.payment_id if details else ""

        # 1. Claim the attempt.  payment_attempts acts as the version, so
        # a second initiation from the same snapshot loses here.
        try:
            with transaction.atomic():
                self._transition(
                    order,
                    (order.payment_state,),
                    PaymentState.INTENT_CREATED,
                    expected_attempts=order.payment_attempts,
                    payment_attempts=attempt,
                )
                if order.payment_state in RELEASED_STATES:
                    self._inventory.reserve(self._stock_lines(order))
                    # The settled intent must not match callbacks meanwhile.
                    self._order_repo.update_payment_details(order.id, payment_id="")
        except StaleTransition as exc:
            self._log_stale(exc)
            raise InvalidPaymentTransition(
                "The payment changed state meanwhile. Refresh the order and try again."
            ) from exc

        # 2. The gateway is called with no transaction or row lock held.
        log.info("payment.create_requested", attempt=attempt)
        result = self._gateway.create_payment(
            amount=order.total_amount,
            order_id=str(order.id),
            payer_reference=str(order.user_id),
        )
        if not isinstance(result, PaymentCreated):
            self._abandon_attempt(order, attempt, previous_payment_id, result)
            raise _translate(result)

        # 3. Store the intent, unless a cancellation or a newer attempt
        # moved the order on while the gateway was working.
        try:
            with transaction.atomic():
                self._transition(
                    order,
                    (PaymentState.INTENT_CREATED,),
                    PaymentState.INTENT_CREATED,
                    expected_attempts=attempt,
                )
                self._order_repo.update_payment_details(
                    order.id,
                    payment_id=result.payment_id,
                    trx_id="",
                    amount=order.total_amount,
                    payer_reference=str(order.user_id),
                    merchant_invoice_number=str(order.id),
                    transaction_status="Initiated",
                    payment_create_time=result.create_time,
                    paid_at=None,
                    failed_at=None,
                    failure_reason="",
                    create_response=result.raw,
                )
                self._note(
                    order,
                    f"bKash payment initiated (attempt {attempt}). "
                    f"Payment ID: {result.payment_id}",
                )
        except StaleTransition as exc:
            self._log_stale(exc)
            log.warning(
                "payment.intent_discarded", payment_id=result.payment_id, attempt=attempt
            )
            raise InvalidPaymentTransition(
                "The payment changed state meanwhile. Refresh the order and try again."
            ) from exc

        log.info("payment.intent_created", payment_id=result.payment_id, attempt=attempt)
        return PaymentInitiation(
            order=self._get_order(order.id),
            payment_id=result.payment_id,
            redirect_url=result.redirect_url,
        )

    def handle_callback(self, payment_id: str, status: str) -> CallbackOutcome:
        """Apply the customer-facing redirect callback.

        The order is found only through the intent id the engine stored.
        ``success`` runs the execute path; ``cancel`` and anything else
        settle the intent as cancelled / failed and give the stock back.

        Raises:
            PaymentNotFound: no order carries *payment_id*.
            PaymentGatewayUnavailable: execute and query both unreachable;
                the order is back in ``INTENT_CREATED``.
        """
        order = self._get_order_by_payment_id(payment_id)
        status = (status or "").strip().lower()
        logger.info(
            "payment.callback_received",
            order_id=str(order.id),
            payment_id=payment_id,
            status=status,
        )

        if status == "success":
            return self._execute(order)
        if status == "cancel":
            self._settle_unpaid(
                order,
                PaymentState.CANCELLED,
                "Payment cancelled by the customer at bKash.",
                expected=(PaymentState.INTENT_CREATED,),
            )
        else:
            self._settle_unpaid(
                order,
                PaymentState.FAILED,
                f"bKash reported the payment as {status or 'failed'}.",
                expected=(PaymentState.INTENT_CREATED,),
            )
        return self._outcome_for(self._get_order(order.id))

    def apply_gateway_report(
        self,
        payment_id: str,
        transaction_status: str,
        trx_id: str = "",
        amount: Optional[Decimal] = None,
    ) -> ReportOutcome:
        """Apply an asynchronous, already-authenticated gateway notification.

        A ``Completed`` report is never trusted on its own: the intent is
        queried first and only a ``Completed`` query marks the order paid.

        Raises:
            PaymentNotFound: no order carries *payment_id*.
            PaymentGatewayUnavailable / PaymentGatewayRejected: the
                confirming query failed; the provider should retry.
        """
        order = self._get_order_by_payment_id(payment_id)
        log = logger.bind(
            order_id=str(order.id),
            payment_id=payment_id,
            reported_status=transaction_status,
            payment_state=order.payment_state,
        )
        log.info("payment.report_received")

        applied = False
        if transaction_status == COMPLETED:
            queried = self._gateway.query_payment(payment_id)
            self._order_repo.update_payment_details(order.id, query_response=queried.raw)
            if not isinstance(queried, PaymentQueried):
                log.warning("payment.report_unverified", reason=queried.reason)
                raise _translate(queried)
            if not queried.is_completed:
                log.warning(
                    "payment.report_contradicted",
                    queried_status=queried.transaction_status,
                )
            elif order.payment_state in RELEASED_STATES:
                self._flag_completed_after_settlement(order, queried.trx_id or trx_id)
            else:
                applied = self._mark_paid(
                    order,
                    trx_id=queried.trx_id or trx_id,
                    amount=queried.amount if queried.amount is not None else amount,
                    customer_msisdn=queried.customer_msisdn,
                )
        elif transaction_status in UNPAID_STATUSES:
            applied = self._settle_unpaid(
                order,
                UNPAID_STATUSES[transaction_status],
                f"bKash reported the payment as {transaction_status}.",
                expected=(PaymentState.INTENT_CREATED,),
            )
        else:
            log.info("payment.report_ignored")

        return ReportOutcome(
            order_id=order.id,
            payment_state=self._order_repo.get_payment_state(order.id) or "",
            applied=applied,
        )

    def reconcile_payment(
        self,
        order_id: UUID | str,
        stuck_before: Optional[datetime] = None,
    ) -> Order:
        """Query the gateway for the order's intent and apply the answer.

        With *stuck_before*, an ``EXECUTING`` order untouched since then
        whose intent is still open is put back to ``INTENT_CREATED``.
        """
        order = self._get_order(order_id)
        details = _details(order)
        payment_id = details.payment_id if details else ""
        if not payment_id:
            raise InvalidPaymentTransition("This order has no bKash payment to check.")

        log = logger.bind(
            order_id=str(order.id),
            payment_id=payment_id,
            payment_state=order.payment_state,
        )
        queried = self._gateway.query_payment(payment_id)
        self._order_repo.update_payment_details(order.id, query_response=queried.raw)
        if not isinstance(queried, PaymentQueried):
            log.warning("payment.reconcile_query_failed", reason=queried.reason)
            raise _translate(queried)

        log.info("payment.reconciling", queried_status=queried.transaction_status)
        state = order.payment_state
        if queried.is_completed:
            if state in UNSETTLED_STATES:
                self._mark_paid(
                    order,
                    trx_id=queried.trx_id,
                    amount=queried.amount,
                    customer_msisdn=queried.customer_msisdn,
                )
            elif state in RELEASED_STATES:
                self._flag_completed_after_settlement(order, queried.trx_id)
        elif queried.transaction_status in UNPAID_STATUSES:
            if state in UNSETTLED_STATES:
                self._settle_unpaid(
                    order,
                    UNPAID_STATUSES[queried.transaction_status],
                    f"bKash reported the payment as {queried.transaction_status}.",
                    expected=UNSETTLED_STATES,
                )
        elif (
            state == PaymentState.EXECUTING
            and stuck_before is not None
            and order.updated_at < stuck_before
        ):
            self._reopen(order)

        return self._get_order(order.id)

    def refund_payment(
        self,
        order_id: UUID | str,
        amount: Optional[Decimal] = None,
        reason: str = "Customer refund",
        user_id: Optional[int] = None,
    ) -> Order:
        """Refund a paid bKash order in full.  Stock is not restored.

        Refunding an already refunded order is a no-op.

        Raises:
            OrderNotFound, InvalidPaymentTransition,
            PaymentGatewayUnavailable, PaymentGatewayRejected.
        """
        order = self._get_order(order_id)
        if order.payment_method != PaymentMethod.BKASH:
            raise InvalidPaymentTransition("Only bKash payments can be refunded.")
        if amount is not None and Decimal(str(amount)) != order.total_amount:
            raise InvalidPaymentTransition(
                "Partial refunds are not supported. Refund the full order total."
            )

        log = logger.bind(order_id=str(order.id))
        if order.payment_state == PaymentState.REFUNDED:
            log.info("payment.already_refunded")
            return order
        if order.payment_state != PaymentState.PAID:
            raise InvalidPaymentTransition("Only paid orders can be refunded.")

        details = _details(order)
        log.info("payment.refund_requested", payment_id=details.payment_id)
        result = self._gateway.refund_payment(
            payment_id=details.payment_id,
            trx_id=details.trx_id,
            amount=order.total_amount,
            reason=reason,
        )
        if not isinstance(result, PaymentRefunded):
            log.warning("payment.refund_failed", reason=result.reason)
            self._order_repo.update_payment_details(order.id, refund_response=result.raw)
            self._note(order, "bKash refund failed.", user_id=user_id)
            raise _translate(result)

        try:
            with transaction.atomic():
                self._transition(order, (PaymentState.PAID,), PaymentState.REFUNDED)
                self._order_repo.update_payment_details(
                    order.id,
                    refund_trx_id=result.refund_trx_id,
                    refunded_at=timezone.now(),
                    transaction_status=result.transaction_status or "Refunded",
                    refund_response=result.raw,
                )
                self._note(
                    order,
                    f"Payment refunded via bKash ({reason}). "
                    f"Refund TrxID: {result.refund_trx_id}",
                    user_id=user_id,
                )
                self._publish_on_commit(
                    self._event(
                        payment_events.PaymentRefunded,
                        order,
                        refund_trx_id=result.refund_trx_id,
                    )
                )
        except StaleTransition as exc:
            # A concurrent refund recorded first.
            self._log_stale(exc)
            return self._get_order(order.id)

        log.info("payment.refunded")
        return self._get_order(order.id)

    def cancel_payment(self, order_id: UUID | str, reason: str = "") -> bool:
        """Abandon an unpaid payment leg and give its stock back.

        Used by order cancellation.  Returns ``False`` when another writer
        settled the payment first (nothing released here).
        """
        order = self._get_order(order_id)
        if order.payment_state not in (PaymentState.NO_PAYMENT, PaymentState.INTENT_CREATED):
            raise InvalidPaymentTransition(
                f"Cannot cancel a payment that is {order.payment_state}."
            )
        return self._settle_unpaid(
            order,
            PaymentState.CANCELLED,
            reason or "Order cancelled.",
            expected=(PaymentState.NO_PAYMENT, PaymentState.INTENT_CREATED),
        )

    def reconcile_stuck_payments(self, older_than_minutes: Optional[int] = None) -> int:
        """Resolve orders left in ``EXECUTING`` by querying the gateway.

        Returns how many orders were reconciled; failures are logged and
        left for the next run.
        """
        minutes = (
            older_than_minutes
            if older_than_minutes is not None
            else settings.PAYMENT_STUCK_AFTER_MINUTES
        )
        cutoff = timezone.now() - timedelta(minutes=minutes)
        stuck = self._order_repo.list_stuck_payments(PaymentState.EXECUTING, cutoff)
        reconciled = 0
        for order in stuck:
            try:
                self.reconcile_payment(order.id, stuck_before=cutoff)
            except PaymentError as exc:
                logger.warning(
                    "payment.stuck_reconcile_failed",
                    order_id=str(order.id),
                    error=str(exc),
                )
                continue
            reconciled += 1
        logger.info("payment.stuck_reconciled", found=len(stuck), reconciled=reconciled)
        return reconciled

    # ------------------------------------------------------------------
    # Execute path
    # ------------------------------------------------------------------

    def _execute(self, order: Order) -> CallbackOutcome:
        log = logger.bind(order_id=str(order.id))
        try:
            with transaction.atomic():
                self._transition(
                    order, (PaymentState.INTENT_CREATED,), PaymentState.EXECUTING
                )
        except StaleTransition as exc:
            self._log_stale(exc)
            return self._outcome_for(self._get_order(order.id))

        payment_id = order.payment_details.payment_id
        executed = self._gateway.execute_payment(payment_id)
        if isinstance(executed, PaymentExecuted):
            self._order_repo.update_payment_details(
                order.id,
                execute_response=executed.raw,
                transaction_status=executed.transaction_status,
            )
            if executed.is_completed:
                self._mark_paid(
                    order,
                    trx_id=executed.trx_id,
                    amount=executed.amount,
                    customer_msisdn=executed.customer_msisdn,
                    execute_time=executed.execute_time,
                )
                return self._outcome_for(self._get_order(order.id))
            log.warning(
                "payment.execute_not_completed",
                transaction_status=executed.transaction_status,
            )
        else:
            self._order_repo.update_payment_details(
                order.id, execute_response=executed.raw
            )
            log.warning(
                "payment.execute_failed",
                reason=executed.reason,
                unavailable=isinstance(executed, GatewayUnavailable),
            )

        queried = self._gateway.query_payment(payment_id)
        self._order_repo.update_payment_details(order.id, query_response=queried.raw)
        if isinstance(queried, PaymentQueried) and queried.is_completed:
            self._mark_paid(
                order,
                trx_id=queried.trx_id,
                amount=queried.amount,
                customer_msisdn=queried.customer_msisdn,
            )
            return self._outcome_for(self._get_order(order.id))

        # Without a definitive answer from either call the intent may still
        # be payable; hand it back rather than failing it.
        answered = isinstance(executed, (PaymentExecuted, GatewayRejected))
        settled_by_query = (
            isinstance(queried, PaymentQueried)
            and queried.transaction_status in UNPAID_STATUSES
        )
        if not answered and not settled_by_query:
            self._reopen(order)
            raise PaymentGatewayUnavailable(
                "bKash could not confirm the payment yet. Please check your order shortly."
            )

        reason = (
            executed.reason
            if isinstance(executed, GatewayRejected)
            else f"bKash reported the payment as {self._status_of(executed, queried)}."
        )
        self._settle_unpaid(
            order, PaymentState.FAILED, reason, expected=(PaymentState.EXECUTING,)
        )
        return self._outcome_for(self._get_order(order.id))

    @staticmethod
    def _status_of(executed: object, queried: object) -> str:
        if isinstance(queried, PaymentQueried):
            return queried.transaction_status
        if isinstance(executed, PaymentExecuted):
            return executed.transaction_status
        return "failed"

    def _reopen(self, order: Order) -> None:
        try:
            with transaction.atomic():
                self._transition(
                    order, (PaymentState.EXECUTING,), PaymentState.INTENT_CREATED
                )
                self._note(order, "bKash payment could not be confirmed; awaiting retry.")
        except StaleTransition as exc:
            self._log_stale(exc)
            return
        logger.warning("payment.reopened", order_id=str(order.id))

    # ------------------------------------------------------------------
    # Settlement transitions
    # ------------------------------------------------------------------

    def _mark_paid(
        self,
        order: Order,
        trx_id: str,
        amount: Optional[Decimal],
        customer_msisdn: str = "",
        execute_time: str = "",
    ) -> bool:
        """``INTENT_CREATED|EXECUTING -> PAID``; pending orders move to processing."""
        log = logger.bind(order_id=str(order.id), trx_id=trx_id)
        details = {
            "trx_id": trx_id,
            "transaction_status": COMPLETED,
            "paid_at": timezone.now(),
            "failed_at": None,
            "failure_reason": "",
        }
        if amount is not None:
            details["amount"] = amount
        if customer_msisdn:
            details["customer_msisdn"] = customer_msisdn
        if execute_time:
            details["payment_execute_time"] = execute_time

        try:
            with transaction.atomic():
                self._transition(
                    order,
                    UNSETTLED_STATES,
                    PaymentState.PAID,
                    order_status=Case(
                        When(
                            order_status=OrderStatus.PENDING,
                            then=Value(OrderStatus.PROCESSING),
                        ),
                        default=F("order_status"),
                    ),
                )
                self._order_repo.update_payment_details(order.id, **details)

                note = f"Payment confirmed via bKash. TrxID: {trx_id}"
                if order.order_status == OrderStatus.PENDING:
                    self._order_repo.add_history(
                        order_id=order.id,
                        status=OrderStatus.PROCESSING,
                        old_status=OrderStatus.PENDING,
                        notes=note,
                    )
                else:
                    self._note(order, note)

                if amount is not None and abs(Decimal(amount) - order.total_amount) > AMOUNT_TOLERANCE:
                    log.error(
                        "payment.amount_mismatch",
                        paid=str(amount),
                        expected=str(order.total_amount),
                    )
                    self._note(
                        order,
                        f"Warning: bKash reported {amount} but the order total is "
                        f"{order.total_amount}.",
                    )

                self._publish_on_commit(
                    self._event(payment_events.PaymentCompleted, order, trx_id=trx_id)
                )
        except StaleTransition as exc:
            self._log_stale(exc)
            return False

        log.info("payment.paid")
        return True

    def _settle_unpaid(
        self,
        order: Order,
        target: str,
        reason: str,
        expected: Iterable[str],
    ) -> bool:
        """Move to FAILED or CANCELLED and release the order's stock."""
        is_bkash = order.payment_method == PaymentMethod.BKASH
        try:
            with transaction.atomic():
                self._transition(order, expected, target)
                if is_bkash:
                    self._order_repo.update_payment_details(
                        order.id, failed_at=timezone.now(), failure_reason=reason
                    )
                self._inventory.release(self._stock_lines(order))
                if is_bkash:
                    label = "cancelled" if target == PaymentState.CANCELLED else "failed"
                    self._note(order, f"bKash payment {label}: {reason}")
                    event_class = (
                        payment_events.PaymentCancelled
                        if target == PaymentState.CANCELLED
                        else payment_events.PaymentFailed
                    )
                    self._publish_on_commit(
                        self._event(event_class, order, reason=reason)
                    )
        except StaleTransition as exc:
            self._log_stale(exc)
            return False

        logger.info(
            "payment.settled_unpaid",
            order_id=str(order.id),
            payment_state=target,
            reason=reason,
        )
        return True

    def _abandon_attempt(
        self,
        order: Order,
        attempt: int,
        previous_payment_id: str,
        result: GatewayFailure,
    ) -> None:
        """Undo a claimed initiation after the gateway did not create an intent.

        *order* is the snapshot taken before the claim: its state, attempt
        count and intent id are restored, and stock re-reserved for a
        retry is given back.  If the order moved on meanwhile (e.g. it was
        cancelled, which already released the stock) nothing is undone.
        """
        logger.warning(
            "payment.create_failed",
            order_id=str(order.id),
            attempt=attempt,
            reason=result.reason,
            unavailable=isinstance(result, GatewayUnavailable),
        )
        try:
            with transaction.atomic():
                self._transition(
                    order,
                    (PaymentState.INTENT_CREATED,),
                    order.payment_state,
                    expected_attempts=attempt,
                    payment_attempts=order.payment_attempts,
                )
                if order.payment_state in RELEASED_STATES:
                    self._inventory.release(self._stock_lines(order))
                self._order_repo.update_payment_details(
                    order.id,
                    payment_id=previous_payment_id,
                    create_response=result.raw,
                    failure_reason=result.reason,
                )
                self._note(order, "bKash payment initiation failed.")
        except StaleTransition as exc:
            self._log_stale(exc)

    def _flag_completed_after_settlement(self, order: Order, trx_id: str) -> None:
        # Money was taken for an order whose stock was already given back.
        logger.error(
            "payment.completed_after_settlement",
            order_id=str(order.id),
            payment_state=order.payment_state,
            trx_id=trx_id,
        )
        self._note(
            order,
            f"bKash reported a completed payment (TrxID: {trx_id}) after the "
            f"payment was {order.payment_state}. Manual refund required.",
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_order(self, order_id: UUID | str) -> Order:
        order = self._order_repo.get_by_id(str(order_id))
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found.")
        return order

    def _get_order_by_payment_id(self, payment_id: str) -> Order:
        order = self._order_repo.get_by_payment_id(payment_id)
        if order is None:
            logger.warning("payment.unknown_intent", payment_id=payment_id)
            raise PaymentNotFound(f"No order for payment {payment_id}.")
        return order

    def _transition(
        self,
        order: Order,
        expected: Iterable[str],
        new_state: str,
        expected_attempts: Optional[int] = None,
        **fields: object,
    ) -> None:
        expected = tuple(expected)
        disallowed = [
            state
            for state in expected
            if not is_payment_transition_allowed(state, new_state)
        ]
        if disallowed:
            raise InvalidPaymentTransition(
                f"Payment cannot move from {', '.join(disallowed)} to {new_state}."
            )
        if not self._order_repo.transition_payment_state(
            order.id, expected, new_state, expected_attempts=expected_attempts, **fields
        ):
            actual = self._order_repo.get_payment_state(order.id) or ""
            raise StaleTransition(str(order.id), expected, actual)

    @staticmethod
    def _log_stale(exc: StaleTransition) -> None:
        logger.info(
            "payment.stale_transition",
            order_id=exc.order_id,
            expected=list(exc.expected),
            actual=exc.actual,
        )

    @staticmethod
    def _stock_lines(order: Order) -> List[StockLine]:
        return [
            StockLine(product_id=item.product_id, quantity=item.quantity)
            for item in order.items.all()
        ]

    def _note(self, order: Order, notes: str, user_id: Optional[int] = None) -> None:
        """Payment event in the order's history (order status unchanged)."""
        self._order_repo.add_history(
            order_id=order.id,
            status=order.order_status,
            old_status=order.order_status,
            notes=notes,
            user_id=user_id,
        )

    @staticmethod
    def _event(event_class: type, order: Order, **extra: object) -> DomainEvent:
        details = _details(order)
        return event_class(
            aggregate_id=order.id,
            order_number=order.order_number,
            user_id=order.user_id,
            payment_id=details.payment_id if details else "",
            amount=order.total_amount,
            **extra,
        )

    def _publish_on_commit(self, event: DomainEvent) -> None:
        transaction.on_commit(partial(self._event_bus.publish, event))

    def _outcome_for(self, order: Order) -> CallbackOutcome:
        details = _details(order)
        if order.payment_state == PaymentState.PAID:
            return CallbackOutcome(
                order=order,
                status="success",
                message="Payment successful.",
                trx_id=details.trx_id if details else "",
                amount=details.amount if details else order.total_amount,
            )
        if order.payment_state == PaymentState.CANCELLED:
            return CallbackOutcome(
                order=order, status="cancel", message="Payment was cancelled."
            )
        return CallbackOutcome(
            order=order,
            status="failure",
            message="Payment failed. You can retry from your orders.",
        )
