"""Domain events emitted by the booking and payment core.

Services publish events only after their unit of work has committed. The
dispatcher hands every event to the registered handlers on a worker pool, so a
failing e-mail or referral check never touches the transaction that produced
the event.
"""
from __future__ import annotations

import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Iterable

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DomainEvent:
    pass


@dataclass(frozen=True, slots=True)
class BookingConfirmed(DomainEvent):
    booking_id: int
    paid_with_credit: bool = False


@dataclass(frozen=True, slots=True)
class BundleActivated(DomainEvent):
    student_bundle_id: int
    paid_with_credit: bool = False


@dataclass(frozen=True, slots=True)
class PaymentSettled(DomainEvent):
    payment_id: int
    student_id: int


@dataclass(frozen=True, slots=True)
class BookingCompleted(DomainEvent):
    booking_id: int
    earnings: Decimal


@dataclass(frozen=True, slots=True)
class RescheduleRequested(DomainEvent):
    booking_id: int


@dataclass(frozen=True, slots=True)
class RescheduleProcessed(DomainEvent):
    booking_id: int
    approved: bool


@dataclass(frozen=True, slots=True)
class RefundApproved(DomainEvent):
    payment_id: int
    booking_id: int


@dataclass(frozen=True, slots=True)
class RefundRejected(DomainEvent):
    payment_id: int
    booking_id: int


@dataclass(frozen=True, slots=True)
class PayoutProcessed(DomainEvent):
    payout_request_id: int
    approved: bool


@dataclass(frozen=True, slots=True)
class ReferralRewarded(DomainEvent):
    referral_id: int
    referrer_id: int
    amount: Decimal


Handler = Callable[[DomainEvent], None]


class EventDispatcher:
    """Fan events out to handlers without letting their failures escape.

    With ``executor=None`` handlers run inline, which is what tests use.
    """

    def __init__(self, executor: Executor | None = None) -> None:
        self._executor = executor
        self._handlers: list[Handler] = []

    def subscribe(self, handler: Handler) -> None:
        self._handlers.append(handler)

    def _run(self, handler: Handler, event: DomainEvent) -> None:
        try:
            handler(event)
        except Exception:
            logger.exception(
                "Event handler failed",
                extra={"event": type(event).__name__, "handler": getattr(handler, "__name__", repr(handler))},
            )

    def dispatch(self, event: DomainEvent) -> None:
        for handler in self._handlers:
            if self._executor is None:
                self._run(handler, event)
            else:
                self._executor.submit(self._run, handler, event)

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)


_dispatcher: EventDispatcher | None = None


def get_dispatcher() -> EventDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = EventDispatcher(ThreadPoolExecutor(max_workers=4, thread_name_prefix="events"))
    return _dispatcher


def set_dispatcher(dispatcher: EventDispatcher | None) -> None:
    global _dispatcher
    _dispatcher = dispatcher


def publish(events: Iterable[DomainEvent]) -> None:
    """Dispatch events from a unit of work that has already committed."""
    dispatcher = get_dispatcher()
    for event in events:
        logger.info("Publishing %s", type(event).__name__, extra={"event": repr(event)})
        dispatcher.dispatch(event)


__all__ = [
    "DomainEvent",
    "BookingConfirmed",
    "BundleActivated",
    "PaymentSettled",
    "BookingCompleted",
    "RescheduleRequested",
    "RescheduleProcessed",
    "RefundApproved",
    "RefundRejected",
    "PayoutProcessed",
    "ReferralRewarded",
    "EventDispatcher",
    "get_dispatcher",
    "set_dispatcher",
    "publish",
]
