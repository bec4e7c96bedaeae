"""
Order Store: whole-document persistence for orders with optimistic
transactions.

Every order is one `orders` row holding the JSON document and a `version`
counter. `run_transaction(fn)` hands `fn` a Transaction to read and stage
writes; on commit each staged write is an UPDATE conditional on the version
that was read. If another writer got there first the whole `fn` is re-run
against fresh data, up to `max_attempts` times, then ConflictError is raised.
"""

import logging
import time
from typing import Callable, Dict, Iterable, List, Optional, TypeVar

from sqlalchemy import update
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from .database import SessionLocal, DB_TIMEOUT_SECONDS, ORDER_TX_MAX_ATTEMPTS
from .errors import ConflictError, NotFoundError, StoreTimeoutError
from .models import OrderRecord, OrderVendor
from .schemas import Order

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TIMEOUT_MARKERS = ("timeout", "timed out", "locked", "canceling statement")


class _StaleWrite(Exception):
    """A conditional write matched no row: the document changed since read."""


def _is_timeout(exc: OperationalError) -> bool:
    message = str(exc.orig if exc.orig is not None else exc).lower()
    return any(marker in message for marker in _TIMEOUT_MARKERS)


def _to_document(order: Order) -> dict:
    return order.model_dump(mode="json")


def _from_record(record: OrderRecord) -> Order:
    return Order.model_validate(record.document)


class Transaction:
    """Read/write view of the store inside one attempt of run_transaction."""

    def __init__(self, session: Session):
        self._session = session
        self._read_versions: Dict[str, int] = {}
        self._writes: Dict[str, Order] = {}

    def get(self, order_id: str) -> Order:
        record = self._session.get(OrderRecord, order_id, populate_existing=True)
        if record is None:
            raise NotFoundError("Order not found.", order_id=order_id)
        self._read_versions[order_id] = record.version
        return _from_record(record)

    def update(self, order: Order) -> None:
        if order.order_id not in self._read_versions:
            raise RuntimeError(f"order {order.order_id} must be read before it is written")
        self._writes[order.order_id] = order

    def commit(self) -> None:
        for order_id, order in self._writes.items():
            read_version = self._read_versions[order_id]
            result = self._session.execute(
                update(OrderRecord)
                .where(OrderRecord.order_id == order_id, OrderRecord.version == read_version)
                .values(
                    document=_to_document(order),
                    overall_status=order.overall_status.value,
                    version=read_version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise _StaleWrite(order_id)
        self._session.commit()


class OrderStore:

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        max_attempts: int = ORDER_TX_MAX_ATTEMPTS,
        timeout: float = DB_TIMEOUT_SECONDS,
    ):
        self._session_factory = session_factory
        self.max_attempts = max_attempts
        self.timeout = timeout

    def _new_transaction(self, session: Session) -> Transaction:
        return Transaction(session)

    def run_transaction(self, fn: Callable[[Transaction], T], timeout: Optional[float] = None) -> T:
        budget = self.timeout if timeout is None else timeout
        deadline = time.monotonic() + budget

        for attempt in range(1, self.max_attempts + 1):
            if time.monotonic() > deadline:
                raise StoreTimeoutError(f"Order transaction exceeded {budget}s.", attempts=attempt - 1)
            session = self._session_factory()
            try:
                tx = self._new_transaction(session)
                result = fn(tx)
                tx.commit()
                return result
            except _StaleWrite as e:
                session.rollback()
                logger.warning(f"Write conflict on order {e} (attempt {attempt}/{self.max_attempts}), retrying")
            except PoolTimeoutError as e:
                session.rollback()
                raise StoreTimeoutError("Order store connection timed out.") from e
            except OperationalError as e:
                session.rollback()
                if _is_timeout(e):
                    raise StoreTimeoutError("Order store did not respond in time.") from e
                logger.error(f"Order transaction failed: {e}")
                raise
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

        raise ConflictError(
            f"Order was modified concurrently; gave up after {self.max_attempts} attempts.",
            attempts=self.max_attempts,
        )

    def get_order(self, order_id: str) -> Order:
        with self._session() as session:
            record = session.get(OrderRecord, order_id)
            if record is None:
                raise NotFoundError("Order not found.", order_id=order_id)
            return _from_record(record)

    def query_orders(self, vendor_id: str, overall_statuses: Optional[Iterable[str]] = None) -> List[Order]:
        """Orders in which `vendor_id` holds a portion, optionally filtered by aggregate status."""
        with self._session() as session:
            query = (
                session.query(OrderRecord)
                .join(OrderVendor, OrderVendor.order_id == OrderRecord.order_id)
                .filter(OrderVendor.vendor_id == vendor_id)
            )
            if overall_statuses is not None:
                statuses = [getattr(s, "value", s) for s in overall_statuses]
                query = query.filter(OrderRecord.overall_status.in_(statuses))
            return [_from_record(r) for r in query.all()]

    def create_order(self, order: Order) -> Order:
        """Insert a new order document. Orders are normally placed by the ordering system."""
        with self._session() as session:
            record = OrderRecord(
                order_id=order.order_id,
                overall_status=order.overall_status.value,
                created_at=order.created_at,
                version=1,
                document=_to_document(order),
                vendors=[OrderVendor(vendor_id=v) for v in order.vendor_ids],
            )
            session.add(record)
            session.commit()
        logger.info(f"Created order {order.order_id} for vendors {order.vendor_ids}")
        return order

    def get_version(self, order_id: str) -> int:
        with self._session() as session:
            record = session.get(OrderRecord, order_id)
            if record is None:
                raise NotFoundError("Order not found.", order_id=order_id)
            return record.version

    def _session(self):
        return _StoreSession(self._session_factory)


class _StoreSession:
    """Session context that turns driver timeouts into StoreTimeoutError."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory
        self._session: Optional[Session] = None

    def __enter__(self) -> Session:
        self._session = self._session_factory()
        return self._session

    def __exit__(self, exc_type, exc, tb):
        try:
            if exc is not None:
                self._session.rollback()
        finally:
            self._session.close()
        if isinstance(exc, PoolTimeoutError):
            raise StoreTimeoutError("Order store connection timed out.") from exc
        if isinstance(exc, OperationalError) and _is_timeout(exc):
            raise StoreTimeoutError("Order store did not respond in time.") from exc
        return False
