"""Transactions over a database session."""

import logging
import threading
from enum import Enum
from typing import TYPE_CHECKING

from relmap.validation import TransactionStateError

if TYPE_CHECKING:
    from relmap.core.database import Database
    from relmap.core.mapping import ResultSet

logger = logging.getLogger(__name__)


class TransactionState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class Transaction:
    """Unit of work on a database session.

    A transaction holds the database's session lock from :meth:`begin` until
    it commits or rolls back, so its statements run strictly in order and no
    other statement interleaves with them. Any failing statement rolls the
    whole transaction back before the error propagates.

    Example:
        >>> with db.transaction() as tx:
        ...     user = tx.first(db.insert("users").values({"name": "Ada"}).returning())
        ...     tx.execute(db.insert("posts").values({"title": "Hi", "user_id": user.id}))
    """

    def __init__(self, database: "Database"):
        self.database = database
        self.state = TransactionState.IDLE
        self._owner: int | None = None

    def __repr__(self) -> str:
        return f"Transaction(state={self.state.value})"

    @property
    def active(self) -> bool:
        return self.state is TransactionState.ACTIVE

    def owned_by_current_thread(self) -> bool:
        return self.active and self._owner == threading.get_ident()

    def begin(self) -> "Transaction":
        """Acquire the session and start the transaction (idle -> active).

        Raises:
            TransactionStateError: If the transaction was already started, or
                another transaction is active on this thread
        """
        if self.state is not TransactionState.IDLE:
            raise TransactionStateError(f"Cannot begin a transaction that is {self.state.value}")

        db = self.database
        current = db._active
        if current is not None and current.owned_by_current_thread():
            raise TransactionStateError("Nested transactions are not supported; a transaction is already active")

        db._lock.acquire()
        try:
            db.adapter.begin()
        except db.adapter.error_types as e:
            db._lock.release()
            raise TransactionStateError(f"Failed to begin transaction: {e}") from e

        self._owner = threading.get_ident()
        self.state = TransactionState.ACTIVE
        db._active = self
        logger.debug("Transaction started")
        return self

    def _check_active(self, action: str) -> None:
        if self.state is not TransactionState.ACTIVE:
            raise TransactionStateError(f"Cannot {action}: transaction is {self.state.value}")
        if self._owner != threading.get_ident():
            raise TransactionStateError(f"Cannot {action}: transaction belongs to another thread")

    def _finish(self, state: TransactionState) -> None:
        self.state = state
        self.database._active = None
        self.database._lock.release()

    def commit(self) -> None:
        """Commit (active -> committed).

        If the commit itself fails the transaction is rolled back and the
        error is raised as :class:`ExecutionError`.
        """
        self._check_active("commit")
        try:
            self.database.adapter.commit()
        except self.database.adapter.error_types as e:
            self._abort()
            raise self.database._wrap_error(e) from e
        self._finish(TransactionState.COMMITTED)
        logger.debug("Transaction committed")

    def rollback(self) -> None:
        """Roll back (active -> rolled_back)."""
        self._check_active("roll back")
        try:
            self.database.adapter.rollback()
        finally:
            self._finish(TransactionState.ROLLED_BACK)
        logger.debug("Transaction rolled back")

    def _abort(self) -> None:
        if self.state is not TransactionState.ACTIVE:
            return
        try:
            self.database.adapter.rollback()
        except self.database.adapter.error_types:
            logger.exception("Rollback failed")
        finally:
            self._finish(TransactionState.ROLLED_BACK)

    def execute(self, query) -> "ResultSet":
        """Execute a statement inside this transaction.

        Raises:
            TransactionStateError: If the transaction is not active
            ExecutionError: If the backend rejects the statement (after rolling back)
        """
        self._check_active("execute")
        try:
            return self.database._execute(query)
        except Exception:
            logger.warning("Statement failed, rolling back transaction")
            self._abort()
            raise

    def all(self, query) -> list:
        return self.execute(query).records

    def first(self, query):
        return self.database.first(query, tx=self)

    def count(self, query) -> int:
        return self.database.count(query, tx=self)

    def upsert(self, entity, values, conflict_target, update_set=None):
        return self.database.upsert(entity, values, conflict_target, update_set=update_set, tx=self)

    def __enter__(self) -> "Transaction":
        return self.begin()

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            if self.active:
                logger.warning("Rolling back transaction after %s", exc_type.__name__)
                self._abort()
            return False
        if self.active:
            self.commit()
        return False
