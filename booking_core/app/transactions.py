"""
Transaction context threaded through the booking and slot workflows.

With a transactional backend every write step only flushes and the whole
unit commits once at the end. Without one (sequential mode) every step
commits on its own, so a failure can leave earlier steps applied; those
failures are logged separately from transactional rollbacks.

Side effects that must not run before the data is durable (cache
invalidation, events, notifications) are queued with `after_commit`.
"""

import logging
from typing import Callable, Optional, TypeVar

from sqlalchemy.orm import Session

from .errors import EngineError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TransactionContext:
    def __init__(self, db: Session, transactional: bool):
        self.db = db
        self.transactional = transactional
        self._after_commit: list[Callable[[], None]] = []

    def step(self) -> None:
        """Finish one write step: flush inside a transaction, commit otherwise."""
        if self.transactional:
            self.db.flush()
        else:
            self.db.commit()

    def after_commit(self, callback: Callable[[], None]) -> None:
        self._after_commit.append(callback)

    def run_after_commit(self) -> None:
        callbacks, self._after_commit = self._after_commit, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("after-commit callback failed")


def finish_write(db: Session, txn: Optional[TransactionContext]) -> None:
    """Commit a standalone write, or hand the step to the surrounding context."""
    if txn is None:
        db.commit()
    else:
        txn.step()


def defer(txn: Optional[TransactionContext], callback: Callable[[], None]) -> None:
    """Run `callback` now for standalone writes, after commit otherwise."""
    if txn is None:
        callback()
    else:
        txn.after_commit(callback)


class TransactionRunner:
    """Runs a workflow against a session in transactional or sequential mode."""

    def __init__(self, transactional: bool):
        self.transactional = transactional

    def run(
        self,
        db: Session,
        work: Callable[[TransactionContext], T],
        label: str,
    ) -> T:
        txn = TransactionContext(db, self.transactional)
        try:
            result = work(txn)
            db.commit()
        except EngineError:
            db.rollback()
            raise
        except Exception:
            db.rollback()
            if self.transactional:
                logger.error(f"Transaction rolled back: {label}")
            else:
                logger.exception(
                    f"Sequential (non-transactional) {label} failed; "
                    f"earlier steps may already be committed"
                )
            raise

        txn.run_after_commit()
        return result
