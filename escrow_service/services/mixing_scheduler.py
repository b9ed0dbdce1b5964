"""
Deferred completion of fee transactions.

Each routed fee gets one one-shot ``date`` job on a process-wide APScheduler
``BackgroundScheduler``. Pending jobs are entries in the scheduler's job
store; only the scheduler's small worker pool runs them, so the number of
threads does not grow with the number of routed fees.

When a job fires, the fee transaction is re-read and completed only if it
is still ``pending``; the store write is itself conditional on that status.
This re-check is what makes a second firing for the same transaction a
no-op.

Jobs are fire-and-forget. A failure inside the deferred run is logged and
the transaction stays ``pending`` until ``recover_pending`` (run at startup
and on every manual cycle) picks it up again from its persisted ``due_at``.
"""

import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler

from ..database.stores import WalletStore
from ..models import FEE_PENDING, utcnow
from ..utils.addresses import generate_destination_address
from ..utils.production_logger import LoggerFactory

COMPLETION_WORKERS = 4

_background_scheduler: Optional[BackgroundScheduler] = None
_background_lock = threading.Lock()


def get_background_scheduler() -> BackgroundScheduler:
    """Process-wide scheduler for completion jobs, started on first use."""
    global _background_scheduler

    if _background_scheduler is None:
        with _background_lock:
            if _background_scheduler is None:
                scheduler = BackgroundScheduler(
                    jobstores={'default': MemoryJobStore()},
                    executors={'default': ThreadPoolExecutor(COMPLETION_WORKERS)},
                    job_defaults={
                        'coalesce': True,
                        'max_instances': 1,
                        # a late completion still runs; the status re-check guards it
                        'misfire_grace_time': None,
                    },
                    timezone='UTC',
                    daemon=True,
                )
                scheduler.start()
                _background_scheduler = scheduler

    return _background_scheduler


def shutdown_background_scheduler(wait: bool = False):
    global _background_scheduler

    with _background_lock:
        if _background_scheduler is not None:
            _background_scheduler.shutdown(wait=wait)
        _background_scheduler = None


def schedule_completion_job(delay_seconds: float, callback: Callable[[str], None], fee_transaction_id: str):
    """Add a one-shot job running ``callback(fee_transaction_id)`` after ``delay_seconds``."""
    return get_background_scheduler().add_job(
        callback,
        trigger='date',
        run_date=utcnow() + timedelta(seconds=delay_seconds),
        args=[fee_transaction_id],
        id=f"mixing:{fee_transaction_id}",
        name="Complete fee transaction",
        replace_existing=True,
    )


class MixingScheduler:

    def __init__(self, store: WalletStore, timer_factory=schedule_completion_job):
        self.store = store
        self.timer_factory = timer_factory
        self.logger = LoggerFactory.get_routing_logger()

    def schedule(self, fee_transaction_id: str, delay_seconds: float):
        """Arrange one deferred completion attempt."""
        self.logger.debug("Mixing scheduled", fee_transaction_id=fee_transaction_id,
                          delay_seconds=delay_seconds)
        return self.timer_factory(max(delay_seconds, 0), self._fire, fee_transaction_id)

    def _fire(self, fee_transaction_id: str):
        try:
            self.execute_mixing(fee_transaction_id)
        except Exception:
            self.logger.exception("Mixing process failed", fee_transaction_id=fee_transaction_id)

    def execute_mixing(self, fee_transaction_id: str) -> bool:
        """Complete the fee transaction if it is still pending.

        Returns True when this call performed the transition.
        """
        fee_transaction = self.store.get_fee_transaction(fee_transaction_id)
        if fee_transaction is None:
            self.logger.warning("Mixing fired for unknown fee transaction",
                                fee_transaction_id=fee_transaction_id)
            return False
        if fee_transaction.status != FEE_PENDING:
            self.logger.debug("Mixing skipped", fee_transaction_id=fee_transaction_id,
                              status=fee_transaction.status)
            return False

        completed = self.store.complete_fee_transaction(
            fee_transaction_id, generate_destination_address(), utcnow()
        )
        if completed:
            self.logger.log_mixing_completed(fee_transaction_id, fee_transaction.amount)
        return completed

    def recover_pending(self, now: Optional[datetime] = None, reschedule: bool = True) -> int:
        """Complete overdue pending transactions; re-arm timers for the rest.

        Returns the number of transactions completed by this sweep.
        """
        now = now or utcnow()
        completed = 0
        rescheduled = 0

        for fee_transaction in self.store.list_fee_transactions(statuses=[FEE_PENDING]):
            if fee_transaction.is_due(now):
                try:
                    if self.execute_mixing(fee_transaction.id):
                        completed += 1
                except Exception:
                    self.logger.exception("Recovery of fee transaction failed",
                                          fee_transaction_id=fee_transaction.id)
            elif reschedule:
                self.schedule(fee_transaction.id, (fee_transaction.due_at - now).total_seconds())
                rescheduled += 1

        if completed or rescheduled:
            self.logger.info("Pending fee transactions recovered",
                             completed=completed, rescheduled=rescheduled)
        return completed
