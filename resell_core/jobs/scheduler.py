"""Reconciler Scheduler.

APScheduler-based background scheduler running the periodic sweeps:
earning maturation, tracking sync, unpaid-order expiry and stale-cart
cleanup. Every job runs with max_instances=1 so a slow run is never
overlapped by the next tick of the same job.
"""

import logging
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlmodel import Session

from resell_core.config import settings
from resell_core.jobs.cart_cleanup import cleanup_carts
from resell_core.jobs.earning_maturation import mature_earnings
from resell_core.jobs.order_expiry import expire_unpaid_orders
from resell_core.jobs.tracking_sync import sync_tracking

logger = logging.getLogger(__name__)


class ReconcilerScheduler:
    """Runs each sweep on its own interval in a background thread."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        provider=None,
        notifier=None,
        enabled: Optional[bool] = None,
    ):
        self.session_factory = session_factory
        self.provider = provider
        self.notifier = notifier
        self.enabled = settings.scheduler_enabled if enabled is None else enabled

        self._scheduler: Optional[BackgroundScheduler] = None
        self._is_running = False

    def build(self) -> BackgroundScheduler:
        scheduler = BackgroundScheduler(timezone="UTC")
        defaults = {"replace_existing": True, "max_instances": 1, "coalesce": True}

        scheduler.add_job(
            self.run_earning_maturation,
            IntervalTrigger(minutes=settings.earning_maturation_interval_minutes),
            id="earning_maturation",
            name="Reseller Earning Maturation",
            **defaults,
        )

        if self.provider is not None:
            scheduler.add_job(
                self.run_tracking_sync,
                IntervalTrigger(minutes=settings.tracking_sync_interval_minutes),
                id="tracking_sync",
                name="Shipment Tracking Sync",
                **defaults,
            )
        else:
            logger.warning("No shipment provider configured, tracking sync disabled")

        scheduler.add_job(
            self.run_order_expiry,
            IntervalTrigger(minutes=settings.unpaid_expiry_interval_minutes),
            id="unpaid_order_expiry",
            name="Unpaid Order Expiry",
            **defaults,
        )

        scheduler.add_job(
            self.run_cart_cleanup,
            IntervalTrigger(hours=settings.cart_cleanup_interval_hours),
            id="stale_cart_cleanup",
            name="Stale Cart Cleanup",
            **defaults,
        )
        return scheduler

    def start(self) -> None:
        """Start the scheduler."""
        if not self.enabled:
            logger.info("ReconcilerScheduler is disabled, skipping start")
            return

        if self._is_running:
            logger.warning("ReconcilerScheduler already running")
            return

        self._scheduler = self.build()
        self._scheduler.start()
        self._is_running = True
        logger.info(f"ReconcilerScheduler started with jobs {[job.id for job in self._scheduler.get_jobs()]}")

    def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if self._scheduler and self._is_running:
            self._scheduler.shutdown(wait=True)
            self._is_running = False
            logger.info("ReconcilerScheduler stopped")

    # -------------------------
    # JOBS
    # -------------------------

    def run_earning_maturation(self) -> Optional[dict]:
        logger.info("Starting earning maturation job")
        try:
            with self.session_factory() as session:
                return mature_earnings(session, notifier=self.notifier)
        except Exception as e:
            logger.error(f"Error in earning maturation job: {e}", exc_info=True)
            return None

    def run_tracking_sync(self) -> Optional[dict]:
        logger.info("Starting tracking sync job")
        try:
            with self.session_factory() as session:
                return sync_tracking(session, self.provider, notifier=self.notifier)
        except Exception as e:
            logger.error(f"Error in tracking sync job: {e}", exc_info=True)
            return None

    def run_order_expiry(self) -> Optional[dict]:
        logger.info("Starting unpaid order expiry job")
        try:
            with self.session_factory() as session:
                return expire_unpaid_orders(session, notifier=self.notifier)
        except Exception as e:
            logger.error(f"Error in unpaid order expiry job: {e}", exc_info=True)
            return None

    def run_cart_cleanup(self) -> Optional[dict]:
        logger.info("Starting stale cart cleanup job")
        try:
            with self.session_factory() as session:
                return cleanup_carts(session)
        except Exception as e:
            logger.error(f"Error in stale cart cleanup job: {e}", exc_info=True)
            return None
