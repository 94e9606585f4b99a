import time
import logging
from typing import Dict, Any, Optional

from config import settings
from core.errors import ReconciliationError, DuplicateReconciliationError
from core.models import ReconciliationStatus
from core.reconciliation import ReconciliationController
from data import database
from utils.helpers import setup_main_logging

logger = logging.getLogger("ReconciliationService")


class ReconciliationService:
    """Periodically reconciles every closed shift that has no calculated reconciliation yet."""

    def __init__(self, controller: Optional[ReconciliationController] = None,
                 interval_seconds: Optional[int] = None):
        self.interval = interval_seconds or settings.RECONCILIATION_INTERVAL_SECONDS
        if controller is None:
            controller = ReconciliationController(
                database.SqlShiftDataSource(database.SessionLocal),
                database.SqlReconciliationRepository(database.SessionLocal),
            )
        self.controller = controller
        logger.info(f"Reconciliation Service initialized. Run interval: {self.interval} seconds.")

    def pending_shift_ids(self):
        """Closed shifts with no reconciliation, or one still PENDING."""
        pending = []
        for shift_id in self.controller.data_source.list_closed_shift_ids():
            existing = self.controller.repository.get_by_shift(shift_id)
            if existing is None or existing.status is ReconciliationStatus.PENDING:
                pending.append(shift_id)
        return pending

    def run_cycle(self) -> Dict[str, Any]:
        logger.info("--- Starting new reconciliation cycle ---")
        summary: Dict[str, Any] = {"calculated": [], "failed": {}}

        shift_ids = self.pending_shift_ids()
        logger.info(f"Found {len(shift_ids)} closed shifts awaiting reconciliation.")

        for shift_id in shift_ids:
            try:
                record = self.controller.calculate_reconciliation(shift_id, recorded_by="ReconciliationService")
                summary["calculated"].append(record.reconciliation_id)
            except DuplicateReconciliationError:
                # Calculated by another worker since pending_shift_ids() ran
                logger.info(f"Shift {shift_id} was reconciled concurrently. Skipping.")
            except ReconciliationError as e:
                logger.warning(f"Shift {shift_id} not reconciled: {type(e).__name__}: {e.message}")
                summary["failed"][shift_id] = e.to_dict()
            except Exception as e:
                logger.error(f"[FATAL] Failed to reconcile shift {shift_id}: {e}", exc_info=True)
                summary["failed"][shift_id] = {"error": type(e).__name__, "message": str(e)}

        logger.info(f"--- Reconciliation cycle finished: {len(summary['calculated'])} calculated, "
                    f"{len(summary['failed'])} failed ---")
        return summary

    def start(self):
        logger.info("Reconciliation Service is starting...")
        while True:
            try:
                self.run_cycle()
            except Exception as e:
                logger.critical(f"Unhandled exception in main service loop: {e}", exc_info=True)
            logger.info(f"Sleeping for {self.interval} seconds...")
            time.sleep(self.interval)


def main():
    setup_main_logging()
    service = ReconciliationService()
    service.start()


if __name__ == "__main__":
    main()
