"""
Expiry Monitor Daemon: sell items whose nomination countdown has run out.
"""

import logging
import threading
import time
from typing import List, Optional

from auction.bidding import BidProcessor
from auction.store import TransientStoreError

logger = logging.getLogger(__name__)


class ExpiryMonitor:
    """
    Background daemon that finalizes expired NOMINATED items.

    Each sweep goes through BidProcessor.finalize_expired(), so it uses the
    same per-item unit of work as bids and retractions and never sells an
    item that was re-bid after the scan.
    """

    def __init__(self, processor: BidProcessor, check_interval: Optional[float] = None):
        """
        Initialize expiry monitor.

        Args:
            processor: Processor used to finalize items
            check_interval: Seconds between sweeps (engine config if None)
        """
        self.processor = processor
        if check_interval is None:
            check_interval = processor.config.expiry_check_interval
        self.check_interval = check_interval

        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._wakeup = threading.Event()

    def start(self):
        """Start the monitoring daemon in a background thread."""
        if self._running:
            logger.info("[EXPIRY_MONITOR] Already running")
            return

        self._running = True
        self._wakeup.clear()
        self._thread = threading.Thread(target=self._monitoring_loop, daemon=True)
        self._thread.start()
        logger.info(f"[EXPIRY_MONITOR] Started (checking every {self.check_interval}s)")

    def stop(self):
        """Stop the monitoring daemon and wait for the thread to finish."""
        if not self._running:
            return

        self._running = False
        self._wakeup.set()
        if self._thread:
            self._thread.join(timeout=5.0)
            self._thread = None
        logger.info("[EXPIRY_MONITOR] Stopped")

    @property
    def running(self) -> bool:
        return self._running

    def _monitoring_loop(self):
        while self._running:
            try:
                self.sweep()
            except TransientStoreError as e:
                logger.warning(f"[EXPIRY_MONITOR] Store busy, retrying next cycle: {e}")
            except Exception:
                logger.exception("[EXPIRY_MONITOR] Sweep failed, retrying next cycle")

            # Event wait so stop() does not have to sit out a whole interval
            self._wakeup.wait(self.check_interval)

    def sweep(self) -> List[str]:
        """
        Finalize every expired item once.

        Returns:
            Ids of the items sold in this sweep
        """
        started = time.time()
        sold = self.processor.finalize_expired()
        if sold:
            logger.info(
                f"[EXPIRY_MONITOR] Sold {len(sold)} expired items "
                f"in {time.time() - started:.3f}s"
            )
        return sold
