# --- bidroom_closer.py ---
import logging
import threading

logger = logging.getLogger(__name__)

DEFAULT_TICK_SECONDS = 1.0


class AuctionCloser:
    """Runs AuctionEngine.close_expired on a fixed cadence in a daemon thread."""

    def __init__(self, engine, tick_seconds=DEFAULT_TICK_SECONDS):
        self.engine = engine
        self.tick_seconds = tick_seconds
        self.stop_event = threading.Event()
        self._thread = None

    @property
    def running(self):
        return self._thread is not None and self._thread.is_alive()

    def tick(self):
        try:
            closed_ids = self.engine.close_expired()
        except Exception:
            # A bad tick must not kill the closer; the next one retries
            logger.exception("Closer tick failed")
            return []
        if closed_ids:
            logger.info("Closer closed %d item(s): %s", len(closed_ids), ", ".join(closed_ids))
        return closed_ids

    def _run(self):
        logger.debug("Closer started (every %.2fs)", self.tick_seconds)
        while not self.stop_event.wait(self.tick_seconds):
            self.tick()
        logger.debug("Closer stopped")

    def start(self):
        if self.running:
            return
        self.stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="bidroom-closer", daemon=True)
        self._thread.start()

    def stop(self, timeout=None):
        self.stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
        self._thread = None
