import signal
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import timedelta
from typing import Callable, List, Optional

from loguru import logger

from .config import Settings
from .db import connect_db
from .errors import StoreError
from .handlers import HandlerContext, dispatch
from .mailer import Mailer
from .models import Job
from .repository import claim, find_due, release_stale_locks
from .utils import utc_now


class Scheduler:
    """
    Polls the job store every `poll_interval_seconds`, claims due jobs and runs
    their handlers on a pool of at most `max_concurrency` threads.

    A semaphore guards submission, so a tick that finds more work than free
    slots waits for running sends instead of queueing without bound.
    """

    def __init__(
        self,
        db_path: str,
        mailer: Mailer,
        settings: Settings = Settings(),
        clock: Callable = utc_now,
    ):
        settings.validate()
        self.db_path = db_path
        self.mailer = mailer
        self.settings = settings
        self.clock = clock
        self._stop = threading.Event()
        self._slots = threading.BoundedSemaphore(settings.max_concurrency)
        self._pool = ThreadPoolExecutor(
            max_workers=settings.max_concurrency, thread_name_prefix="birthday-send"
        )
        self._thread: Optional[threading.Thread] = None

    # ---------- one polling cycle ----------
    def tick(self) -> List[Future]:
        """Claim what is due now and dispatch it. Returns futures for the dispatched jobs."""
        now = self.clock()
        conn = connect_db(self.db_path)
        try:
            released = release_stale_locks(
                conn, now - timedelta(seconds=self.settings.lock_timeout_seconds)
            )
            if released:
                logger.warning(f"Released {released} stale lock(s)")
            due = find_due(conn, now, self.settings.max_concurrency)
            claimed = []
            for job in due:
                if claim(conn, job.id, now):
                    claimed.append(job)
                else:
                    logger.debug(f"Job {job.id} already claimed elsewhere; skipping")
        except StoreError as e:
            logger.error(f"Tick abandoned: {e}")
            return []
        finally:
            conn.close()

        if due:
            logger.info(f"Tick at {now.isoformat()}: {len(due)} due, {len(claimed)} claimed")
        futures = []
        for job in claimed:
            self._slots.acquire()
            try:
                futures.append(self._pool.submit(self._execute, job))
            except RuntimeError:
                # pool already shut down; leave the lock for expiry
                self._slots.release()
                logger.warning(f"Scheduler stopping; job {job.id} left for lock expiry")
                break
        return futures

    def _execute(self, job: Job) -> Optional[str]:
        try:
            conn = connect_db(self.db_path)
            try:
                ctx = HandlerContext(conn=conn, mailer=self.mailer, settings=self.settings, now=self.clock())
                return dispatch(ctx, job)
            finally:
                conn.close()
        except StoreError as e:
            logger.error(f"Job {job.id} ({job.correlation_key}) stays locked: {e}")
        except Exception:
            logger.exception(f"Unexpected error while running job {job.id}")
        finally:
            self._slots.release()
        return None

    # ---------- lifecycle ----------
    def run_forever(self):
        logger.info(
            f"Scheduler running: interval={self.settings.poll_interval_seconds}s "
            f"concurrency={self.settings.max_concurrency}"
        )
        while not self._stop.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("Unexpected error in scheduler tick")
            self._stop.wait(self.settings.poll_interval_seconds)
        logger.info("Scheduler loop exited")

    def start(self) -> threading.Thread:
        if self._thread and self._thread.is_alive():
            return self._thread
        self._stop.clear()
        self._thread = threading.Thread(target=self.run_forever, name="scheduler", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, wait: bool = True):
        """Stop polling; with wait=True, in-flight sends finish before returning."""
        self._stop.set()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join()
        self._pool.shutdown(wait=wait)
        logger.info("Scheduler stopped")

    def setup_signal_handlers(self):
        def _handler(signum, frame):
            logger.info(f"Received signal {signum}. Stopping scheduler")
            self._stop.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                signal.signal(sig, _handler)
            except ValueError:
                # not in the main thread
                pass
