"""Controller driver: watches requests and runs reconciliations on a bounded worker pool."""

import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor

from .config import ControllerConfig
from .errors import PKIControllerError
from .k8s_client import PodCertificateRequestClient
from .logging_config import LOGGER
from .models import PodCertificateRequestObject
from .reconciler import Reconciler

WATCH_RETRY_SECONDS = 5.0

ObjectKey = tuple[str, str]


def object_key(obj: PodCertificateRequestObject) -> ObjectKey:
    """Return (namespace, name) identifying an object."""
    metadata = obj.get("metadata", {})
    return metadata.get("namespace") or "", metadata.get("name") or metadata.get("uid") or ""


class Controller:
    """Schedules reconciliations for every known request.

    Each object is reconciled by at most one worker at a time; an update that
    arrives while it is running triggers one more pass afterwards. Success and
    failure requeue intervals come from the reconciler.
    """

    def __init__(
        self,
        reconciler: Reconciler,
        requests_client: PodCertificateRequestClient,
        config: ControllerConfig,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.reconciler = reconciler
        self.requests = requests_client
        self.config = config
        self._clock = clock
        self._executor = ThreadPoolExecutor(
            max_workers=config.concurrency, thread_name_prefix="reconcile"
        )
        self._cond = threading.Condition()
        self._stop = threading.Event()
        self._objects: dict[ObjectKey, PodCertificateRequestObject] = {}
        self._due: dict[ObjectKey, float] = {}
        self._running: set[ObjectKey] = set()
        self._dirty: set[ObjectKey] = set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def upsert(self, obj: PodCertificateRequestObject) -> None:
        """Record an added or modified object and schedule it immediately."""
        key = object_key(obj)
        with self._cond:
            self._objects[key] = obj
            if key in self._running:
                self._dirty.add(key)
            else:
                self._due[key] = self._clock()
            self._cond.notify_all()

    def remove(self, obj: PodCertificateRequestObject) -> None:
        """Forget a deleted object."""
        key = object_key(obj)
        with self._cond:
            self._objects.pop(key, None)
            self._due.pop(key, None)
            self._dirty.discard(key)

    def replace_all(self, objects: Iterable[PodCertificateRequestObject]) -> None:
        """Replace the cache after a relist, scheduling every object."""
        listed = {object_key(obj): obj for obj in objects}
        with self._cond:
            for key in set(self._objects) - set(listed):
                self._objects.pop(key, None)
                self._due.pop(key, None)
        for obj in listed.values():
            self.upsert(obj)

    def trigger_resync(self) -> None:
        """Schedule every known object for reconciliation now."""
        LOGGER.info("Forcing reconciliation of all objects")
        with self._cond:
            now = self._clock()
            for key in self._objects:
                if key in self._running:
                    self._dirty.add(key)
                else:
                    self._due[key] = now
            self._cond.notify_all()

    def watch_stdin(self, stream: Iterable[str]) -> None:
        """Trigger one resync per line read; returns at end of stream."""
        for _ in stream:
            if self.stopped:
                return
            self.trigger_resync()
        LOGGER.debug("Manual trigger input closed")

    def stop(self) -> None:
        """Stop scheduling; in-flight reconciliations are allowed to finish."""
        self._stop.set()
        with self._cond:
            self._cond.notify_all()

    def run(self, watch: bool = True) -> None:
        """Run the scheduler until stop() is called.

        Args:
            watch: Start the list/watch thread (disabled in tests that feed objects)
        """
        if watch:
            threading.Thread(target=self._watch_loop, name="watch", daemon=True).start()

        try:
            with self._cond:
                while not self._stop.is_set():
                    self._dispatch_due()
                    self._cond.wait(timeout=self._next_wakeup())
        finally:
            self._executor.shutdown(wait=True)
            LOGGER.info("controller terminated")

    def _dispatch_due(self) -> None:
        """Submit due objects while workers are free. Caller holds the lock."""
        now = self._clock()
        ready = sorted(
            (due, key)
            for key, due in self._due.items()
            if due <= now and key not in self._running
        )
        for _, key in ready:
            if len(self._running) >= self.config.concurrency:
                break
            obj = self._objects.get(key)
            del self._due[key]
            if obj is None:
                continue
            self._running.add(key)
            self._executor.submit(self._process, key, obj)

    def _next_wakeup(self) -> float | None:
        """Seconds until the next scheduled object, or None to wait for events."""
        pending = [due for key, due in self._due.items() if key not in self._running]
        if not pending:
            return None
        return max(0.0, min(pending) - self._clock())

    def _process(self, key: ObjectKey, obj: PodCertificateRequestObject) -> None:
        try:
            result = self.reconciler.reconcile(obj)
            delay = result.requeue_after.total_seconds()
            LOGGER.info("reconciled %s/%s", key[0], key[1])
        except PKIControllerError as e:
            delay = self.reconciler.error_policy(obj, e).total_seconds()
        except Exception as e:
            LOGGER.exception("Unexpected error reconciling %s/%s", key[0], key[1])
            delay = self.reconciler.error_policy(obj, e).total_seconds()

        with self._cond:
            self._running.discard(key)
            if key in self._objects:
                if key in self._dirty:
                    self._dirty.discard(key)
                    self._due[key] = self._clock()
                else:
                    self._due[key] = self._clock() + delay
            self._cond.notify_all()

    def _watch_loop(self) -> None:
        """List then watch requests, relisting after errors or watch timeouts."""
        while not self._stop.is_set():
            try:
                items, resource_version = self.requests.list_all()
                LOGGER.debug("Listed %d PodCertificateRequests", len(items))
                self.replace_all(items)
                for event_type, obj in self.requests.watch_all(resource_version):
                    if self._stop.is_set():
                        return
                    if event_type == "DELETED":
                        self.remove(obj)
                    elif event_type in ("ADDED", "MODIFIED"):
                        self.upsert(obj)
            except Exception as e:
                LOGGER.warning("Watch failed, relisting in %.0fs: %s", WATCH_RETRY_SECONDS, e)
                self._stop.wait(WATCH_RETRY_SECONDS)
