"""Run one synchronization pass against every configured store."""

import logging
import threading
from pathlib import Path
from typing import Callable, Optional

from ..output import OutputFormatter
from ..remote.base import RemoteStore
from ..utils import DEFAULT_CONCURRENCY, DEFAULT_RETRY_ATTEMPTS, DEFAULT_RETRY_DELAY
from .engine import SyncEngine, SyncResult
from .patterns import FilterSet
from .scanner import DirectoryScanner
from .state import HashCache

logger = logging.getLogger(__name__)


class SyncManager:
    """Scans the local tree once per pass and fans out to each store.

    Stores are processed one after another in insertion order; every store
    gets its own engine so per-store results stay separate.
    """

    def __init__(
        self,
        stores: dict[str, RemoteStore],
        output: Optional[OutputFormatter] = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        retry_attempts: int = DEFAULT_RETRY_ATTEMPTS,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        hash_cache: Optional[HashCache] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """Initialize sync manager.

        Args:
            stores: Mapping of provider name to store
            output: Output formatter shared by all engines
            concurrency: Worker count for each engine
            retry_attempts: Retries for transient errors
            retry_delay: Base backoff delay in seconds
            hash_cache: Optional content hash cache reused across passes
            logger: Logger (defaults to the module logger)
        """
        self.stores = dict(stores)
        self.output = output or OutputFormatter(quiet=True)
        self.concurrency = concurrency
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.hash_cache = hash_cache
        self.logger = logger or logging.getLogger(__name__)

    def engine_for(self, store: RemoteStore) -> SyncEngine:
        """Create the engine used for one store."""
        return SyncEngine(
            store,
            output=self.output,
            concurrency=self.concurrency,
            retry_attempts=self.retry_attempts,
            retry_delay=self.retry_delay,
            logger=self.logger,
        )

    def sync_all(
        self,
        root: Path,
        filters: Optional[FilterSet] = None,
        dry_run: bool = False,
        cancel_event: Optional[threading.Event] = None,
        progress_callback: Optional[Callable[[str, int, int], None]] = None,
    ) -> dict[str, SyncResult]:
        """Synchronize root to every store.

        Args:
            root: Local directory to synchronize
            filters: Ignore/include patterns
            dry_run: If True, only report what would be done
            cancel_event: Event that stops the pass
            progress_callback: Called with (store name, completed, total)

        Returns:
            Results keyed by store name

        Raises:
            ScanError: If the local directory cannot be scanned
        """
        scanner = DirectoryScanner(
            filters, hash_cache=self.hash_cache, logger=self.logger
        )
        inventory = scanner.scan(root)
        self.logger.info(
            f"Scanned {root}: {len(inventory)} entries, {len(self.stores)} store(s)"
        )

        results: dict[str, SyncResult] = {}
        for name, store in self.stores.items():
            if cancel_event is not None and cancel_event.is_set():
                self.logger.info(f"Pass cancelled before syncing {name}")
                break

            callback = None
            if progress_callback is not None:
                callback = _bind_store(progress_callback, name)

            try:
                results[name] = self.engine_for(store).sync_inventory(
                    inventory,
                    dry_run=dry_run,
                    cancel_event=cancel_event,
                    progress_callback=callback,
                )
            except Exception as e:
                self.logger.error(f"Sync to {name} failed: {e}")
                result = SyncResult(store=name, dry_run=dry_run)
                result.add_failure("", e)
                results[name] = result

        if self.hash_cache is not None and not dry_run:
            try:
                self.hash_cache.save()
            except OSError as e:
                self.logger.warning(f"Could not save hash cache: {e}")
        return results


def _bind_store(
    callback: Callable[[str, int, int], None], name: str
) -> Callable[[int, int], None]:
    def progress(done: int, total: int) -> None:
        callback(name, done, total)

    return progress
