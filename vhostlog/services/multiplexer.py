import logging
import time
from datetime import datetime
from typing import Callable, Optional

from vhostlog.core.config import Settings
from vhostlog.services.accounting import TrafficAccountant, TrafficStore
from vhostlog.services.field_extractor import extract_bytes
from vhostlog.services.handle_cache import HandleCache
from vhostlog.services.registry import VhostRegistry
from vhostlog.services.router import LineRouter, allow_list, directory_exists
from vhostlog.services.vhost_stream import RotationPolicy, WriteResult

logger = logging.getLogger(__name__)


class LogMultiplexer:
    """Routes, rotates, writes and accounts one access log line at a time.

    Only the thread running ``process_line`` touches the handle cache.
    Signal handlers call ``request_maintenance`` or ``request_stop``, which
    merely set flags honoured between two lines.
    """

    def __init__(
        self,
        router: LineRouter,
        registry: VhostRegistry,
        cache: HandleCache,
        accountant: TrafficAccountant,
        log_format: Optional[str] = None,
    ):
        self.router = router
        self.registry = registry
        self.cache = cache
        self.accountant = accountant
        self.log_format = log_format
        self.lines = 0
        self.failures = 0
        self._maintenance_requested = False
        self.stop_requested = False
        self.busy = False
        self.closing = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: Optional[TrafficStore] = None,
        clock: Callable[[], datetime] = datetime.now,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> "LogMultiplexer":
        is_known_host = None
        if settings.KNOWN_ONLY:
            if settings.KNOWN_HOSTS:
                is_known_host = allow_list(settings.KNOWN_HOSTS)
            else:
                is_known_host = directory_exists(settings.BASE_DIR)
        router = LineRouter(
            ignore_www=settings.IGNORE_WWW,
            known_only=settings.KNOWN_ONLY,
            is_known_host=is_known_host,
        )
        cache = HandleCache(max_handles=settings.MAX_HANDLES, flush=settings.FLUSH)
        accountant = TrafficAccountant(store, flush_interval=settings.FLUSH_INTERVAL, clock=monotonic)
        registry = VhostRegistry(
            RotationPolicy.from_settings(settings, clock=clock),
            cache,
            accountant,
            symlink_name=settings.SYMLINK_NAME if settings.SYMLINK else None,
        )
        return cls(router, registry, cache, accountant, log_format=settings.LOG_FORMAT)

    def request_maintenance(self) -> None:
        """Safe to call from a signal handler."""
        self._maintenance_requested = True

    def request_stop(self) -> None:
        """Safe to call from a signal handler; the driver stops reading."""
        self.stop_requested = True

    @property
    def interruptible(self) -> bool:
        """True while no record or shutdown is in flight."""
        return not (self.busy or self.closing)

    def on_maintenance_signal(self) -> None:
        self._maintenance_requested = False
        logger.info("Received maintenance signal: closing all files...")
        self.cache.close_all()

    def process_line(self, raw_line: str) -> Optional[WriteResult]:
        """Handle one input line. Returns None when the line was skipped."""
        self.busy = True
        try:
            return self._process_line(raw_line)
        finally:
            self.busy = False

    def _process_line(self, raw_line: str) -> Optional[WriteResult]:
        if self._maintenance_requested:
            self.on_maintenance_signal()

        routed = self.router.route(raw_line)
        if routed is None:
            return None
        self.lines += 1

        size = None
        if self.log_format is not None:
            # An unparseable record is still written, just not charged.
            size = extract_bytes(routed.payload, self.log_format) or 0

        result = self.registry.find(routed.host).write(routed.payload, size)
        if not result.ok:
            self.failures += 1

        self.accountant.maybe_flush(self.registry)
        return result

    def shutdown(self) -> None:
        self.closing = True
        if self._maintenance_requested:
            self.on_maintenance_signal()
        self.accountant.flush(self.registry)
        self.cache.close_all()
        logger.info(
            f"Processed {self.lines} line(s) for {len(self.registry)} vhost(s), "
            f"{self.failures} failed write(s)"
        )
