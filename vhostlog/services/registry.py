import logging
from typing import Callable, Dict, Optional

from vhostlog.core.exceptions import TrafficStoreError
from vhostlog.services.accounting import TrafficAccountant
from vhostlog.services.handle_cache import HandleCache
from vhostlog.services.vhost_stream import RotationPolicy, VhostStream

logger = logging.getLogger(__name__)


class VhostRegistry:
    """Host key -> VhostStream, created on first sight and kept for the process lifetime."""

    def __init__(
        self,
        policy: RotationPolicy,
        cache: HandleCache,
        accountant: TrafficAccountant,
        symlink_name: Optional[str] = None,
    ):
        self.policy = policy
        self.cache = cache
        self.accountant = accountant
        self.symlink_name = symlink_name
        self._streams: Dict[str, VhostStream] = {}

    def __len__(self) -> int:
        return len(self._streams)

    def __contains__(self, host: str) -> bool:
        return host in self._streams

    def find(self, host: str) -> VhostStream:
        stream = self._streams.get(host)
        if stream is not None:
            return stream

        host_id = None
        try:
            host_id = self.accountant.resolve_host_id(host)
        except TrafficStoreError as e:
            # Resolved again on the next flush.
            logger.error(f"Could not register vhost {host}: {e}")

        stream = VhostStream(
            host,
            self.policy,
            self.cache,
            self.accountant,
            host_id=host_id,
            symlink_name=self.symlink_name,
        )
        self._streams[host] = stream
        logger.debug(f"Created stream for vhost {host}")
        return stream

    def for_each_changed(self, fn: Callable[[VhostStream], None]) -> None:
        """Call ``fn`` for every stream with unflushed traffic."""
        for stream in list(self._streams.values()):
            if stream.traffic:
                fn(stream)
