import logging
import time
from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING, Callable, Dict, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from vhostlog.core.exceptions import TrafficStoreError
from vhostlog.models.traffic import Traffic
from vhostlog.models.vhost import Vhost

if TYPE_CHECKING:
    from vhostlog.services.registry import VhostRegistry
    from vhostlog.services.vhost_stream import VhostStream

logger = logging.getLogger(__name__)


class TrafficStore:
    """Backing store interface for per-host, per-day traffic totals."""

    def find_or_create_host(self, name: str) -> Optional[int]:
        raise NotImplementedError

    def upsert_traffic_total(self, host_id: Optional[int], day: date, delta: int) -> None:
        raise NotImplementedError


class NullTrafficStore(TrafficStore):
    """Used when accounting is disabled; accepts everything, keeps nothing."""

    def find_or_create_host(self, name: str) -> Optional[int]:
        return None

    def upsert_traffic_total(self, host_id: Optional[int], day: date, delta: int) -> None:
        return None


class SqlTrafficStore(TrafficStore):
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def find_or_create_host(self, name: str) -> int:
        db: Session = self.session_factory()
        try:
            vhost = db.query(Vhost).filter(Vhost.name == name).first()
            if vhost is None:
                vhost = Vhost(name=name)
                db.add(vhost)
                db.commit()
                db.refresh(vhost)
                logger.info(f"Registered vhost {name} with id {vhost.id}")
            return vhost.id
        except SQLAlchemyError as e:
            db.rollback()
            raise TrafficStoreError(f"Failed to look up vhost {name}: {e}") from e
        finally:
            db.close()

    def upsert_traffic_total(self, host_id: int, day: date, delta: int) -> None:
        db: Session = self.session_factory()
        try:
            row = db.query(Traffic).filter(Traffic.vhosts_id == host_id, Traffic.date == day).first()
            if row is None:
                db.add(Traffic(vhosts_id=host_id, date=day, bytes=delta))
            else:
                row.bytes = row.bytes + delta
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise TrafficStoreError(f"Failed to store traffic for vhost id {host_id} on {day}: {e}") from e
        finally:
            db.close()


@dataclass
class TrafficBucket:
    host: str
    day: date
    bytes: int = 0


class TrafficAccountant:
    """Accumulates bytes per (host, day) in memory and flushes them in batches.

    There is no timer: the driver calls ``maybe_flush`` once per processed
    line, so flush latency depends on the input rate.
    """

    def __init__(
        self,
        store: Optional[TrafficStore] = None,
        flush_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store if store is not None else NullTrafficStore()
        self.flush_interval = flush_interval
        self.clock = clock
        self._buckets: Dict[Tuple[str, date], TrafficBucket] = {}
        self.next_flush_due = clock() + flush_interval

    def resolve_host_id(self, host: str) -> Optional[int]:
        return self.store.find_or_create_host(host)

    def record(self, host: str, byte_count: int, day: date) -> None:
        if byte_count <= 0:
            return
        key = (host, day)
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = self._buckets[key] = TrafficBucket(host=host, day=day)
        bucket.bytes += byte_count

    def pending(self, host: str) -> int:
        return sum(b.bytes for (name, _), b in self._buckets.items() if name == host)

    def flush_stream(self, stream: "VhostStream") -> int:
        """Upsert every bucket of one host. Returns the bytes stored.

        A failed bucket stays in memory and is retried on the next flush.
        """
        flushed = 0
        for key, bucket in sorted(self._buckets.items(), key=lambda item: item[0][1]):
            if key[0] != stream.host or bucket.bytes == 0:
                continue
            try:
                if stream.host_id is None:
                    stream.host_id = self.resolve_host_id(stream.host)
                self.store.upsert_traffic_total(stream.host_id, bucket.day, bucket.bytes)
            except TrafficStoreError as e:
                logger.error(f"Traffic flush failed for {stream.host}, will retry: {e}")
                continue
            flushed += bucket.bytes
            del self._buckets[key]
        return flushed

    def flush(self, registry: "VhostRegistry") -> int:
        total = 0

        def _flush(stream: "VhostStream") -> None:
            nonlocal total
            total += self.flush_stream(stream)

        registry.for_each_changed(_flush)
        self.next_flush_due = self.clock() + self.flush_interval
        if total:
            logger.debug(f"Flushed {total} bytes of traffic")
        return total

    def maybe_flush(self, registry: "VhostRegistry") -> bool:
        if self.clock() < self.next_flush_due:
            return False
        self.flush(registry)
        return True
