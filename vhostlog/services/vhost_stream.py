import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional

from vhostlog.services.handle_cache import HandleCache

if TYPE_CHECKING:
    from vhostlog.core.config import Settings
    from vhostlog.services.accounting import TrafficAccountant

logger = logging.getLogger(__name__)

RECORD_TERMINATOR = "\n"

Clock = Callable[[], datetime]


class RotationPolicy:
    """Computes where a host's records go at a given moment."""

    def __init__(
        self,
        base_dir: Path,
        template: str = "%Y%m%d-access.log",
        rotate: bool = True,
        static_filename: str = "access.log",
        subdir: str = "",
        clock: Clock = datetime.now,
    ):
        self.base_dir = Path(base_dir)
        self.template = template
        self.rotate = rotate
        self.subdir = subdir
        self.clock = clock
        # Without rotation the name is fixed for the life of the process.
        self.static_name = clock().strftime(static_filename)

    @classmethod
    def from_settings(cls, settings: "Settings", clock: Clock = datetime.now) -> "RotationPolicy":
        return cls(
            base_dir=settings.BASE_DIR,
            template=settings.TEMPLATE,
            rotate=settings.ROTATE,
            static_filename=settings.STATIC_FILENAME,
            subdir=settings.SUBDIR,
            clock=clock,
        )

    def path_for(self, host: str, now: Optional[datetime] = None) -> Path:
        if self.rotate:
            name = (now or self.clock()).strftime(self.template)
        else:
            name = self.static_name
        return self.base_dir / host / self.subdir / name


def update_symlink(target: Path, link_name: str) -> bool:
    """Point ``<target dir>/<link_name>`` at ``target``'s base name.

    The link is built under a temporary name and renamed over the old one so
    readers never see it missing. Failures are logged and reported, never raised.
    """
    link_path = target.parent / link_name
    if link_path == target:
        return False
    tmp_path = target.parent / f".{link_name}.{os.getpid()}.tmp"
    try:
        if os.path.lexists(tmp_path):
            os.remove(tmp_path)
        os.symlink(target.name, tmp_path)
        os.replace(tmp_path, link_path)
        return True
    except OSError as e:
        logger.warning(f"Could not update symlink {link_path} -> {target.name}: {e}")
        try:
            if os.path.lexists(tmp_path):
                os.remove(tmp_path)
        except OSError:
            logger.debug(f"Could not remove temporary symlink {tmp_path}")
        return False


@dataclass
class WriteResult:
    host: str
    path: Path
    size: int = 0
    rotated: bool = False
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class VhostStream:
    """Per-host writer. Rotates lazily when the computed path changes."""

    def __init__(
        self,
        host: str,
        policy: RotationPolicy,
        cache: HandleCache,
        accountant: "TrafficAccountant",
        host_id: Optional[int] = None,
        symlink_name: Optional[str] = None,
    ):
        self.host = host
        self.policy = policy
        self.cache = cache
        self.accountant = accountant
        self.host_id = host_id
        self.symlink_name = symlink_name
        self.path: Optional[Path] = None
        self.last_write: Optional[datetime] = None
        self.rotations = 0
        self._link_pending = False

    def __repr__(self):
        return f"<VhostStream(host='{self.host}', path='{self.path}')>"

    @property
    def traffic(self) -> int:
        """Bytes recorded for this host and not yet flushed."""
        return self.accountant.pending(self.host)

    def rotate(self, new_path: Path) -> None:
        old_path = self.path
        self.path = new_path
        self.rotations += 1
        self._link_pending = self.symlink_name is not None
        if old_path is not None:
            self.cache.close(old_path)
            logger.info(f"Rotated {self.host}: {old_path.name} -> {new_path.name}")

    def write(self, payload: str, size: Optional[int] = None) -> WriteResult:
        """Append one record.

        ``size`` is the byte count charged to traffic accounting and defaults
        to the encoded length of the payload.
        """
        now = self.policy.clock()
        target = self.policy.path_for(self.host, now)
        rotated = target != self.path
        if rotated:
            self.rotate(target)

        try:
            self.cache.write(target, payload + RECORD_TERMINATOR)
        except (OSError, ValueError) as e:
            # ValueError: the path itself is unusable, e.g. an embedded NUL.
            # Drop a possibly broken handle so the next record reopens it.
            self.cache.close(target)
            return WriteResult(host=self.host, path=target, rotated=rotated, error=e)

        if self._link_pending:
            update_symlink(target, self.symlink_name)
            self._link_pending = False

        self.last_write = now
        if size is None:
            size = len(payload.encode("utf-8", errors="surrogateescape"))
        self.accountant.record(self.host, size, now.date())
        return WriteResult(host=self.host, path=target, size=size, rotated=rotated)
