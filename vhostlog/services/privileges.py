import grp
import logging
import os
import pwd
from pathlib import Path
from typing import Optional

from vhostlog.core.exceptions import PrivilegeError

logger = logging.getLogger(__name__)


def resolve_uid(user: str) -> int:
    if user.isdigit():
        return int(user)
    try:
        return pwd.getpwnam(user).pw_uid
    except KeyError:
        raise PrivilegeError(f"User {user} not found.") from None


def resolve_gid(group: str) -> int:
    if group.isdigit():
        return int(group)
    try:
        return grp.getgrnam(group).gr_gid
    except KeyError:
        raise PrivilegeError(f"Group {group} not found.") from None


def drop_privileges(
    user: Optional[str] = None,
    group: Optional[str] = None,
    chroot: Optional[Path] = None,
) -> None:
    """Confine and de-escalate the process before any log line is read.

    Names are resolved before chroot since the user database usually lives
    outside the new root. The group is switched before the user because a
    non-root process can no longer change its group.
    """
    uid = resolve_uid(user) if user else None
    gid = resolve_gid(group) if group else None

    if chroot is not None:
        try:
            os.chroot(chroot)
            os.chdir("/")
        except OSError as e:
            raise PrivilegeError(f"Cannot chroot to {chroot}: {e}") from e
        logger.info(f"Confined to {chroot}")

    if gid is not None:
        try:
            if os.geteuid() == 0:
                os.setgroups([gid])
            os.setgid(gid)
        except PermissionError:
            raise PrivilegeError(f"No permission to become group {group}.") from None
        logger.info(f"Switched to group {group} ({gid})")

    if uid is not None:
        try:
            os.setuid(uid)
        except PermissionError:
            raise PrivilegeError(f"No permission to become {user}.") from None
        logger.info(f"Switched to user {user} ({uid})")
