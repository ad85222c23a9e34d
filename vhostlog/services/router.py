import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional

DEFAULT_HOST = "default"

_port_regex = re.compile(r":\d+$")
_leading_token_regex = re.compile(r"^(\S+)\s*")

KnownHostPredicate = Callable[[str], bool]


@dataclass(frozen=True)
class RoutedLine:
    host: str
    payload: str


def directory_exists(base_dir: Path) -> KnownHostPredicate:
    """A host is known when ``<base_dir>/<host>`` already exists."""
    base_dir = Path(base_dir)

    def _exists(host: str) -> bool:
        return os.path.exists(base_dir / host)

    return _exists


def allow_list(names: Iterable[str]) -> KnownHostPredicate:
    allowed = frozenset(name.lower() for name in names)
    return lambda host: host in allowed


class LineRouter:
    """Turns a raw access log line into a host key and the payload to persist."""

    def __init__(
        self,
        ignore_www: bool = False,
        known_only: bool = False,
        is_known_host: Optional[KnownHostPredicate] = None,
    ):
        if known_only and is_known_host is None:
            raise ValueError("known-hosts-only mode needs a known-host predicate")
        self.ignore_www = ignore_www
        self.known_only = known_only
        self.is_known_host = is_known_host

    def normalize_host(self, token: str) -> str:
        host = token.lower()
        # Host headers are attacker controlled; never let them pick a path.
        if "/" in host or "\\" in host or "\x00" in host:
            host = DEFAULT_HOST
        if self.ignore_www and host.startswith("www."):
            host = host[len("www."):]
        host = _port_regex.sub("", host)
        if host in ("", ".", ".."):
            host = DEFAULT_HOST
        if self.known_only and host != DEFAULT_HOST and not self.is_known_host(host):
            host = DEFAULT_HOST
        return host

    def route(self, raw_line: str) -> Optional[RoutedLine]:
        """Return the routed line, or None when there is no leading host token."""
        line = raw_line[:-1] if raw_line.endswith("\n") else raw_line
        match = _leading_token_regex.match(line)
        if match is None:
            return None
        return RoutedLine(host=self.normalize_host(match.group(1)), payload=line[match.end():])
