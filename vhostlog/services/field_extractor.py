import logging
import re
from typing import Optional

logger = logging.getLogger(__name__)

# --- Apache/NCSA access log formats (vhost token already stripped) ---
apache_common_regex = re.compile(
    r'(?P<ip_address>\S+) (?P<ident>\S+) (?P<user>\S+) \[(?P<timestamp>[^\]]+)\] '
    r'"(?P<request>(?:[^"\\]|\\.)*)" (?P<status>\d{3}|-) (?P<bytes>\d+|-)'
)

apache_combined_regex = re.compile(
    apache_common_regex.pattern
    + r' "(?P<referer>(?:[^"\\]|\\.)*)" "(?P<user_agent>(?:[^"\\]|\\.)*)"'
)

FORMATS = {
    "common": apache_common_regex,
    "combined": apache_combined_regex,
}


def parse_access_log(payload: str, log_format: str) -> Optional[dict]:
    regex = FORMATS.get(log_format)
    if regex is None:
        logger.warning(f"Unsupported log format: {log_format}")
        return None
    match = regex.match(payload)
    if match is None:
        return None
    return match.groupdict()


def extract_bytes(payload: str, log_format: Optional[str]) -> Optional[int]:
    """Return the response size field of an access log record, or None."""
    if log_format is None:
        return None
    fields = parse_access_log(payload, log_format)
    if fields is None:
        logger.debug(f"Could not parse {log_format} record: {payload[:100]}")
        return None
    if fields["bytes"] == "-":
        return 0
    return int(fields["bytes"])
