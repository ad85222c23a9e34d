EXIT_CONFIG = 2
EXIT_STORE_UNAVAILABLE = 3
EXIT_PRIVILEGE = 4


class VhostlogError(Exception):
    """Base error. Fatal subclasses carry the process exit status."""

    exit_code = 1


class ConfigurationError(VhostlogError):
    exit_code = EXIT_CONFIG


class StoreUnavailableError(VhostlogError):
    exit_code = EXIT_STORE_UNAVAILABLE


class PrivilegeError(VhostlogError):
    exit_code = EXIT_PRIVILEGE


class TrafficStoreError(VhostlogError):
    """A single upsert against the backing store failed; not fatal."""
