from __future__ import annotations


class EbtFleetError(Exception):
    pass


class ConfigurationError(EbtFleetError):
    """Fleet configuration is unusable or degraded."""


class NodeUnreachable(EbtFleetError):
    def __init__(self, address: str, reason: str) -> None:
        super().__init__(f"{address}: {reason}")
        self.address = address
        self.reason = reason


class NoMatch(EbtFleetError):
    """A device token could not be resolved to a MAC address."""


class AmbiguousInput(EbtFleetError):
    """An operator selection was not one of the offered options."""


class DirectoryMissing(EbtFleetError):
    """The MAC directory cache file does not exist yet."""
