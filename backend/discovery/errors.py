"""Exceptions raised by the discovery engine."""


class DiscoveryError(Exception):
    """Base class for discovery failures."""


class SetupError(DiscoveryError):
    """The engine could not be constructed (interfaces, sockets, group address)."""
