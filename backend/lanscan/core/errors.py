"""Exceptions raised by the scanner and its collaborators."""


class ScanError(Exception):
    """Base class for scan failures."""


class PermissionDeniedError(ScanError):
    """Local network access was refused before any traffic was sent."""

    def __init__(self, message: str = "Permission denied"):
        super().__init__(message)


class NoNetworkError(ScanError):
    """The local IPv4 address or netmask could not be determined."""

    def __init__(self, message: str = "No network connection"):
        super().__init__(message)


class TransportError(ScanError):
    """An echo transport cannot send at all (missing binary, no privileges)."""


class ServiceResolutionError(ScanError):
    """An advertised service instance could not be resolved."""

    def __init__(self, service_type: str, name: str, reason: str = ""):
        self.service_type = service_type
        self.name = name
        message = f"Could not resolve {name} ({service_type})"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
