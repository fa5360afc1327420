from __future__ import annotations


class DomainError(Exception):
    pass


class DomainInvariantError(DomainError):
    pass


class ConfigurationError(DomainError):
    pass


class ConnectivityError(DomainError):
    pass


class ChannelDeliveryError(DomainError):
    def __init__(self, message: str, *, error_code: str | None = None) -> None:
        super().__init__(message)
        self.error_code = error_code
