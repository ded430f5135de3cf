from __future__ import annotations


class IntegrationMisconfiguredError(RuntimeError):
    pass


class UnknownGatewayError(ValueError):
    def __init__(self, gateway: str | None):
        self.gateway = (gateway or "").strip()
        super().__init__(f"UNKNOWN_GATEWAY:{self.gateway}")


class GatewayVerificationError(RuntimeError):
    """Server-to-server verification call could not be completed."""
