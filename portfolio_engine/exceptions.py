from __future__ import annotations


class PortfolioEngineError(Exception):
    pass


class InvalidCostBasisMethodError(PortfolioEngineError):
    """Raised when a cost basis method is not one of FIFO, LIFO, HIFO or WAC."""

    def __init__(self, value: object):
        self.value = value
        super().__init__(f"Unrecognized cost basis method: {value!r} (expected FIFO, LIFO, HIFO or WAC).")


class InsufficientCostBasisError(PortfolioEngineError):
    """Raised when a sell asks for more units than the eligible lots can supply."""

    def __init__(self, asset: str, requested: float, available: float):
        self.asset = asset
        self.requested = float(requested)
        self.available = float(available)
        super().__init__(
            f"{asset}: cannot sell {self.requested:.10g} units, only {self.available:.10g} available in open lots."
        )

    @property
    def shortfall(self) -> float:
        return self.requested - self.available


class MissingPriceDataError(PortfolioEngineError):
    """No current price for a held asset. The engine recovers from this with the last known price."""

    def __init__(self, asset: str):
        self.asset = asset
        super().__init__(f"{asset}: no current price available.")


class ExternalAdvisoryError(PortfolioEngineError):
    """An advisory collaborator failed or timed out."""

    def __init__(self, kind: str, reason: str):
        self.kind = kind
        self.reason = reason
        super().__init__(f"{kind}: {reason}")


class ConfigError(PortfolioEngineError):
    pass
