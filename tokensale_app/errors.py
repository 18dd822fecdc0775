class TokenSaleError(Exception):
    """Base class for engine errors."""


class InputRejectedError(TokenSaleError, ValueError):
    """Bad amount, address or pot; raised before any side effect."""


class DuplicateReferenceError(TokenSaleError):
    """An inbound contribution reused an external reference."""

    def __init__(self, reference: str):
        super().__init__(f"Duplicate entry: reference {reference!r} is already recorded")
        self.reference = reference


class StoreUnavailableError(TokenSaleError):
    """The record store could not be reached."""


class PaymentGatewayError(TokenSaleError):
    """The external payment interface rejected or failed a transfer."""


class LedgerStateError(TokenSaleError):
    """A ledger entry was moved out of a terminal state."""


class RunInProgressError(TokenSaleError):
    """Another run of the same engine holds the lease."""

    def __init__(self, job: str, holder: str):
        super().__init__(f"{job} run already in progress (lease held by {holder})")
        self.job = job
        self.holder = holder
