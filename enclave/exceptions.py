"""Error taxonomy for the enclave pipeline."""


class EnclaveError(Exception):
    """Base class for all enclave errors."""
    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class ConfigurationError(EnclaveError):
    """Missing or invalid configuration. Fatal at startup."""


class StorageUnavailable(EnclaveError):
    """The primary write path could not reach storage."""


class ExternalCallFailure(EnclaveError):
    """
    Metadata fetch or external ledger submission failed.

    Never escapes a client: clients convert it to an ExternalResult.
    """


class LedgerAppendFailure(EnclaveError):
    """An audit ledger append failed. Swallowed at every call site."""


class ResetNotAllowed(EnclaveError):
    """Counter reset attempted outside a test context."""
