"""
Exceptions for the aesstream adapters
Everything derives from AesStreamError so callers have a single catch-all
"""


class AesStreamError(Exception):
    # general container for errors
    pass


class InvalidKeySizeError(AesStreamError, ValueError):
    # raised when key material is not 16 or 32 bytes long
    pass


class StreamStateError(AesStreamError):
    # raised when a closed or failed adapter is used again
    pass


class CipherError(AesStreamError):
    """A cipher operation failed; ``status`` holds the cipher status code."""

    def __init__(self, status, message=None):
        self.status = status
        if message is None:
            message = getattr(status, "description", str(status))
        super().__init__(message)


class CipherInitError(CipherError):
    # raised when the cipher context could not be created (bad IV, params)
    pass


class _PartialReadMixin:
    # bytes copied to the caller before the failing step
    bytes_read: int = 0
    partial: bytes = b""


class DecryptError(_PartialReadMixin, CipherError):
    # raised when an incremental decrypt step fails
    pass


class FinalizeError(_PartialReadMixin, CipherError):
    # raised when the final decrypt step fails (truncated data, bad padding)
    pass


class ProcessDataError(CipherError):
    # raised when an incremental encrypt step fails
    pass


class FinishEncryptError(CipherError):
    # raised when the final encrypt step fails
    pass
