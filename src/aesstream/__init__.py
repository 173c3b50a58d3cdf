"""Streaming AES-CBC encryption and decryption over ordinary byte streams."""

from aesstream.core.exceptions import (
    AesStreamError,
    CipherError,
    CipherInitError,
    DecryptError,
    FinalizeError,
    FinishEncryptError,
    InvalidKeySizeError,
    ProcessDataError,
    StreamStateError,
)
from aesstream.security import (
    CipherStatus,
    DecryptingReader,
    EncryptingWriter,
    decrypt_file,
    encrypt_file,
)

__version__ = "0.1.0"

__all__ = [
    "AesStreamError",
    "CipherError",
    "CipherInitError",
    "DecryptError",
    "FinalizeError",
    "FinishEncryptError",
    "InvalidKeySizeError",
    "ProcessDataError",
    "StreamStateError",
    "CipherStatus",
    "DecryptingReader",
    "EncryptingWriter",
    "decrypt_file",
    "encrypt_file",
]
