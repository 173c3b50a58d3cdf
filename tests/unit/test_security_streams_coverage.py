"""
Supplemental unit tests for aesstream.security.streams.
Targeting coverage for error paths.
"""

import io
import os
from unittest.mock import patch

import pytest

from aesstream.core.exceptions import (
    CipherError,
    DecryptError,
    FinalizeError,
    FinishEncryptError,
    ProcessDataError,
    StreamStateError,
)
from aesstream.security.crypto import CipherContext, CipherStatus
from aesstream.security.streams import DecryptingReader, EncryptingWriter

# ==============================================================================
# Fixtures
# ==============================================================================

@pytest.fixture
def key():
    return os.urandom(32)


@pytest.fixture
def iv():
    return os.urandom(16)


@pytest.fixture
def plaintext():
    # block aligned, so the final ciphertext block is pure padding
    return bytes(range(256)) * 8


@pytest.fixture
def ciphertext(key, iv, plaintext):
    sink = io.BytesIO()
    writer = EncryptingWriter(sink, key, iv)
    writer.write(plaintext)
    with patch.object(sink, "close"):
        writer.close()
    return sink.getvalue()


# ==============================================================================
# Tests: Decryption failures
# ==============================================================================

def test_truncated_ciphertext_reports_partial_progress(key, iv, plaintext, ciphertext):
    """A misaligned tail fails finalize; already decrypted bytes are kept."""
    truncated = ciphertext[:203]
    reader = DecryptingReader(io.BytesIO(truncated), key, iv, chunk_size=64)
    buf = bytearray(4096)

    with pytest.raises(FinalizeError) as excinfo:
        reader.readinto(buf)

    err = excinfo.value
    assert err.status is CipherStatus.ALIGNMENT_ERROR
    # 192 bytes decrypted, one block held back for padding removal
    assert err.bytes_read == 176
    assert err.partial == plaintext[:176]
    assert bytes(buf[:176]) == plaintext[:176]


def test_read_all_reports_every_byte_served_before_failure(key, iv, plaintext, ciphertext):
    """read() with no size spans several chunks; the error covers all of them."""
    reader = DecryptingReader(io.BytesIO(ciphertext[:203]), key, iv, chunk_size=64)

    with pytest.raises(FinalizeError) as excinfo:
        reader.read()

    err = excinfo.value
    assert err.status is CipherStatus.ALIGNMENT_ERROR
    assert err.bytes_read == 176
    assert err.partial == plaintext[:176]


def test_failure_is_terminal(key, iv, ciphertext):
    reader = DecryptingReader(io.BytesIO(ciphertext[:-3]), key, iv, chunk_size=64)
    with pytest.raises(FinalizeError):
        reader.read()
    with pytest.raises(StreamStateError):
        reader.read(1)


def test_partial_is_empty_when_failure_hits_first_chunk(key, iv):
    reader = DecryptingReader(io.BytesIO(b"\x00" * 10), key, iv, chunk_size=64)
    with pytest.raises(FinalizeError) as excinfo:
        reader.read(100)
    assert excinfo.value.bytes_read == 0
    assert excinfo.value.partial == b""


def test_empty_ciphertext_fails_finalize(key, iv):
    reader = DecryptingReader(io.BytesIO(b""), key, iv)
    with pytest.raises(FinalizeError) as excinfo:
        reader.read()
    assert excinfo.value.status is CipherStatus.DECODE_ERROR


def test_flipped_padding_byte_fails_finalize(key, iv, ciphertext):
    """Flipping the last byte of the penultimate block corrupts the padding."""
    tampered = bytearray(ciphertext)
    tampered[-17] ^= 0xFF
    reader = DecryptingReader(io.BytesIO(bytes(tampered)), key, iv, chunk_size=64)
    with pytest.raises(FinalizeError) as excinfo:
        reader.read()
    assert excinfo.value.status is CipherStatus.DECODE_ERROR


def test_flipped_interior_byte_yields_garbage(key, iv, plaintext, ciphertext):
    tampered = bytearray(ciphertext)
    tampered[100] ^= 0x01
    reader = DecryptingReader(io.BytesIO(bytes(tampered)), key, iv, chunk_size=64)
    out = reader.read()
    assert len(out) == len(plaintext)
    assert out != plaintext
    # CBC damage stays local: the corrupted block and one byte of the next
    assert out[:96] == plaintext[:96]
    assert out[128:] == plaintext[128:]


def test_wrong_key_never_returns_plaintext(iv, plaintext, ciphertext):
    reader = DecryptingReader(io.BytesIO(ciphertext), os.urandom(32), iv, chunk_size=64)
    try:
        out = reader.read()
    except FinalizeError:
        return
    assert out != plaintext


def test_update_failure_raises_decrypt_error(key, iv, plaintext, ciphertext):
    reader = DecryptingReader(io.BytesIO(ciphertext), key, iv, chunk_size=64)
    assert reader.read(10) == plaintext[:10]

    with patch.object(
        CipherContext,
        "update_into",
        side_effect=CipherError(CipherStatus.DECODE_ERROR),
    ):
        with pytest.raises(DecryptError) as excinfo:
            reader.read(100)

    err = excinfo.value
    assert err.status is CipherStatus.DECODE_ERROR
    # the rest of the first chunk was served before the failing refill
    assert err.bytes_read == 38
    assert err.partial == plaintext[10:48]
    assert isinstance(err.__cause__, CipherError)


def test_upstream_error_propagates_unchanged(key, iv):
    class BrokenSource:
        def read(self, size):
            raise ConnectionResetError("peer went away")

    reader = DecryptingReader(BrokenSource(), key, iv)
    with pytest.raises(ConnectionResetError):
        reader.read(10)


# ==============================================================================
# Tests: Encryption failures
# ==============================================================================

def test_update_failure_raises_process_data_error(key, iv):
    sink = io.BytesIO()
    writer = EncryptingWriter(sink, key, iv)
    with patch.object(
        CipherContext,
        "update_into",
        side_effect=CipherError(CipherStatus.PARAM_ERROR),
    ):
        with pytest.raises(ProcessDataError) as excinfo:
            writer.write(b"x" * 32)
    assert excinfo.value.status is CipherStatus.PARAM_ERROR
    assert sink.getvalue() == b""


def test_finalize_failure_still_closes_sink(key, iv):
    sink = io.BytesIO()
    writer = EncryptingWriter(sink, key, iv)
    writer.write(b"x" * 5)
    with patch.object(
        CipherContext,
        "finalize_into",
        side_effect=CipherError(CipherStatus.UNSPECIFIED_ERROR),
    ):
        with pytest.raises(FinishEncryptError) as excinfo:
            writer.close()
    assert excinfo.value.status is CipherStatus.UNSPECIFIED_ERROR
    assert sink.closed
    assert writer.closed
    # a second close does not retry
    writer.close()


def test_downstream_error_propagates_unchanged(key, iv):
    class FullDisk:
        closed = False

        def write(self, data):
            raise OSError(28, "No space left on device")

        def close(self):
            self.closed = True

    sink = FullDisk()
    writer = EncryptingWriter(sink, key, iv)
    with pytest.raises(OSError) as excinfo:
        writer.write(b"y" * 64)
    assert excinfo.value.errno == 28
    with pytest.raises(OSError):
        writer.close()
    assert sink.closed


def test_close_on_empty_stream_sizes_buffer_for_final_block(key, iv):
    sink = io.BytesIO()
    writer = EncryptingWriter(sink, key, iv)
    assert writer.buffer_capacity == 0
    with patch.object(sink, "close"):
        writer.close()
    assert len(sink.getvalue()) == 16
