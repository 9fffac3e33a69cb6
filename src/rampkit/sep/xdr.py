"""Minimal XDR decoding for SEP-10 challenge transactions.

Only what a challenge can contain is understood: a transaction envelope
whose operations are all ``manage_data``. Anything else is rejected with
:class:`XdrError`. Signatures are not read.
"""

import base64
import binascii
import struct
from dataclasses import dataclass, field
from typing import Optional

from bip_utils import XlmAddrEncoder, XlmAddrTypes

ENVELOPE_TYPE_TX_V0 = 0
ENVELOPE_TYPE_TX = 2

KEY_TYPE_ED25519 = 0
KEY_TYPE_MUXED_ED25519 = 0x100

PRECOND_NONE = 0
PRECOND_TIME = 1
PRECOND_V2 = 2

SIGNER_KEY_ED25519_SIGNED_PAYLOAD = 3

MEMO_NONE, MEMO_TEXT, MEMO_ID, MEMO_HASH, MEMO_RETURN = range(5)

OP_MANAGE_DATA = 10


class XdrError(ValueError):
    pass


def encode_account_id(key: bytes) -> str:
    """Ed25519 public key bytes -> ``G...`` account id."""
    return XlmAddrEncoder.EncodeKey(key, addr_type=XlmAddrTypes.PUB_KEY)


class XdrReader:
    def __init__(self, data: bytes):
        self._data = data
        self._pos = 0

    def _take(self, size: int) -> bytes:
        end = self._pos + size
        if end > len(self._data):
            raise XdrError("Unexpected end of XDR data")
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def int32(self) -> int:
        return struct.unpack(">i", self._take(4))[0]

    def uint32(self) -> int:
        return struct.unpack(">I", self._take(4))[0]

    def int64(self) -> int:
        return struct.unpack(">q", self._take(8))[0]

    def uint64(self) -> int:
        return struct.unpack(">Q", self._take(8))[0]

    def boolean(self) -> bool:
        value = self.int32()
        if value not in (0, 1):
            raise XdrError(f"Invalid XDR boolean {value}")
        return value == 1

    def fixed(self, size: int) -> bytes:
        return self._take(size)

    def variable(self, max_size: Optional[int] = None) -> bytes:
        size = self.uint32()
        if max_size is not None and size > max_size:
            raise XdrError(f"XDR opaque of {size} bytes exceeds {max_size}")
        data = self._take(size)
        self._take((4 - size % 4) % 4)
        return data


@dataclass
class ManageDataOp:
    source: Optional[str]
    name: str
    value: Optional[bytes]


@dataclass
class ChallengeTransaction:
    source: str
    sequence: int
    min_time: Optional[int] = None
    max_time: Optional[int] = None
    operations: list[ManageDataOp] = field(default_factory=list)


def _read_muxed_account(reader: XdrReader) -> str:
    key_type = reader.int32()
    if key_type == KEY_TYPE_ED25519:
        return encode_account_id(reader.fixed(32))
    if key_type == KEY_TYPE_MUXED_ED25519:
        reader.uint64()
        # Compared on the underlying account
        return encode_account_id(reader.fixed(32))
    raise XdrError(f"Unsupported account key type {key_type}")


def _read_time_bounds(reader: XdrReader) -> tuple[int, int]:
    return reader.uint64(), reader.uint64()


def _read_preconditions(reader: XdrReader) -> Optional[tuple[int, int]]:
    kind = reader.int32()
    if kind == PRECOND_NONE:
        return None
    if kind == PRECOND_TIME:
        return _read_time_bounds(reader)
    if kind != PRECOND_V2:
        raise XdrError(f"Unsupported precondition type {kind}")

    bounds = _read_time_bounds(reader) if reader.boolean() else None
    if reader.boolean():
        reader.uint32()
        reader.uint32()
    if reader.boolean():
        reader.int64()
    reader.uint64()
    reader.uint32()
    for _ in range(reader.uint32()):
        signer_type = reader.int32()
        reader.fixed(32)
        if signer_type == SIGNER_KEY_ED25519_SIGNED_PAYLOAD:
            reader.variable(64)
    return bounds


def _skip_memo(reader: XdrReader) -> None:
    kind = reader.int32()
    if kind == MEMO_TEXT:
        reader.variable(28)
    elif kind == MEMO_ID:
        reader.uint64()
    elif kind in (MEMO_HASH, MEMO_RETURN):
        reader.fixed(32)
    elif kind != MEMO_NONE:
        raise XdrError(f"Unsupported memo type {kind}")


def _read_operation(reader: XdrReader) -> ManageDataOp:
    source = _read_muxed_account(reader) if reader.boolean() else None
    op_type = reader.int32()
    if op_type != OP_MANAGE_DATA:
        raise XdrError(f"Challenge operations must be manage_data, got type {op_type}")
    name = reader.variable(64).decode("utf-8", errors="replace")
    value = reader.variable(64) if reader.boolean() else None
    return ManageDataOp(source=source, name=name, value=value)


def decode_challenge(envelope_xdr: str) -> ChallengeTransaction:
    """Decode a base64 transaction envelope holding a SEP-10 challenge.

    Raises:
        XdrError: If the envelope is malformed or not a plain transaction
            made of manage_data operations
    """
    try:
        raw = base64.b64decode(envelope_xdr, validate=True)
    except binascii.Error as e:
        raise XdrError(f"Challenge is not valid base64: {e}") from e

    reader = XdrReader(raw)
    envelope_type = reader.int32()

    if envelope_type == ENVELOPE_TYPE_TX_V0:
        source = encode_account_id(reader.fixed(32))
        reader.uint32()
        sequence = reader.int64()
        bounds = _read_time_bounds(reader) if reader.boolean() else None
    elif envelope_type == ENVELOPE_TYPE_TX:
        source = _read_muxed_account(reader)
        reader.uint32()
        sequence = reader.int64()
        bounds = _read_preconditions(reader)
    else:
        raise XdrError(f"Unsupported envelope type {envelope_type}")

    _skip_memo(reader)
    operations = [_read_operation(reader) for _ in range(reader.uint32())]

    return ChallengeTransaction(
        source=source,
        sequence=sequence,
        min_time=bounds[0] if bounds else None,
        max_time=bounds[1] if bounds else None,
        operations=operations,
    )
