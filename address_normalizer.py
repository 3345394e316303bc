# Copyright 2025 noamasamreen

from typing import List, Tuple

from bech32 import bech32_decode, bech32_encode, convertbits

from snapshot_errors import AddressDecodeError

MARS_PREFIX = "mars"


def _decode(raw: str) -> Tuple[List[int], bytes]:
    if not isinstance(raw, str):
        raise AddressDecodeError(str(raw), "address must be a string")
    hrp, data = bech32_decode(raw.strip())
    if hrp is None or not data:
        raise AddressDecodeError(raw)
    # Leftover bits that don't fill a byte mean the payload was truncated or padded wrongly
    payload = convertbits(data, 5, 8, False)
    if payload is None:
        raise AddressDecodeError(raw, "malformed payload length")
    return data, bytes(payload)


def normalize_address(raw: str, prefix: str = MARS_PREFIX) -> str:
    """Re-encode a bech32 address under `prefix`, keeping its payload.

    Only the classic bech32 checksum is accepted; bech32m strings fail the
    checksum and are rejected like any other corrupted address.
    """
    data, _ = _decode(raw)
    return bech32_encode(prefix.lower(), data)


def address_payload(address: str) -> bytes:
    """Return the 8-bit byte payload of a bech32 address."""
    _, payload = _decode(address)
    return payload
