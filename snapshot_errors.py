# Copyright 2025 noamasamreen

from typing import Any, Dict, Optional


class SnapshotError(Exception):
    """Base exception for every failure the snapshot tool reports."""

    kind = "snapshot"

    def __init__(self, message: str, address: Optional[str] = None, cause: Optional[BaseException] = None):
        self.message = message
        self.address = address
        self.cause = cause
        super().__init__(message)

    def describe(self) -> str:
        if self.address:
            return f"Error [{self.kind}] {self.address}: {self.message}"
        return f"Error [{self.kind}]: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind,
            'address': self.address,
            'error': self.message,
        }


class InputError(SnapshotError):
    """Allocation input could not be parsed. Fatal to the whole run."""

    kind = "parse"

    def __init__(self, message: str, index: Optional[int] = None, cause: Optional[BaseException] = None):
        if index is not None:
            message = f"entry {index}: {message}"
        super().__init__(message, cause=cause)
        self.index = index


class InputFileError(InputError):
    """Allocation file could not be read."""

    kind = "io"


class OutputFileError(SnapshotError):
    """Result or failure file could not be written."""

    kind = "io"


class AddressDecodeError(SnapshotError):
    """Address is not a valid bech32 string."""

    kind = "address_decode"

    def __init__(self, address: str, reason: str = "invalid bech32 encoding"):
        super().__init__(reason, address=address)


class TransportError(SnapshotError):
    """Connection failure or timeout while talking to the LCD endpoint."""

    kind = "transport"


class StatusError(SnapshotError):
    """LCD endpoint answered with a non-OK status."""

    kind = "status"

    def __init__(self, address: str, http_status: int, code: Optional[int] = None, message: str = ""):
        detail = f"HTTP {http_status}"
        if code is not None:
            detail += f" (grpc code {code})"
        if message:
            detail += f": {message}"
        super().__init__(detail, address=address)
        self.http_status = http_status
        self.code = code

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['http_status'] = self.http_status
        result['code'] = self.code
        return result


class AccountNotFound(SnapshotError):
    """The address has no account on chain."""

    kind = "account_not_found"

    def __init__(self, address: str):
        super().__init__(f"Account not found: {address}", address=address)


class DecodeError(SnapshotError):
    """LCD response body could not be decoded."""

    kind = "decode"


class AccountDecodeError(DecodeError):
    """Account response is not JSON or has an unsupported account shape."""

    kind = "account_decode"


class DelegationDecodeError(DecodeError):
    """Delegation response is not JSON or its entries are malformed."""

    kind = "delegation_decode"


class DelegationParseError(SnapshotError):
    """A delegation balance amount is not a non-negative integer string."""

    kind = "delegation_parse"

    def __init__(self, address: str, amount: Any):
        super().__init__(f"Invalid delegation amount: {amount!r}", address=address)
        self.amount = amount
