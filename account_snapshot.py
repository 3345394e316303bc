# Copyright 2025 noamasamreen

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Type
import asyncio
import aiohttp
import logging
import json
import re

from address_normalizer import MARS_PREFIX, normalize_address
from snapshot_errors import (
    AccountDecodeError,
    AccountNotFound,
    DecodeError,
    DelegationDecodeError,
    DelegationParseError,
    InputError,
    InputFileError,
    OutputFileError,
    SnapshotError,
    StatusError,
    TransportError,
)

# Constants
MARS_LCD_URL = "https://rest.cosmos.directory/mars"
ACCOUNT_PATH = "/cosmos/auth/v1beta1/accounts/{address}"
DELEGATIONS_PATH = "/cosmos/staking/v1beta1/delegations/{address}"
GRPC_NOT_FOUND = 5

# Keep batches small so the public endpoint doesn't rate limit us
MAX_ACCOUNTS = 5
REQUEST_TIMEOUT = 30
SESSION_TIMEOUT = aiohttp.ClientTimeout(total=REQUEST_TIMEOUT)

MAX_UINT64 = 2 ** 64 - 1
MAX_UINT128 = 2 ** 128 - 1

# Vesting accounts nest a BaseAccount under base_vesting_account.base_account,
# module accounts directly under base_account
ACCOUNT_WRAPPERS = ("base_vesting_account", "base_account")

_UINT_PATTERN = re.compile(r"\A[0-9]+\Z")


class JoinPolicy(Enum):
    COLLECT_ALL = "collect_all"
    FAIL_FAST = "fail_fast"


@dataclass(frozen=True)
class AllocationInput:
    address: str
    amount: int


@dataclass
class AccountRecord:
    address: str
    sequence: int
    airdrop_amount: int
    staked_amount: int

    def to_dict(self) -> Dict:
        return {
            'address': self.address,
            'sequence': self.sequence,
            'airdrop_amount': self.airdrop_amount,
            'staked_amount': self.staked_amount,
        }


@dataclass
class AccountFailure:
    address: str
    error: SnapshotError

    def to_dict(self) -> Dict:
        result = self.error.to_dict()
        result['address'] = self.address
        return result


@dataclass
class SnapshotReport:
    records: List[AccountRecord] = field(default_factory=list)
    failures: List[AccountFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def records_to_dict(self) -> List[Dict]:
        return [record.to_dict() for record in self.records]

    def failures_to_dict(self) -> List[Dict]:
        return [failure.to_dict() for failure in self.failures]


ProgressSink = Callable[[AccountRecord], None]


def print_record(record: AccountRecord) -> None:
    """Default progress sink: one JSON line per finished account"""
    print(json.dumps(record.to_dict()), flush=True)


def parse_uint(value: Any, max_value: int) -> int:
    """Parse a non-negative integer given as a JSON int or a decimal string.

    Raises ValueError for anything else, including bools, floats, signs,
    whitespace and values above `max_value`.
    """
    if isinstance(value, bool):
        raise ValueError(f"expected an integer, got {value!r}")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str) and _UINT_PATTERN.match(value):
        number = int(value)
    else:
        raise ValueError(f"expected a non-negative integer, got {value!r}")
    if number < 0 or number > max_value:
        raise ValueError(f"{value!r} is out of range")
    return number


def parse_allocations(data: Any) -> List[AllocationInput]:
    """Validate decoded airdrop JSON into allocation inputs"""
    if not isinstance(data, list):
        raise InputError("expected a JSON array of {address, amount} objects")

    allocations = []
    for index, entry in enumerate(data):
        if not isinstance(entry, dict):
            raise InputError("expected an object", index=index)
        address = entry.get('address')
        if not isinstance(address, str) or not address:
            raise InputError("missing or invalid 'address'", index=index)
        if 'amount' not in entry:
            raise InputError(f"missing 'amount' for {address}", index=index)
        try:
            amount = parse_uint(entry['amount'], MAX_UINT128)
        except ValueError as e:
            raise InputError(f"invalid amount for {address}: {e}", index=index, cause=e) from e
        allocations.append(AllocationInput(address=address, amount=amount))
    return allocations


def load_allocations(path: str) -> List[AllocationInput]:
    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except OSError as e:
        raise InputFileError(f"cannot read {path}: {e}", cause=e) from e
    except json.JSONDecodeError as e:
        raise InputError(f"{path} is not valid JSON: {e}", cause=e) from e
    return parse_allocations(data)


def _write_json(rows: List[Dict], path: str) -> None:
    try:
        with open(path, 'w') as f:
            json.dump(rows, f, indent=2)
    except OSError as e:
        raise OutputFileError(f"cannot write {path}: {e}", cause=e) from e


def write_records(records: Iterable[AccountRecord], path: str) -> None:
    _write_json([record.to_dict() for record in records], path)


def write_failures(failures: Iterable[AccountFailure], path: str) -> None:
    _write_json([failure.to_dict() for failure in failures], path)


async def _get_json(session: aiohttp.ClientSession, url: str, address: str,
                    decode_error: Type[DecodeError]) -> Tuple[int, Optional[Dict]]:
    """GET `url` and return (HTTP status, decoded JSON body).

    The body is None when a non-200 response isn't JSON. A 200 response that
    isn't a JSON object raises `decode_error`.
    """
    try:
        async with session.get(url) as response:
            status = response.status
            body = await response.text()
    except asyncio.TimeoutError as e:
        raise TransportError(f"Request to {url} timed out", address=address, cause=e) from e
    except aiohttp.ClientError as e:
        raise TransportError(f"Request to {url} failed: {e}", address=address, cause=e) from e

    try:
        payload = json.loads(body)
    except ValueError as e:
        if status != 200:
            return status, None
        raise decode_error(f"Response from {url} is not JSON", address=address, cause=e) from e

    if not isinstance(payload, dict):
        if status != 200:
            return status, None
        raise decode_error(f"Response from {url} is not a JSON object", address=address)
    return status, payload


def _raise_for_status(address: str, status: int, payload: Optional[Dict]) -> None:
    payload = payload or {}
    code = payload.get('code')
    raise StatusError(address, status, code if isinstance(code, int) else None, str(payload.get('message', '')))


def extract_sequence(account: Any, address: str) -> int:
    """Read the sequence of a decoded account, unwrapping vesting and module accounts"""
    node = account
    while isinstance(node, dict):
        wrapper = next((key for key in ACCOUNT_WRAPPERS if key in node), None)
        if wrapper is None:
            break
        node = node[wrapper]

    if not isinstance(node, dict) or 'address' not in node:
        type_url = account.get('@type') if isinstance(account, dict) else None
        raise AccountDecodeError(f"Unsupported account type {type_url!r}", address=address)

    # proto3 JSON may drop zero-valued fields; a fresh account reports no sequence
    sequence = node.get('sequence', 0)
    try:
        return parse_uint(sequence, MAX_UINT64)
    except ValueError as e:
        raise AccountDecodeError(f"Invalid account sequence: {e}", address=address, cause=e) from e


async def get_account_sequence(session: aiohttp.ClientSession, lcd_url: str, address: str) -> int:
    """Fetch the account's sequence number from the auth module"""
    url = lcd_url.rstrip('/') + ACCOUNT_PATH.format(address=address)
    status, payload = await _get_json(session, url, address, AccountDecodeError)

    if payload and payload.get('code') == GRPC_NOT_FOUND:
        raise AccountNotFound(address)
    # A 404 without the NotFound code comes from a wrong URL or a proxy, not the chain
    if status != 200:
        _raise_for_status(address, status, payload)

    account = payload.get('account')
    if account is None:
        raise AccountNotFound(address)
    return extract_sequence(account, address)


def sum_delegations(delegation_responses: Any, address: str) -> int:
    """Sum the balances of a page of delegation responses.

    An entry without a balance counts as zero; a balance whose amount isn't a
    non-negative integer string is an error.
    """
    if delegation_responses is None:
        return 0
    if not isinstance(delegation_responses, list):
        raise DelegationDecodeError("'delegation_responses' is not a list", address=address)

    total = 0
    for entry in delegation_responses:
        if not isinstance(entry, dict):
            raise DelegationDecodeError(f"Malformed delegation entry: {entry!r}", address=address)
        balance = entry.get('balance')
        if balance is None:
            continue
        if not isinstance(balance, dict):
            raise DelegationDecodeError(f"Malformed delegation balance: {balance!r}", address=address)
        amount = balance.get('amount')
        try:
            total += parse_uint(amount, MAX_UINT128)
        except ValueError as e:
            raise DelegationParseError(address, amount) from e
    return total


async def get_staked_amount(session: aiohttp.ClientSession, lcd_url: str, address: str) -> int:
    """Fetch the first page of the address's delegations and sum their balances"""
    url = lcd_url.rstrip('/') + DELEGATIONS_PATH.format(address=address)
    status, payload = await _get_json(session, url, address, DelegationDecodeError)
    if status != 200:
        _raise_for_status(address, status, payload)

    pagination = payload.get('pagination') or {}
    if isinstance(pagination, dict) and pagination.get('next_key'):
        logging.debug(f"Ignoring further delegation pages for {address}")

    return sum_delegations(payload.get('delegation_responses'), address)


async def aggregate_account(session: aiohttp.ClientSession, lcd_url: str, allocation: AllocationInput,
                            prefix: str = MARS_PREFIX, normalize: bool = True,
                            progress: Optional[ProgressSink] = print_record) -> AccountRecord:
    """Build the snapshot record for one allocation.

    Raises a SnapshotError subclass when the address can't be decoded or
    either lookup fails. A bad address never reaches the endpoint.
    """
    address = normalize_address(allocation.address, prefix) if normalize else allocation.address

    sequence, staked_amount = await asyncio.gather(
        get_account_sequence(session, lcd_url, address),
        get_staked_amount(session, lcd_url, address),
        return_exceptions=True,
    )
    # Report the account lookup first so the error for an address doesn't depend on timing
    for outcome in (sequence, staked_amount):
        if isinstance(outcome, BaseException):
            raise outcome

    record = AccountRecord(
        address=address,
        sequence=sequence,
        airdrop_amount=allocation.amount,
        staked_amount=staked_amount,
    )
    logging.info(f"Snapshot for {address}: sequence={sequence}, staked={staked_amount}")
    if progress is not None:
        progress(record)
    return record


async def _run_batch(session: aiohttp.ClientSession, allocations: List[AllocationInput], lcd_url: str,
                     policy: JoinPolicy, prefix: str, normalize: bool,
                     progress: Optional[ProgressSink]) -> SnapshotReport:
    total_accounts = len(allocations)

    async def process_single_account(allocation: AllocationInput, index: int) -> AccountRecord:
        logging.info(f"Processing account {index + 1}/{total_accounts} - {allocation.address}")
        return await aggregate_account(session, lcd_url, allocation, prefix, normalize, progress)

    tasks = [
        asyncio.ensure_future(process_single_account(allocation, index))
        for index, allocation in enumerate(allocations)
    ]

    if policy is JoinPolicy.FAIL_FAST:
        try:
            records = await asyncio.gather(*tasks)
        except Exception:
            for task in tasks:
                task.cancel()
            raise
        return SnapshotReport(records=list(records))

    results = await asyncio.gather(*tasks, return_exceptions=True)
    report = SnapshotReport()
    for allocation, result in zip(allocations, results):
        if isinstance(result, SnapshotError):
            logging.warning(result.describe())
            report.failures.append(AccountFailure(address=allocation.address, error=result))
        elif isinstance(result, BaseException):
            raise result
        else:
            report.records.append(result)
    return report


async def process_accounts_concurrently(allocations: Iterable[AllocationInput], lcd_url: str = MARS_LCD_URL,
                                        session: Optional[aiohttp.ClientSession] = None,
                                        policy: JoinPolicy = JoinPolicy.COLLECT_ALL,
                                        prefix: str = MARS_PREFIX, normalize: bool = True,
                                        progress: Optional[ProgressSink] = print_record,
                                        max_accounts: Optional[int] = MAX_ACCOUNTS,
                                        timeout: aiohttp.ClientTimeout = SESSION_TIMEOUT) -> SnapshotReport:
    """Snapshot every allocation concurrently, one task per address.

    With COLLECT_ALL, failed addresses are reported in `failures` and the
    successful records keep input order. With FAIL_FAST the first
    SnapshotError propagates and the remaining tasks are cancelled.
    `max_accounts` caps the batch; None or 0 disables the cap.
    """
    allocations = list(allocations)
    if max_accounts and len(allocations) > max_accounts:
        logging.warning(f"Truncating batch from {len(allocations)} to {max_accounts} accounts")
        allocations = allocations[:max_accounts]

    if session is None:
        async with aiohttp.ClientSession(timeout=timeout) as own_session:
            return await _run_batch(own_session, allocations, lcd_url, policy, prefix, normalize, progress)
    return await _run_batch(session, allocations, lcd_url, policy, prefix, normalize, progress)
