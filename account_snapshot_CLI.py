# Copyright 2025 noamasamreen

import argparse
import asyncio
import aiohttp
import logging
import sys
import time
from typing import List, Optional

from account_snapshot import (
    MARS_LCD_URL,
    MAX_ACCOUNTS,
    REQUEST_TIMEOUT,
    JoinPolicy,
    load_allocations,
    process_accounts_concurrently,
    write_failures,
    write_records,
)
from address_normalizer import MARS_PREFIX
from snapshot_errors import InputError, OutputFileError, SnapshotError

DEFAULT_INPUT = "airdrop.json"
OUTPUT_PREFIX = "account_snapshot"

EXIT_OK = 0
EXIT_FAILED_ACCOUNTS = 1
EXIT_INPUT_ERROR = 2
EXIT_OUTPUT_ERROR = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Snapshot account sequence and staked balance for airdrop recipients')
    parser.add_argument('--input', '-i', default=DEFAULT_INPUT,
                        help=f'JSON file with [{{"address", "amount"}}] allocations (default: {DEFAULT_INPUT})')
    parser.add_argument('--output', '-o',
                        help=f'Output JSON file (default: {OUTPUT_PREFIX}_<timestamp>.json)')
    parser.add_argument('--lcd-url', default=MARS_LCD_URL,
                        help=f'REST endpoint of the chain (default: {MARS_LCD_URL})')
    parser.add_argument('--prefix', default=MARS_PREFIX,
                        help=f'Bech32 prefix addresses are normalized to (default: {MARS_PREFIX})')
    parser.add_argument('--no-normalize', action='store_true',
                        help='Use input addresses as-is')
    parser.add_argument('--max-accounts', type=int, default=MAX_ACCOUNTS,
                        help=f'Only process the first N allocations, 0 for all (default: {MAX_ACCOUNTS})')
    parser.add_argument('--fail-fast', action='store_true',
                        help='Abort the whole batch on the first failed account')
    parser.add_argument('--failures', help='Write failed accounts to this JSON file')
    parser.add_argument('--timeout', type=float, default=REQUEST_TIMEOUT,
                        help=f'Per-request timeout in seconds (default: {REQUEST_TIMEOUT})')
    parser.add_argument('--log-file', help=f'Log file (default: {OUTPUT_PREFIX}_<timestamp>.log)')
    return parser


def configure_logging(log_output: str) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_output),
            logging.StreamHandler()
        ]
    )


async def generate_snapshot(args: argparse.Namespace, json_output: str) -> int:
    """Run the snapshot for the parsed arguments and write the results"""
    try:
        allocations = load_allocations(args.input)
    except InputError as e:
        print(e.describe(), file=sys.stderr)
        return EXIT_INPUT_ERROR

    logging.info(f"Loaded {len(allocations)} allocations from {args.input}")
    policy = JoinPolicy.FAIL_FAST if args.fail_fast else JoinPolicy.COLLECT_ALL

    try:
        report = await process_accounts_concurrently(
            allocations,
            lcd_url=args.lcd_url,
            policy=policy,
            prefix=args.prefix,
            normalize=not args.no_normalize,
            max_accounts=args.max_accounts,
            timeout=aiohttp.ClientTimeout(total=args.timeout),
        )
    except SnapshotError as e:
        print(e.describe(), file=sys.stderr)
        logging.error(f"Snapshot aborted, nothing written: {e.describe()}")
        return EXIT_FAILED_ACCOUNTS

    for failure in report.failures:
        print(failure.error.describe(), file=sys.stderr)

    try:
        write_records(report.records, json_output)
        logging.info(f"Wrote {len(report.records)} records to {json_output}")

        if args.failures:
            write_failures(report.failures, args.failures)
            logging.info(f"Wrote {len(report.failures)} failures to {args.failures}")
    except OutputFileError as e:
        print(e.describe(), file=sys.stderr)
        logging.error(e.describe())
        return EXIT_OUTPUT_ERROR

    return EXIT_OK if report.ok else EXIT_FAILED_ACCOUNTS


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    timestamp = time.strftime("%Y%m%d_%H%M%S")
    json_output = args.output or f"{OUTPUT_PREFIX}_{timestamp}.json"
    configure_logging(args.log_file or f"{OUTPUT_PREFIX}_{timestamp}.log")

    return asyncio.run(generate_snapshot(args, json_output))


if __name__ == "__main__":
    sys.exit(main())
