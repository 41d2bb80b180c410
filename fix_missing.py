#!/usr/bin/env python3
"""
fix_missing.py - Find and repair PHP files missing from the plaintext tree

Compares the encoded source tree with the destination tree by file key:
1. Find source PHP files with no counterpart in the destination
2. Classify each missing file fresh (never trusts earlier runs)
3. Write a JSON snapshot report (timestamp, counts, keys)
4. Copy missing plain files
5. Decode missing encoded files through the remote decoder

Decode outcomes are also recorded in the progress ledger so decode.py and
this script agree on what has been done.

Usage:
    python fix_missing.py                      # uses config_external.yaml
    python fix_missing.py --report-only        # write the report, change nothing
"""

import sys
import time
import logging
import argparse
from pathlib import Path
from typing import Callable, Dict, List

from playwright.sync_api import Error as PlaywrightError

from decode import decode_queue
from lib.browser import open_decode_session
from lib.config import RunConfig, ConfigError, load_config
from lib.decoder_session import SessionError
from lib.inventory import FileRecord, diff_trees, split_by_encoding, write_missing_report
from lib.ledger import ProgressLedger
from lib.transfer import copy_records

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def _find_and_copy(config: RunConfig, stats: Dict[str, int], report_only: bool) -> List[FileRecord]:
    """Steps 1-3. Returns the missing encoded files still to decode."""
    print("\n[Step 1] Finding missing files...")
    missing = diff_trees(config.source_dir, config.dest_dir)
    stats['missing'] = len(missing)
    print(f"  Missing files: {len(missing)}")

    if not missing:
        print("\n  ✓ All files are present in destination!")
        return []

    print("\n[Step 2] Analyzing missing files...")
    encoded, plain = split_by_encoding(missing)
    encoded_keys = {r.key for r in encoded}
    for record in missing:
        tag = 'ENCODED' if record.key in encoded_keys else 'PLAIN'
        print(f"  [{tag}] {record.key}")
    stats['encoded'] = len(encoded)
    stats['plain'] = len(plain)
    print(f"\n  Plain (not encoded): {len(plain)}")
    print(f"  Encoded (need decode): {len(encoded)}")

    write_missing_report(config.report_file, encoded, plain)

    if report_only:
        return []

    if plain:
        print("\n[Step 3] Copying plain PHP files...")
        stats['copied'] = copy_records(plain, config.dest_dir)
        print(f"  Total copied: {stats['copied']}")

    if not encoded:
        print("\n  No encoded files to process.")
    return encoded


def _abort(stats: Dict[str, int], error: Exception):
    stats['aborted'] = 1
    logger.error(f"Fatal error: {error}")
    print("\nRun the script again to retry the remaining files.")


def repair(
    config: RunConfig,
    session_factory=open_decode_session,
    sleep: Callable[[float], None] = time.sleep,
    report_only: bool = False,
) -> Dict[str, int]:
    """
    Run the repair workflow.

    Returns:
        Statistics dict: missing, plain, encoded, copied, decoded, failed, aborted
    """
    stats = {
        'missing': 0, 'plain': 0, 'encoded': 0,
        'copied': 0, 'decoded': 0, 'failed': 0, 'aborted': 0,
    }

    try:
        encoded = _find_and_copy(config, stats, report_only)
    except OSError as e:
        _abort(stats, e)
        return stats

    if not encoded:
        return stats

    print(f"\n[Step 4] Decoding {len(encoded)} encoded files...")
    ledger = ProgressLedger.load(config.progress_file)
    try:
        with session_factory(config) as session:
            decode_queue(
                session, encoded, ledger, stats,
                delay=config.delay_between_files, sleep=sleep,
            )
    except (SessionError, PlaywrightError, OSError) as e:
        _abort(stats, e)

    return stats


def print_stats(stats: Dict[str, int], report_only: bool):
    print("\n" + "=" * 60)
    if stats['aborted']:
        print("REPAIR ABORTED")
    elif report_only:
        print("REPORT ONLY (nothing was copied or decoded)")
    else:
        print("Processing complete!")
    print("=" * 60)
    print(f"  Missing:                {stats['missing']:5d}")
    print(f"  Plain files copied:     {stats['copied']:5d}")
    print(f"  Encoded files decoded:  {stats['decoded']:5d}")
    print(f"  Failed:                 {stats['failed']:5d}")
    print("=" * 60)


def main():
    parser = argparse.ArgumentParser(
        description='Find and repair PHP files missing from the plaintext tree',
        epilog="""
Examples:
  python fix_missing.py                     # Copy/decode everything missing
  python fix_missing.py --report-only       # Only write the missing-files report
        """
    )
    parser.add_argument('--config', type=Path, default=Path('config_external.yaml'),
                        help='Configuration file (default: config_external.yaml)')
    parser.add_argument('--source', '-s', type=Path, default=None,
                        help='Encoded source tree (default: from config)')
    parser.add_argument('--dest', '-d', type=Path, default=None,
                        help='Plaintext destination tree (default: from config)')
    parser.add_argument('--report', type=Path, default=None,
                        help='Report JSON path (default: from config)')
    parser.add_argument('--report-only', action='store_true',
                        help='Write the report without copying or decoding')

    args = parser.parse_args()

    try:
        config = load_config(args.config, {
            'source_dir': args.source,
            'dest_dir': args.dest,
            'report_file': args.report,
        })
    except ConfigError as e:
        logger.error(str(e))
        return 1

    if not config.source_dir.is_dir():
        logger.error(f"Source directory not found: {config.source_dir}")
        return 1

    print("=" * 60)
    print("Compare and Fix Missing PHP Files")
    print("=" * 60)

    stats = repair(config, report_only=args.report_only)
    print_stats(stats, args.report_only)

    return 1 if stats['aborted'] else 0


if __name__ == '__main__':
    sys.exit(main())
