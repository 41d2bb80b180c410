#!/usr/bin/env python3
"""
decode.py - Mirror an encoded PHP tree into a plaintext tree (v1.0)

Steps:
1. Create the destination directory structure
2. Copy non-PHP files
3. Classify PHP files (encoded vs plain), fresh every run
4. Copy plain PHP files
5. Load the progress ledger, queue encoded files not yet processed
6. Log in once and decode the queue through the remote decoder, one file at
   a time, recording every outcome in the ledger as it happens

Resumable: re-running skips files already in the ledger's processed list.
If nothing is left to decode, the browser is never launched.

Usage:
    python decode.py                                  # uses config_external.yaml
    python decode.py --config my_config.yaml
    python decode.py --dry-run                        # classify and report only
"""

import sys
import time
import logging
import argparse
from pathlib import Path
from typing import Callable, Dict, List

from playwright.sync_api import Error as PlaywrightError

from lib.browser import open_decode_session
from lib.config import RunConfig, ConfigError, load_config
from lib.decoder_session import SessionError
from lib.inventory import FileRecord, build_inventory, split_by_encoding
from lib.ledger import ProgressLedger
from lib.transfer import mirror_directories, copy_records

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def new_stats() -> Dict[str, int]:
    return {
        'directories': 0,
        'non_php_copied': 0,
        'php_total': 0,
        'encoded': 0,
        'plain': 0,
        'plain_copied': 0,
        'previously_processed': 0,
        'remaining': 0,
        'decoded': 0,
        'failed': 0,
        'aborted': 0,
    }


def pending_files(encoded: List[FileRecord], ledger: ProgressLedger) -> List[FileRecord]:
    """Encoded files whose key is not yet in the ledger's processed list"""
    return [r for r in encoded if not ledger.is_processed(r.key)]


def decode_queue(
    session,
    queue: List[FileRecord],
    ledger: ProgressLedger,
    stats: Dict[str, int],
    delay: float,
    sleep: Callable[[float], None] = time.sleep,
    offset: int = 0,
    total: int = None,
):
    """
    Decode files strictly one after another, persisting each outcome.

    Args:
        session: Logged-in DecodeSession
        queue: Files to decode, in order
        ledger: Progress ledger, updated after every file
        stats: Counter dict, 'decoded' and 'failed' are incremented
        delay: Pause after every file regardless of outcome (seconds)
        offset: Files already done before this queue (for the progress counter)
        total: Overall count shown in the progress counter
    """
    total = total if total is not None else len(queue)

    for i, record in enumerate(queue, 1):
        print(f"\n  [{offset + i}/{total}] {record.key}")

        outcome = session.decode(record)
        if outcome.success:
            ledger.mark_processed(record.key)
            stats['decoded'] += 1
        else:
            ledger.mark_failed(record.key)
            stats['failed'] += 1
            logger.warning(
                f"Failed: {record.key} ({outcome.reason or 'unknown error'}, "
                f"{outcome.attempts} attempt(s))"
            )

        sleep(delay)


class DecodeBatch:
    """End-to-end run: copy what needs no decoding, decode the rest"""

    def __init__(
        self,
        config: RunConfig,
        session_factory=open_decode_session,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.session_factory = session_factory
        self.sleep = sleep
        self.stats = new_stats()

    def _copy_phase(self, dry_run: bool) -> List[FileRecord]:
        """Steps 1-4. Returns the encoded PHP files."""
        cfg = self.config

        print("\n[Step 1] Creating directory structure...")
        if not dry_run:
            self.stats['directories'] = mirror_directories(cfg.source_dir, cfg.dest_dir)
            print(f"  Created: {self.stats['directories']} directories")

        inventory = build_inventory(cfg.source_dir)

        print("\n[Step 2] Copying non-PHP files...")
        if dry_run:
            print(f"  Would copy: {len(inventory.non_php_files)} files")
        else:
            self.stats['non_php_copied'] = copy_records(inventory.non_php_files, cfg.dest_dir)
            print(f"  Total: {self.stats['non_php_copied']} files")

        print("\n[Step 3] Analyzing PHP files...")
        encoded, plain = split_by_encoding(inventory.php_files)
        self.stats['php_total'] = len(inventory.php_files)
        self.stats['encoded'] = len(encoded)
        self.stats['plain'] = len(plain)
        print(f"  Found {len(inventory.php_files)} PHP files")
        print(f"  Encoded: {len(encoded)}")
        print(f"  Plain: {len(plain)}")

        print("\n[Step 4] Copying plain PHP files...")
        if dry_run:
            print(f"  Would copy: {len(plain)} files")
        else:
            self.stats['plain_copied'] = copy_records(plain, cfg.dest_dir)
            print(f"  Copied: {self.stats['plain_copied']} files")

        return encoded

    def run(self, dry_run: bool = False) -> Dict[str, int]:
        """
        Execute one full run.

        Returns:
            Statistics dict ('aborted' is 1 if a fatal error stopped the batch)
        """
        cfg = self.config
        try:
            encoded = self._copy_phase(dry_run)
        except OSError as e:
            self._abort(e)
            return self.stats

        print("\n[Step 5] Checking progress...")
        ledger = ProgressLedger.load(cfg.progress_file)
        remaining = pending_files(encoded, ledger)
        done = len(encoded) - len(remaining)
        self.stats['previously_processed'] = done
        self.stats['remaining'] = len(remaining)
        print(f"  Previously processed: {done}")
        print(f"  Remaining: {len(remaining)}")

        if not remaining:
            print("\n  No encoded files left to decode.")
            return self.stats

        if dry_run:
            for record in remaining:
                print(f"  [ENCODED] {record.key}")
            return self.stats

        print(f"\n[Step 6] Decoding {len(remaining)} encoded files...")
        try:
            with self.session_factory(cfg) as session:
                decode_queue(
                    session, remaining, ledger, self.stats,
                    delay=cfg.delay_between_files, sleep=self.sleep,
                    offset=done, total=len(encoded),
                )
        except (SessionError, PlaywrightError, OSError) as e:
            self._abort(e)

        return self.stats

    def _abort(self, error: Exception):
        self.stats['aborted'] = 1
        logger.error(f"Fatal error: {error}")
        print("\nProgress has been saved. Run the script again to resume.")


def print_stats(stats: Dict[str, int], dry_run: bool):
    """Print summary statistics"""
    print("\n" + "=" * 60)
    if dry_run:
        print("DRY RUN SUMMARY (nothing was copied or decoded)")
    elif stats['aborted']:
        print("DECODE ABORTED")
    else:
        print("Processing complete!")
    print("=" * 60)
    print(f"  Non-PHP copied:       {stats['non_php_copied']:5d}")
    print(f"  Plain PHP copied:     {stats['plain_copied']:5d}")
    print(f"  Encoded PHP:          {stats['encoded']:5d}")
    print(f"  Already processed:    {stats['previously_processed']:5d}")
    print(f"  Successfully decoded: {stats['decoded']:5d}")
    print(f"  Failed:               {stats['failed']:5d}")
    print("=" * 60)

    if dry_run:
        print("\nTo execute, run again without --dry-run")


def main():
    parser = argparse.ArgumentParser(
        description='Mirror an encoded PHP tree into a plaintext tree (v1.0)',
        epilog="""
Examples:
  python decode.py                              # Full run with config_external.yaml
  python decode.py --dry-run                    # Classify and show the decode queue
  python decode.py --source ./code --dest ./src # Override tree paths
        """
    )
    parser.add_argument('--config', type=Path, default=Path('config_external.yaml'),
                        help='Configuration file (default: config_external.yaml)')
    parser.add_argument('--source', '-s', type=Path, default=None,
                        help='Encoded source tree (default: from config)')
    parser.add_argument('--dest', '-d', type=Path, default=None,
                        help='Plaintext destination tree (default: from config)')
    parser.add_argument('--dry-run', action='store_true',
                        help='Classify and report without copying or decoding')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Debug logging (per-step decode states)')

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = load_config(args.config, {'source_dir': args.source, 'dest_dir': args.dest})
    except ConfigError as e:
        logger.error(str(e))
        return 1

    # Hard gate: source tree must exist
    if not config.source_dir.is_dir():
        logger.error(f"Source directory not found: {config.source_dir}")
        return 1

    print("=" * 60)
    print("PHP Decoder - Encoded to Plaintext Mirror")
    print(f"Source:      {config.source_dir}")
    print(f"Destination: {config.dest_dir}")
    print("=" * 60)

    stats = DecodeBatch(config).run(dry_run=args.dry_run)
    print_stats(stats, args.dry_run)

    return 1 if stats['aborted'] else 0


if __name__ == '__main__':
    sys.exit(main())
