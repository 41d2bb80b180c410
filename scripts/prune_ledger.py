#!/usr/bin/env python3
"""
Drop ledger entries whose decoded file is no longer in the destination tree.

A key in `processed` promises the decoded file exists under dest_dir. If files
were deleted by hand (bad decode, wrong version), decode.py would keep
skipping them. This script removes those keys so the next run decodes them
again. The ledger is backed up before any change.

Usage:
    python scripts/prune_ledger.py                    # uses config_external.yaml
    python scripts/prune_ledger.py --dry-run          # report only
    python scripts/prune_ledger.py --clear-failed     # also empty the failed list
"""

import sys
import shutil
import argparse
from datetime import datetime
from pathlib import Path
from typing import List

sys.path.insert(0, str(Path(__file__).parent.parent))

from lib.config import ConfigError, load_config
from lib.ledger import ProgressLedger


def backup_ledger(ledger_path: Path) -> Path:
    """Copy the ledger to ledger_backups/ next to it, timestamped"""
    backup_dir = ledger_path.parent / 'ledger_backups'
    backup_dir.mkdir(exist_ok=True, parents=True)

    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    backup_path = backup_dir / f"{ledger_path.stem}_backup_{timestamp}.json"

    shutil.copy2(ledger_path, backup_path)
    print(f"✓ Backed up to {backup_path}")
    return backup_path


def find_stale_keys(ledger: ProgressLedger, dest_root: Path) -> List[str]:
    """Processed keys with no file at dest_root/<key>"""
    return [key for key in ledger.processed if not (dest_root / key).is_file()]


def prune_ledger(ledger_path: Path, dest_root: Path, clear_failed: bool = False,
                 dry_run: bool = False) -> List[str]:
    """
    Remove stale processed keys from the ledger.

    Returns:
        The stale keys (removed unless dry_run)
    """
    if not ledger_path.exists():
        print(f"No ledger at {ledger_path}")
        return []

    ledger = ProgressLedger.load(ledger_path)
    stale = find_stale_keys(ledger, dest_root)

    print(f"\nLedger: {ledger_path}")
    print(f"  Processed entries: {len(ledger.processed)}")
    print(f"  Failed entries:    {len(ledger.failed)}")
    print(f"  Stale (missing in destination): {len(stale)}")
    for key in stale:
        print(f"    {key}")

    if dry_run or (not stale and not clear_failed):
        return stale

    backup_ledger(ledger_path)
    ledger.forget(stale, clear_failed=clear_failed)
    if not ledger.save():
        raise OSError(f"Could not write {ledger_path}")

    print(f"✓ Removed {len(stale)} entries")
    if clear_failed:
        print("✓ Cleared failed list")
    return stale


def main():
    parser = argparse.ArgumentParser(description='Prune stale entries from the decode ledger')
    parser.add_argument('--config', type=Path, default=Path('config_external.yaml'),
                        help='Configuration file (default: config_external.yaml)')
    parser.add_argument('--clear-failed', action='store_true',
                        help='Also empty the failed list')
    parser.add_argument('--dry-run', action='store_true',
                        help='Report stale entries without changing the ledger')
    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Error: {e}")
        return 1

    prune_ledger(config.progress_file, config.dest_dir,
                 clear_failed=args.clear_failed, dry_run=args.dry_run)
    return 0


if __name__ == '__main__':
    sys.exit(main())
