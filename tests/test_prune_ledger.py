#!/usr/bin/env python3
"""
Test suite for scripts/prune_ledger.py
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent.parent / 'scripts'))

from lib.ledger import ProgressLedger
from prune_ledger import prune_ledger


def setup_ledger(tmp_path):
    dest = tmp_path / 'dst'
    (dest / 'app').mkdir(parents=True)
    (dest / 'app' / 'kept.php').write_text("<?php")
    ledger_path = tmp_path / 'output' / 'decode_progress.json'
    ProgressLedger(ledger_path, ['app/kept.php', 'app/deleted.php'], ['x.php']).save()
    return ledger_path, dest


class TestPruneLedger:
    def test_drops_keys_without_destination_file(self, tmp_path):
        ledger_path, dest = setup_ledger(tmp_path)

        stale = prune_ledger(ledger_path, dest)

        assert stale == ['app/deleted.php']
        ledger = ProgressLedger.load(ledger_path)
        assert ledger.processed == ['app/kept.php']
        assert ledger.failed == ['x.php']

    def test_backup_written(self, tmp_path):
        ledger_path, dest = setup_ledger(tmp_path)
        prune_ledger(ledger_path, dest)
        backups = list((ledger_path.parent / 'ledger_backups').iterdir())
        assert len(backups) == 1

    def test_dry_run_leaves_ledger(self, tmp_path):
        ledger_path, dest = setup_ledger(tmp_path)
        before = ledger_path.read_text()

        prune_ledger(ledger_path, dest, dry_run=True)

        assert ledger_path.read_text() == before

    def test_clear_failed(self, tmp_path):
        ledger_path, dest = setup_ledger(tmp_path)
        prune_ledger(ledger_path, dest, clear_failed=True)
        assert ProgressLedger.load(ledger_path).failed == []

    def test_missing_ledger(self, tmp_path):
        assert prune_ledger(tmp_path / 'none.json', tmp_path) == []
