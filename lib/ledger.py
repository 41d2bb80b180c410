#!/usr/bin/env python3
"""
Progress ledger with persistent JSON storage

Tracks which encoded files have been decoded (processed) and which attempts
failed, so an interrupted batch can resume where it stopped. Every mutation
rewrites the whole document before returning: a crash loses at most the
file in flight.

Document format:
    {"processed": ["dir/a.php", ...], "failed": ["b.php", ...]}

`failed` is advisory. A key can sit in both lists once a retry succeeds.
"""

import json
import logging
import os
from pathlib import Path
from typing import Dict, List

logger = logging.getLogger(__name__)


def _key_list(data: Dict, name: str, path: Path) -> List[str]:
    """String keys under data[name]. Anything other than a list counts as empty."""
    value = data.get(name)
    if value is None:
        return []
    if not isinstance(value, list):
        logger.warning(f"Progress file {path}: '{name}' is not a list, ignoring it")
        return []
    return [k for k in value if isinstance(k, str)]


class ProgressLedger:
    """Resumable record of per-file decode outcomes"""

    def __init__(self, path: Path, processed: List[str] = None, failed: List[str] = None):
        self.path = path
        self.processed: List[str] = list(processed or [])
        self.failed: List[str] = list(failed or [])
        self._processed_set = set(self.processed)
        self._failed_set = set(self.failed)

    @classmethod
    def load(cls, path: Path) -> 'ProgressLedger':
        """Load ledger from JSON file. Missing or unreadable files give an empty ledger."""
        if not path.exists():
            logger.info(f"No progress file at {path}, starting fresh")
            return cls(path)

        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not load progress from {path}: {e}. Starting fresh.")
            return cls(path)

        if not isinstance(data, dict):
            logger.warning(f"Progress file {path} is not a JSON object. Starting fresh.")
            return cls(path)

        processed = _key_list(data, 'processed', path)
        failed = _key_list(data, 'failed', path)
        # Drop duplicates while keeping first-seen order
        ledger = cls(path, list(dict.fromkeys(processed)), list(dict.fromkeys(failed)))
        logger.info(
            f"Loaded progress: {len(ledger.processed)} processed, {len(ledger.failed)} failed"
        )
        return ledger

    def to_dict(self) -> Dict[str, List[str]]:
        return {'processed': list(self.processed), 'failed': list(self.failed)}

    def save(self) -> bool:
        """
        Write the full document to disk.

        Writes to a sibling temp file and swaps it in, so readers never see a
        half-written ledger.

        Returns:
            True if the ledger reached disk, False if the write failed
        """
        tmp_path = self.path.with_name(self.path.name + '.tmp')
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
            logger.debug(f"Saved progress: {len(self.processed)} processed")
            return True
        except OSError as e:
            logger.error(f"Error saving progress to {self.path}: {e}")
            return False

    def mark_processed(self, key: str) -> bool:
        if key not in self._processed_set:
            self._processed_set.add(key)
            self.processed.append(key)
        return self.save()

    def mark_failed(self, key: str) -> bool:
        if key not in self._failed_set:
            self._failed_set.add(key)
            self.failed.append(key)
        return self.save()

    def forget(self, keys, clear_failed: bool = False):
        """Drop keys from processed (and optionally empty failed). Caller saves."""
        drop = set(keys)
        self.processed = [k for k in self.processed if k not in drop]
        self._processed_set -= drop
        if clear_failed:
            self.failed = []
            self._failed_set = set()

    def is_processed(self, key: str) -> bool:
        return key in self._processed_set

    def is_failed(self, key: str) -> bool:
        return key in self._failed_set

    def __contains__(self, key: str) -> bool:
        return self.is_processed(key)

    def __len__(self) -> int:
        return len(self.processed)
