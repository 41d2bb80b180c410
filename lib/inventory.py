#!/usr/bin/env python3
"""
lib/inventory.py - Source tree inventory and tree diff

Walks a source tree, splits files into PHP / non-PHP by suffix, and (for the
repair workflow) diffs a source tree against a destination tree by file key.

A file key is the relative directory plus file name, '/'-separated, with no
leading separator: "admin/controllers/user.php", or "index.php" at the root.
Keys are identical across the source and destination trees and across runs.

Classification is never cached here. Callers classify fresh every run.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterator, List, Tuple

from lib.constants import ENCODED, PHP_SUFFIX
from lib.detector import classify

logger = logging.getLogger(__name__)


def make_key(relative_dir: str, file_name: str) -> str:
    """Build the normalized file key"""
    return f"{relative_dir}/{file_name}".lstrip('/')


@dataclass(frozen=True)
class FileRecord:
    """One file in the source tree"""
    full_path: Path
    relative_dir: str  # '/'-separated, '' for the tree root
    file_name: str

    @property
    def key(self) -> str:
        return make_key(self.relative_dir, self.file_name)

    @property
    def is_php(self) -> bool:
        return self.file_name.lower().endswith(PHP_SUFFIX)

    def dest_path(self, dest_root: Path) -> Path:
        """Mirror this file's relative location under dest_root"""
        folder = dest_root / self.relative_dir if self.relative_dir else dest_root
        return folder / self.file_name


@dataclass
class Inventory:
    """PHP / non-PHP partition of a source tree"""
    php_files: List[FileRecord] = field(default_factory=list)
    non_php_files: List[FileRecord] = field(default_factory=list)


def walk_files(root: Path) -> Iterator[FileRecord]:
    """
    Yield a FileRecord for every file under root, depth-first, sorted by name.

    OSErrors (permissions, vanished directories) propagate to the caller.
    """
    def _walk(directory: Path) -> Iterator[FileRecord]:
        for entry in sorted(directory.iterdir(), key=lambda p: p.name):
            if entry.is_dir():
                yield from _walk(entry)
            else:
                rel = entry.parent.relative_to(root).as_posix()
                yield FileRecord(
                    full_path=entry,
                    relative_dir='' if rel == '.' else rel,
                    file_name=entry.name,
                )

    yield from _walk(root)


def build_inventory(source_root: Path) -> Inventory:
    """Partition every file under source_root by case-insensitive .php suffix"""
    inventory = Inventory()
    for record in walk_files(source_root):
        if record.is_php:
            inventory.php_files.append(record)
        else:
            inventory.non_php_files.append(record)

    logger.info(
        f"Inventory of {source_root}: {len(inventory.php_files)} PHP, "
        f"{len(inventory.non_php_files)} other"
    )
    return inventory


def split_by_encoding(records: List[FileRecord]) -> Tuple[List[FileRecord], List[FileRecord]]:
    """
    Classify each record fresh from its bytes.

    Returns:
        (encoded, plain) preserving input order
    """
    encoded: List[FileRecord] = []
    plain: List[FileRecord] = []
    for record in records:
        if classify(record.full_path) == ENCODED:
            encoded.append(record)
        else:
            plain.append(record)
    return encoded, plain


def php_keys(root: Path) -> set:
    return {r.key for r in walk_files(root) if r.is_php}


def diff_trees(source_root: Path, dest_root: Path) -> List[FileRecord]:
    """
    Find source PHP files with no counterpart (by key) in the destination.

    Args:
        source_root: Encoded mirror
        dest_root: Plaintext mirror (may not exist yet)

    Returns:
        Source FileRecords whose key is absent from dest_root, in walk order
    """
    source_files = [r for r in walk_files(source_root) if r.is_php]
    dest_keys = php_keys(dest_root) if dest_root.exists() else set()

    missing = [r for r in source_files if r.key not in dest_keys]
    logger.info(
        f"Diff: {len(source_files)} PHP in source, {len(dest_keys)} in destination, "
        f"{len(missing)} missing"
    )
    return missing


def build_missing_report(encoded: List[FileRecord], plain: List[FileRecord]) -> Dict:
    return {
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'totalMissing': len(encoded) + len(plain),
        'plainFiles': [r.key for r in plain],
        'encodedFiles': [r.key for r in encoded],
    }


def write_missing_report(path: Path, encoded: List[FileRecord], plain: List[FileRecord]) -> Dict:
    """Write the missing-files snapshot as JSON and return it"""
    report = build_missing_report(encoded, plain)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(report, f, indent=2, ensure_ascii=False)
    logger.info(f"Report saved to: {path}")
    return report
