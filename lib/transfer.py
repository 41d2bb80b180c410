#!/usr/bin/env python3
"""
lib/transfer.py - Copy and relocate files into the destination tree

- Directory mirroring: every source directory exists under the destination
- Copy: shutil.copy2, overwriting (re-running is idempotent)
- Relocate (staged download -> destination):
    same filesystem  -> os.replace (atomic)
    cross filesystem -> shutil.copy2 to a temp file + size verify +
                        os.replace onto dest + delete staged file
"""

import os
import shutil
import logging
from pathlib import Path
from typing import Iterable

from lib.inventory import FileRecord

logger = logging.getLogger(__name__)


def same_filesystem(path_a: Path, path_b: Path) -> bool:
    """Check if two paths are on the same filesystem"""
    try:
        return os.stat(path_a).st_dev == os.stat(path_b).st_dev
    except OSError:
        return False


def mirror_directories(source_root: Path, dest_root: Path) -> int:
    """
    Create every directory of source_root under dest_root.

    Returns:
        Number of directories created
    """
    created = 0
    dest_root.mkdir(parents=True, exist_ok=True)
    for dirpath, dirnames, _ in os.walk(source_root, onerror=_raise):
        rel = Path(dirpath).relative_to(source_root)
        for name in dirnames:
            target = dest_root / rel / name
            if not target.exists():
                target.mkdir(parents=True, exist_ok=True)
                created += 1
    return created


def _raise(error: OSError):
    raise error


def copy_file(source: Path, dest: Path):
    """Copy one file, creating the destination directory"""
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(str(source), str(dest))


def copy_records(records: Iterable[FileRecord], dest_root: Path) -> int:
    """
    Copy records to their mirrored location under dest_root.

    Returns:
        Number of files copied
    """
    count = 0
    for record in records:
        copy_file(record.full_path, record.dest_path(dest_root))
        logger.debug(f"Copied: {record.key}")
        count += 1
    return count


def relocate_file(source: Path, dest: Path) -> bool:
    """
    Move a staged file to its final destination, replacing any existing file.

    The destination path only ever holds a complete file. Across filesystems
    the copy lands in a sibling temp file that is renamed onto dest once its
    size matches the source.

    Args:
        source: Staged file path
        dest: Destination file path

    Returns:
        True if successful, False if the cross-filesystem copy failed to verify
    """
    dest.parent.mkdir(parents=True, exist_ok=True)

    if same_filesystem(source, dest.parent):
        os.replace(source, dest)
        return True

    # Cross-filesystem: copy to temp, verify, rename, delete
    temp = dest.with_name(dest.name + '.tmp')
    try:
        shutil.copy2(str(source), str(temp))

        if temp.stat().st_size != source.stat().st_size:
            logger.error(f"Verification failed: {dest} (size mismatch)")
            temp.unlink()
            return False

        os.replace(temp, dest)
    except OSError:
        if temp.exists():
            temp.unlink()  # Clean up partial copy
        raise

    source.unlink()
    return True
