#!/usr/bin/env python3
"""
lib/detector.py - Encoded vs plain PHP detection

Reads a bounded prefix of each file and decides whether it is an encoded
(obfuscated) payload that must go through the remote decoder, or plain
source that can be copied as-is.

Two tiers:
1. Strong signature match on the prefix text (short-circuits)
2. Binary heuristic: NUL present + >20% non-printable + no source keywords

Never raises. An unreadable file is logged and treated as Plain.
"""

import logging
from pathlib import Path

from lib.constants import (
    ENCODED, PLAIN, PREFIX_BYTES,
    ENCODED_MARKERS, ENCODED_HEADER_LITERALS,
    PRINTABLE_CONTROL_BYTES, NON_PRINTABLE_THRESHOLD, SOURCE_KEYWORDS_RE,
)

logger = logging.getLogger(__name__)


def read_prefix(path: Path, limit: int = PREFIX_BYTES) -> bytes:
    """Read at most `limit` bytes from the start of a file"""
    with open(path, 'rb') as f:
        return f.read(limit)


def has_signature(text: str) -> bool:
    """True if the prefix text carries a known encoder marker or header"""
    lower = text.lower()
    if any(marker in lower for marker in ENCODED_MARKERS):
        return True
    return any(literal in text for literal in ENCODED_HEADER_LITERALS)


def non_printable_ratio(data: bytes) -> float:
    """Share of bytes that are neither printable ASCII nor tab/LF/CR"""
    if not data:
        return 0.0
    printable = sum(
        1 for b in data
        if 32 <= b < 127 or b in PRINTABLE_CONTROL_BYTES
    )
    return 1 - printable / len(data)


def classify_bytes(prefix: bytes) -> str:
    """
    Classify a byte prefix as ENCODED or PLAIN.

    Args:
        prefix: First bytes of the file (already truncated by the caller)

    Returns:
        ENCODED or PLAIN
    """
    text = prefix.decode('utf-8', errors='replace')

    if has_signature(text):
        return ENCODED

    if (
        b'\x00' in prefix
        and non_printable_ratio(prefix) > NON_PRINTABLE_THRESHOLD
        and not SOURCE_KEYWORDS_RE.search(text)
    ):
        return ENCODED

    return PLAIN


def classify(path: Path) -> str:
    """Classify a file on disk. Fails open to PLAIN on read errors."""
    try:
        prefix = read_prefix(path)
    except OSError as e:
        logger.error(f"Error reading {path}: {e}")
        return PLAIN
    return classify_bytes(prefix)


def is_encoded(path: Path) -> bool:
    return classify(path) == ENCODED
