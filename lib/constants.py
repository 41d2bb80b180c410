#!/usr/bin/env python3
"""
Shared constants for the decode pipeline

Single source of truth for encoding signatures, remote UI matcher tables,
and default timings. DO NOT duplicate these lists in other modules - import
from here instead.
"""

import re

# Classification tags
ENCODED = 'Encoded'
PLAIN = 'Plain'

PHP_SUFFIX = '.php'

# Only the first PREFIX_BYTES of a file are inspected
PREFIX_BYTES = 4096

# Strong signatures: any hit classifies the file as Encoded immediately.
# Markers are matched against the lower-cased prefix, header literals
# against the raw text.
ENCODED_MARKERS = [
    'ioncube',
]
ENCODED_HEADER_LITERALS = [
    '<?php //0',  # loader stub header
    'HR+c',       # base64 payload opener
]

# Binary heuristic
PRINTABLE_CONTROL_BYTES = {9, 10, 13}  # tab, LF, CR
NON_PRINTABLE_THRESHOLD = 0.2
SOURCE_KEYWORDS_RE = re.compile(
    r'\b(class|function|static|array|return|extends|implements)\b',
    re.IGNORECASE,
)

# ---------------------------------------------------------------------------
# Remote UI matcher tables
#
# Ordered: first selector that resolves to an element wins. Edit these when
# the decoder site changes its markup; orchestration code never inlines them.
# ---------------------------------------------------------------------------

LOGIN_USERNAME_SELECTORS = [
    'input[name="email"]',
    'input[name="username"]',
    'input[name="user"]',
    'input[name="login"]',
    'input[type="email"]',
    'input[type="text"]',
]

LOGIN_PASSWORD_SELECTORS = [
    'input[name="password"]',
    'input[name="pass"]',
    'input[type="password"]',
]

LOGIN_SUBMIT_SELECTORS = [
    'button[type="submit"]',
    'input[type="submit"]',
    'button:has-text("Login")',
    'button:has-text("login")',
    'input[value="Login"]',
    'input[value="login"]',
    '.btn-primary',
    'button.btn',
]

# Upload field names look like "100612[]", so match on type only
ANY_FILE_INPUT = 'input[type="file"]'
FILE_INPUT_SELECTORS = [
    'form[enctype="multipart/form-data"] input[type="file"]',
    ANY_FILE_INPUT,
]

DECODE_SUBMIT_SELECTORS = [
    'input[value="Decode"]',
    'input[name="submit"]',
    'form[enctype="multipart/form-data"] input[type="submit"]',
    'input.btn-primary[type="submit"]',
    'input[type="submit"]',
]

RESULTS_TABLE_SELECTOR = 'table.table-bordered'
DOWNLOAD_ANCHOR_SELECTOR = 'a[href*="download"]'
DOWNLOAD_HREF_MARKER = 'download?id='

# ---------------------------------------------------------------------------
# Timings (seconds)
# ---------------------------------------------------------------------------

DEFAULT_TIMEOUTS = {
    'page_load': 30,
    'element': 10,
    'login': 60,
    'results': 120,
    'download': 60,
}

# Short pauses that let the remote page settle between steps
SETTLE_AFTER_NAVIGATE = 1.0
SETTLE_BEFORE_SUBMIT = 0.5
SETTLE_AFTER_RESULTS = 2.0
SETTLE_AFTER_LOGIN = 3.0
SETTLE_BEFORE_LOGIN = 2.0
SETTLE_BEFORE_RELOCATE = 0.5

DEFAULT_MAX_RETRIES = 3
DEFAULT_DELAY_BETWEEN_FILES = 2.0
