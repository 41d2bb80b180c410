#!/usr/bin/env python3
"""
lib/decoder_session.py - Remote decode state machine

Drives the decoder web form for one file at a time over a single
authenticated browser page. The site has no API: only an upload form and a
results table. Per file:

    Idle -> Navigated -> Uploaded -> Submitted -> ResultsVisible
         -> LinkResolved -> Downloaded -> Relocated

Any step can fail (timeout, missing element, vanished download). Failures are
caught at decode() and returned as a DecodeOutcome. The page and its login
survive and are reused for the next file. Only login failures escape, as
SessionError.

Element lookups go through the ordered selector tables in lib/constants.py.
"""

import time
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Sequence, Tuple
from urllib.parse import urljoin

import requests
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from lib.config import RunConfig
from lib.constants import (
    LOGIN_USERNAME_SELECTORS, LOGIN_PASSWORD_SELECTORS, LOGIN_SUBMIT_SELECTORS,
    ANY_FILE_INPUT, FILE_INPUT_SELECTORS, DECODE_SUBMIT_SELECTORS,
    RESULTS_TABLE_SELECTOR, DOWNLOAD_ANCHOR_SELECTOR, DOWNLOAD_HREF_MARKER,
    SETTLE_AFTER_NAVIGATE, SETTLE_BEFORE_SUBMIT, SETTLE_AFTER_RESULTS,
    SETTLE_BEFORE_LOGIN, SETTLE_AFTER_LOGIN, SETTLE_BEFORE_RELOCATE,
)
from lib.inventory import FileRecord
from lib.transfer import relocate_file

logger = logging.getLogger(__name__)


class DecodeState(str, Enum):
    IDLE = 'Idle'
    NAVIGATED = 'Navigated'
    UPLOADED = 'Uploaded'
    SUBMITTED = 'Submitted'
    RESULTS_VISIBLE = 'ResultsVisible'
    LINK_RESOLVED = 'LinkResolved'
    DOWNLOADED = 'Downloaded'
    RELOCATED = 'Relocated'
    FAILED = 'Failed'


class SessionError(Exception):
    """Session-level failure (login). Aborts the batch."""


class RemoteStepError(Exception):
    """A single decode step could not complete. Scoped to one file."""


@dataclass
class DecodeOutcome:
    """Result of decoding one file"""
    key: str
    success: bool
    state: DecodeState
    dest_path: Optional[Path] = None
    reason: str = ''
    # Last state reached before the final failure
    failed_after: Optional[DecodeState] = None
    attempts: int = 0


# Errors that end one attempt but leave the session usable
STEP_ERRORS = (RemoteStepError, PlaywrightError, OSError, requests.exceptions.RequestException)


def first_match(page, selectors: Sequence[str]) -> Tuple[Optional[str], object]:
    """Return (selector, element) for the first selector present on the page"""
    for selector in selectors:
        element = page.query_selector(selector)
        if element is not None:
            return selector, element
    return None, None


def _ms(seconds: float) -> float:
    return seconds * 1000


class DecodeSession:
    """One authenticated browser page, reused for every file in the batch"""

    def __init__(self, page, config: RunConfig):
        self.page = page
        self.config = config
        self.timeouts = config.timeouts
        self.state = DecodeState.IDLE
        self._staged: Optional[Path] = None

    def _settle(self, seconds: float):
        self.page.wait_for_timeout(_ms(seconds))

    def _advance(self, state: DecodeState):
        self.state = state
        logger.debug(f"  -> {state.value}")

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self):
        """
        Log in once for the whole batch.

        Raises:
            SessionError: login page unreachable, form fields missing, or the
                login form is still showing after submission
        """
        logger.info("Logging in...")
        try:
            self.page.goto(
                self.config.login_url, wait_until='networkidle',
                timeout=_ms(self.timeouts.login),
            )
            self._settle(SETTLE_BEFORE_LOGIN)

            selector, field = first_match(self.page, LOGIN_USERNAME_SELECTORS)
            if field is None:
                raise SessionError("Username field not found on login page")
            field.fill(self.config.username)
            logger.info(f"  Username field found: {selector}")

            selector, field = first_match(self.page, LOGIN_PASSWORD_SELECTORS)
            if field is None:
                raise SessionError("Password field not found on login page")
            field.fill(self.config.password)
            logger.info(f"  Password field found: {selector}")

            if not self._click_login_submit():
                self.page.keyboard.press('Enter')
                logger.info("  Submitted with Enter key")

            self._settle(SETTLE_AFTER_LOGIN)
            try:
                self.page.wait_for_load_state('networkidle')
            except PlaywrightTimeoutError:
                logger.debug("Network did not go idle after login, continuing")

            if self.page.query_selector('input[type="password"]') is not None:
                raise SessionError("Still on login form after submit (check credentials)")
        except PlaywrightError as e:
            raise SessionError(f"Login failed: {e}") from e

        logger.info("Login successful")

    def _click_login_submit(self) -> bool:
        for selector in LOGIN_SUBMIT_SELECTORS:
            try:
                button = self.page.query_selector(selector)
                if button is not None:
                    button.click()
                    logger.info(f"  Submit button found: {selector}")
                    return True
            except PlaywrightError as e:
                logger.debug(f"  Submit candidate {selector} not clickable: {e}")
        return False

    # ------------------------------------------------------------------
    # Per-file decode
    # ------------------------------------------------------------------

    def decode(self, record: FileRecord) -> DecodeOutcome:
        """
        Decode one file, retrying up to config.max_retries times.

        Never raises: the outcome says what happened. Unexpected errors fail
        the file at once without further attempts.
        """
        reason = ''
        failed_after = DecodeState.IDLE
        attempts = max(1, self.config.max_retries)

        for attempt in range(1, attempts + 1):
            self.state = DecodeState.IDLE
            self._staged = None
            try:
                dest = self._attempt(record)
                return DecodeOutcome(
                    key=record.key, success=True, state=DecodeState.RELOCATED,
                    dest_path=dest, attempts=attempt,
                )
            except STEP_ERRORS as e:
                reason = str(e) or e.__class__.__name__
                failed_after = self.state
                logger.warning(
                    f"  Attempt {attempt}/{attempts} failed for {record.key} "
                    f"after {failed_after.value}: {reason}"
                )
                self._discard_staged()
            except Exception as e:
                # Not a known step failure: give up on this file, keep the session
                reason = f"{e.__class__.__name__}: {e}"
                failed_after = self.state
                logger.exception(f"  Unexpected error for {record.key} after {failed_after.value}")
                self._discard_staged()
                attempts = attempt
                break

        self.state = DecodeState.FAILED
        logger.error(f"  ✗ Error: {record.key}: {reason}")
        return DecodeOutcome(
            key=record.key, success=False, state=DecodeState.FAILED,
            reason=reason, failed_after=failed_after, attempts=attempts,
        )

    def _attempt(self, record: FileRecord) -> Path:
        self._navigate()
        self._upload(record)
        self._submit()
        table = self._wait_for_results()
        anchor, href = self._resolve_link(table)
        staged = self._download(anchor, href, record)
        return self._relocate(staged, record)

    def _navigate(self):
        self.page.goto(
            self.config.decoder_url, wait_until='domcontentloaded',
            timeout=_ms(self.timeouts.page_load),
        )
        self._settle(SETTLE_AFTER_NAVIGATE)
        self.page.wait_for_selector(ANY_FILE_INPUT, timeout=_ms(self.timeouts.element))
        self._advance(DecodeState.NAVIGATED)

    def _upload(self, record: FileRecord):
        selector, file_input = first_match(self.page, FILE_INPUT_SELECTORS)
        if file_input is None:
            raise RemoteStepError("File input not found")
        logger.debug(f"  File input found: {selector} name={file_input.get_attribute('name')}")
        file_input.set_input_files(str(record.full_path))
        self._advance(DecodeState.UPLOADED)

    def _submit(self):
        self._settle(SETTLE_BEFORE_SUBMIT)
        selector, button = first_match(self.page, DECODE_SUBMIT_SELECTORS)
        if button is None:
            raise RemoteStepError("Submit button not found")
        logger.debug(f"  Submit button: {selector}")
        button.click()
        self._advance(DecodeState.SUBMITTED)

    def _wait_for_results(self):
        table = self.page.wait_for_selector(
            RESULTS_TABLE_SELECTOR, timeout=_ms(self.timeouts.results),
        )
        if table is None:
            raise RemoteStepError("Results table did not appear")
        self._settle(SETTLE_AFTER_RESULTS)
        self._advance(DecodeState.RESULTS_VISIBLE)
        return table

    def _resolve_link(self, table) -> Tuple[object, str]:
        for anchor in table.query_selector_all(DOWNLOAD_ANCHOR_SELECTOR):
            href = anchor.get_attribute('href') or ''
            if DOWNLOAD_HREF_MARKER in href:
                logger.debug(f"  Download link: {href}")
                self._advance(DecodeState.LINK_RESOLVED)
                return anchor, href
        raise RemoteStepError("Download link not found in table")

    def _download(self, anchor, href: str, record: FileRecord) -> Path:
        download_dir = self.config.download_dir
        download_dir.mkdir(parents=True, exist_ok=True)
        staged = download_dir / f"temp_{int(time.time() * 1000)}_{record.file_name}"
        self._staged = staged

        try:
            with self.page.expect_download(timeout=_ms(self.timeouts.download)) as download_info:
                anchor.click()
            download_info.value.save_as(str(staged))
        except PlaywrightTimeoutError:
            if not self.config.direct_download_fallback:
                raise
            logger.warning(f"  Download event timed out for {record.key}, fetching link directly")
            self._fetch_direct(href, staged)

        self._advance(DecodeState.DOWNLOADED)
        return staged

    def _fetch_direct(self, href: str, staged: Path):
        """Fetch the download URL with the browser's session cookies"""
        url = urljoin(self.page.url, href)
        cookies = {c['name']: c['value'] for c in self.page.context.cookies()}
        response = requests.get(url, cookies=cookies, timeout=self.timeouts.download)
        response.raise_for_status()
        staged.write_bytes(response.content)

    def _relocate(self, staged: Path, record: FileRecord) -> Path:
        self._settle(SETTLE_BEFORE_RELOCATE)
        if not staged.exists():
            raise RemoteStepError("Downloaded file not found")

        dest = record.dest_path(self.config.dest_dir)
        if not relocate_file(staged, dest):
            raise RemoteStepError(f"Could not move download to {dest}")

        self._staged = None
        self._advance(DecodeState.RELOCATED)
        logger.info(f"  ✓ Saved to: {dest}")
        return dest

    def _discard_staged(self):
        staged, self._staged = self._staged, None
        if staged is None or not staged.exists():
            return
        try:
            staged.unlink()
        except OSError as e:
            logger.warning(f"  Could not remove staged file {staged}: {e}")
