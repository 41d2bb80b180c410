#!/usr/bin/env python3
"""
Test suite for lib/decoder_session.py - remote decode state machine

The browser page is a MagicMock: selectors resolve through a dict, the
download context manager yields a fake download that writes bytes to disk.
"""

import pytest
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

sys.path.insert(0, str(Path(__file__).parent.parent))

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from lib.config import RunConfig
from lib.constants import (
    FILE_INPUT_SELECTORS, DECODE_SUBMIT_SELECTORS, RESULTS_TABLE_SELECTOR,
)
from lib.decoder_session import (
    DecodeSession, DecodeState, SessionError, first_match,
)
from lib.inventory import FileRecord

DECODED = b"<?php\nfunction decoded() { return 1; }\n"


@pytest.fixture
def config(tmp_path):
    (tmp_path / 'src' / 'app').mkdir(parents=True)
    return RunConfig(
        source_dir=tmp_path / 'src',
        dest_dir=tmp_path / 'dst',
        login_url='https://decoder.example/login',
        decoder_url='https://decoder.example/decoder/ic11php74',
        download_dir=tmp_path / 'downloads',
        progress_file=tmp_path / 'progress.json',
        username='user@example.com',
        password='secret',
        max_retries=3,
        delay_between_files=0,
    )


@pytest.fixture
def record(config):
    path = config.source_dir / 'app' / 'secret.php'
    path.write_bytes(b'\x01' * 100 + b'\x00')
    return FileRecord(path, 'app', 'secret.php')


def make_page(file_input=True, submit=True, table=True,
              href='/download?id=abc123', payload=DECODED):
    """Decoder page double. Each flag removes one piece of the UI contract."""
    page = MagicMock(name='page')
    page.url = 'https://decoder.example/decoder/ic11php74'

    elements = {}
    if file_input:
        elements[FILE_INPUT_SELECTORS[0]] = MagicMock(name='file_input')
    if submit:
        elements[DECODE_SUBMIT_SELECTORS[0]] = MagicMock(name='submit')
    page.elements = elements
    page.query_selector.side_effect = lambda selector: elements.get(selector)

    anchor = MagicMock(name='anchor')
    anchor.get_attribute.return_value = href
    results = MagicMock(name='results_table')
    results.query_selector_all.return_value = [anchor]

    def wait_for_selector(selector, timeout=None):
        if selector == RESULTS_TABLE_SELECTOR:
            if not table:
                raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded")
            return results
        return MagicMock(name='ready')

    page.wait_for_selector.side_effect = wait_for_selector

    download = MagicMock(name='download')
    if payload is not None:
        download.save_as.side_effect = lambda path: Path(path).write_bytes(payload)
    page.expect_download.return_value.__enter__.return_value.value = download
    return page


class TestFirstMatch:
    def test_priority_order(self):
        page = MagicMock()
        found = {'b': 'B', 'c': 'C'}
        page.query_selector.side_effect = lambda s: found.get(s)
        assert first_match(page, ['a', 'b', 'c']) == ('b', 'B')

    def test_no_match(self):
        page = MagicMock()
        page.query_selector.return_value = None
        assert first_match(page, ['a', 'b']) == (None, None)


class TestDecodeSuccess:
    def test_file_lands_in_mirrored_destination(self, config, record):
        page = make_page()
        outcome = DecodeSession(page, config).decode(record)

        dest = config.dest_dir / 'app' / 'secret.php'
        assert outcome.success is True
        assert outcome.state == DecodeState.RELOCATED
        assert outcome.dest_path == dest
        assert outcome.attempts == 1
        assert dest.read_bytes() == DECODED
        # Staging directory is left clean
        assert list(config.download_dir.iterdir()) == []

    def test_drives_the_form(self, config, record):
        page = make_page()
        DecodeSession(page, config).decode(record)

        page.goto.assert_called_once()
        assert page.goto.call_args[0][0] == config.decoder_url
        page.elements[FILE_INPUT_SELECTORS[0]].set_input_files.assert_called_once_with(
            str(record.full_path)
        )
        page.elements[DECODE_SUBMIT_SELECTORS[0]].click.assert_called_once()

    def test_falls_back_to_bare_file_input(self, config, record):
        page = make_page()
        bare = page.elements.pop(FILE_INPUT_SELECTORS[0])
        page.elements[FILE_INPUT_SELECTORS[1]] = bare

        assert DecodeSession(page, config).decode(record).success is True
        bare.set_input_files.assert_called_once()

    def test_timeouts_use_configured_bounds(self, config, record):
        page = make_page()
        DecodeSession(page, config).decode(record)

        assert page.goto.call_args.kwargs['timeout'] == 30000
        waits = {c.args[0]: c.kwargs['timeout'] for c in page.wait_for_selector.call_args_list}
        assert waits[RESULTS_TABLE_SELECTOR] == 120000
        assert page.expect_download.call_args.kwargs['timeout'] == 60000


class TestDecodeFailures:
    """Every failure becomes an outcome; nothing reaches the destination"""

    def _assert_failed(self, outcome, config, after):
        assert outcome.success is False
        assert outcome.state == DecodeState.FAILED
        assert outcome.failed_after == after
        assert not (config.dest_dir / 'app' / 'secret.php').exists()

    def test_missing_file_input(self, config, record):
        outcome = DecodeSession(make_page(file_input=False), config).decode(record)
        self._assert_failed(outcome, config, DecodeState.NAVIGATED)
        assert outcome.reason == "File input not found"

    def test_missing_submit(self, config, record):
        outcome = DecodeSession(make_page(submit=False), config).decode(record)
        self._assert_failed(outcome, config, DecodeState.UPLOADED)
        assert outcome.reason == "Submit button not found"

    def test_results_timeout(self, config, record):
        outcome = DecodeSession(make_page(table=False), config).decode(record)
        self._assert_failed(outcome, config, DecodeState.SUBMITTED)

    def test_no_download_link(self, config, record):
        outcome = DecodeSession(make_page(href='/downloads/all'), config).decode(record)
        self._assert_failed(outcome, config, DecodeState.RESULTS_VISIBLE)
        assert outcome.reason == "Download link not found in table"

    def test_staged_file_vanished(self, config, record):
        outcome = DecodeSession(make_page(payload=None), config).decode(record)
        self._assert_failed(outcome, config, DecodeState.DOWNLOADED)
        assert outcome.reason == "Downloaded file not found"

    def test_navigation_timeout(self, config, record):
        page = make_page()
        page.goto.side_effect = PlaywrightTimeoutError("Timeout 30000ms exceeded")
        outcome = DecodeSession(page, config).decode(record)
        self._assert_failed(outcome, config, DecodeState.IDLE)

    def test_retries_are_bounded(self, config, record):
        page = make_page(file_input=False)
        outcome = DecodeSession(page, config).decode(record)
        assert outcome.attempts == 3
        assert page.goto.call_count == 3

    def test_staged_file_removed_after_failed_relocation(self, config, record):
        page = make_page()
        with patch('lib.decoder_session.relocate_file', return_value=False):
            outcome = DecodeSession(page, config).decode(record)

        assert outcome.success is False
        assert list(config.download_dir.iterdir()) == []

    def test_disk_full_during_cross_fs_move(self, config, record):
        """A partial copy never shows up in the destination tree"""
        def partial_copy(src, dst):
            Path(dst).write_bytes(b"<?php fun")
            raise OSError(28, "No space left on device")

        page = make_page()
        with patch('lib.transfer.same_filesystem', return_value=False), \
                patch('lib.transfer.shutil.copy2', side_effect=partial_copy):
            outcome = DecodeSession(page, config).decode(record)

        self._assert_failed(outcome, config, DecodeState.DOWNLOADED)
        assert list((config.dest_dir / 'app').iterdir()) == []
        assert list(config.download_dir.iterdir()) == []

    def test_unexpected_error_fails_file_without_retry(self, config, record):
        page = make_page()
        page.goto.side_effect = ValueError("bad page state")

        outcome = DecodeSession(page, config).decode(record)

        self._assert_failed(outcome, config, DecodeState.IDLE)
        assert outcome.attempts == 1
        assert 'bad page state' in outcome.reason


class TestRetryAndReuse:
    def test_second_attempt_succeeds(self, config, record):
        page = make_page()
        page.goto.side_effect = [PlaywrightTimeoutError("Timeout 30000ms exceeded"), None]

        outcome = DecodeSession(page, config).decode(record)

        assert outcome.success is True
        assert outcome.attempts == 2

    def test_session_survives_a_failed_file(self, config, record):
        page = make_page(href='/nothing-here')
        session = DecodeSession(page, config)
        assert session.decode(record).success is False

        anchor = page.wait_for_selector(RESULTS_TABLE_SELECTOR).query_selector_all()[0]
        anchor.get_attribute.return_value = '/download?id=zzz'

        assert session.decode(record).success is True


class TestDirectDownloadFallback:
    def test_fetches_link_with_browser_cookies(self, config, record):
        page = make_page()
        page.expect_download.side_effect = PlaywrightTimeoutError("Timeout 60000ms exceeded")
        page.context.cookies.return_value = [{'name': 'PHPSESSID', 'value': 'abc'}]

        response = MagicMock()
        response.content = DECODED
        with patch('lib.decoder_session.requests.get', return_value=response) as mock_get:
            outcome = DecodeSession(page, config).decode(record)

        assert outcome.success is True
        mock_get.assert_called_once()
        assert mock_get.call_args.args[0] == 'https://decoder.example/download?id=abc123'
        assert mock_get.call_args.kwargs['cookies'] == {'PHPSESSID': 'abc'}
        assert (config.dest_dir / 'app' / 'secret.php').read_bytes() == DECODED

    def test_fallback_disabled(self, config, record):
        from dataclasses import replace
        config = replace(config, direct_download_fallback=False)
        page = make_page()
        page.expect_download.side_effect = PlaywrightTimeoutError("Timeout 60000ms exceeded")

        with patch('lib.decoder_session.requests.get') as mock_get:
            outcome = DecodeSession(page, config).decode(record)

        assert outcome.success is False
        mock_get.assert_not_called()


def make_login_page(username=True, submit=True, still_on_form=False):
    page = MagicMock(name='login_page')
    elements = {}
    if username:
        elements['input[name="email"]'] = MagicMock(name='email')
    elements['input[name="password"]'] = MagicMock(name='password')
    if submit:
        elements['button[type="submit"]'] = MagicMock(name='login_submit')
    if still_on_form:
        elements['input[type="password"]'] = MagicMock(name='password_again')
    page.elements = elements
    page.query_selector.side_effect = lambda selector: elements.get(selector)
    return page


class TestLogin:
    def test_fills_credentials_and_submits(self, config):
        page = make_login_page()
        DecodeSession(page, config).login()

        assert page.goto.call_args[0][0] == config.login_url
        page.elements['input[name="email"]'].fill.assert_called_once_with('user@example.com')
        page.elements['input[name="password"]'].fill.assert_called_once_with('secret')
        page.elements['button[type="submit"]'].click.assert_called_once()
        page.keyboard.press.assert_not_called()

    def test_enter_key_when_no_submit_button(self, config):
        page = make_login_page(submit=False)
        DecodeSession(page, config).login()
        page.keyboard.press.assert_called_once_with('Enter')

    def test_missing_username_field(self, config):
        with pytest.raises(SessionError):
            DecodeSession(make_login_page(username=False), config).login()

    def test_still_on_login_form(self, config):
        with pytest.raises(SessionError):
            DecodeSession(make_login_page(still_on_form=True), config).login()

    def test_unreachable_login_page(self, config):
        page = make_login_page()
        page.goto.side_effect = PlaywrightError("net::ERR_NAME_NOT_RESOLVED")
        with pytest.raises(SessionError):
            DecodeSession(page, config).login()

    def test_network_idle_timeout_is_tolerated(self, config):
        page = make_login_page()
        page.wait_for_load_state.side_effect = PlaywrightTimeoutError("Timeout")
        DecodeSession(page, config).login()
