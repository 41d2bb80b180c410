#!/usr/bin/env python3
"""
lib/browser.py - Playwright browser for the remote decoder

Opens Firefox with downloads enabled, logs in once, and yields a
DecodeSession. The browser is always closed on exit, including when login
fails or the batch is interrupted.
"""

import logging
from contextlib import contextmanager
from typing import Iterator

from playwright.sync_api import sync_playwright

from lib.config import RunConfig
from lib.decoder_session import DecodeSession

logger = logging.getLogger(__name__)


@contextmanager
def open_decode_session(config: RunConfig) -> Iterator[DecodeSession]:
    """Launch the browser, log in, and yield an authenticated session"""
    config.download_dir.mkdir(parents=True, exist_ok=True)

    logger.info("Launching Firefox...")
    with sync_playwright() as playwright:
        browser = playwright.firefox.launch(
            headless=config.headless,
            downloads_path=str(config.download_dir),
        )
        try:
            context = browser.new_context(accept_downloads=True)
            page = context.new_page()
            session = DecodeSession(page, config)
            session.login()
            yield session
        finally:
            browser.close()
