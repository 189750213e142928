"""
WhatsApp Client - Selenium-Based WhatsApp Web Automation
=========================================================

Blocking driver wrapper. Everything here runs in a worker thread; the async
SeleniumProvider serializes access so the WebDriver is never used from two
threads at once.
"""

import logging
import os
import random
import time
from pathlib import Path
from typing import List, Optional, Tuple

from selenium import webdriver
from selenium.common.exceptions import (
    NoSuchElementException,
    StaleElementReferenceException,
    TimeoutException,
    WebDriverException,
)
from selenium.webdriver.chrome.service import Service as ChromeService
from selenium.webdriver.common.by import By
from selenium.webdriver.common.keys import Keys
from selenium.webdriver.support.ui import WebDriverWait
from webdriver_manager.chrome import ChromeDriverManager

from .events import SessionState

logger = logging.getLogger(__name__)


class WhatsAppClientError(Exception):
    """Base exception for WhatsApp client errors."""
    pass


class WhatsAppBlockedError(WhatsAppClientError):
    """Raised when WhatsApp shows blocking/warning indicators."""
    pass


class WhatsAppInvalidNumberError(WhatsAppClientError):
    """Raised when WhatsApp reports the phone is not registered."""
    pass


class WhatsAppClient:
    """
    Selenium-based WhatsApp Web client.
    """

    WHATSAPP_URL = "https://web.whatsapp.com/"
    SEND_URL = "https://web.whatsapp.com/send?phone={phone}"

    # CSS Selectors - WhatsApp Web 2024/2025
    SELECTORS = {
        "search_box": 'div[contenteditable="true"][data-tab="3"]',
        "message_input": 'div[contenteditable="true"][data-tab="10"]',
        "message_input_alt": 'footer div[contenteditable="true"]',

        # Login screen: the QR canvas container carries the pairing string
        "qr_code": 'div[data-ref]',
        "loading": 'progress',

        "popup": 'div[data-animate-modal-popup="true"]',

        # Attachments
        "attach_button": 'div[title="Attach"], span[data-icon="plus"], span[data-icon="attach-menu-plus"]',
        "document_input": 'input[type="file"][accept="*"]',
        "file_input": 'input[type="file"]',
        "caption_input": 'div[aria-label="Add a caption"], div[contenteditable="true"][data-tab="undefined"]',
        "send_button": 'span[data-icon="send"], div[aria-label="Send"]',

        # Messages
        "all_messages": 'div[data-pre-plain-text]',
        "outgoing_message": 'div.message-out',
        "read_ticks": 'span[data-icon="msg-dblcheck"]',
        "unread_badge": 'span[aria-label*="unread message"]',
    }

    BLOCK_INDICATORS = [
        "temporarily banned",
        "account is temporarily",
        "verify your phone",
        "unusual activity",
    ]

    INVALID_NUMBER_INDICATORS = [
        "phone number shared via url is invalid",
        "invalid number",
        "not on whatsapp",
    ]

    def __init__(self, session_path: Path, headless: bool = False, chat_load_timeout: int = 20):
        self._chat_load_timeout = chat_load_timeout
        self.driver = self._create_driver(Path(session_path), headless)
        self._navigate_to_whatsapp()

    def _create_driver(self, session_path: Path, headless: bool) -> webdriver.Chrome:
        """Create and configure Chrome WebDriver."""
        options = webdriver.ChromeOptions()

        if headless:
            options.add_argument("--headless=new")
            logger.info("Running headless - scan the QR code from the dashboard")
        else:
            options.add_argument("--start-maximized")

        options.add_argument("--disable-gpu")
        options.add_argument("--no-sandbox")
        options.add_argument("--disable-dev-shm-usage")

        # The Chrome profile keeps the WhatsApp login between restarts
        profile_dir = os.path.abspath(session_path)
        os.makedirs(profile_dir, exist_ok=True)
        options.add_argument(f"--user-data-dir={profile_dir}")
        logger.info(f"Using Chrome profile at: {profile_dir}")

        service = ChromeService(ChromeDriverManager().install())
        return webdriver.Chrome(service=service, options=options)

    def _navigate_to_whatsapp(self) -> None:
        """Navigate to WhatsApp Web."""
        self.driver.get(self.WHATSAPP_URL)
        logger.info("Opened WhatsApp Web - please scan QR code if needed")

    def _random_delay(self, min_s: float = 0.5, max_s: float = 2.0) -> None:
        """Add human-like random delay."""
        time.sleep(random.uniform(min_s, max_s))

    def _page_text(self) -> str:
        try:
            return (self.driver.execute_script("return document.body.innerText") or "").lower()
        except WebDriverException:
            return ""

    def _check_for_blocks(self) -> bool:
        """Check page for blocking/warning indicators."""
        page_text = self._page_text()
        for indicator in self.BLOCK_INDICATORS:
            if indicator in page_text:
                logger.error(f"Block indicator detected: {indicator}")
                return True
        return False

    def _find(self, selector: str):
        try:
            return self.driver.find_element(By.CSS_SELECTOR, selector)
        except NoSuchElementException:
            return None

    # ── Session state ─────────────────────────────────────────────

    def detect_state(self) -> Tuple[SessionState, Optional[str]]:
        """
        Inspect the page and report (state, qr_code).
        The QR string is only present while waiting for a scan.
        """
        try:
            if self._find(self.SELECTORS["search_box"]):
                return SessionState.READY, None

            qr = self._find(self.SELECTORS["qr_code"])
            if qr:
                return SessionState.QR_PENDING, qr.get_attribute("data-ref")

            if self._find(self.SELECTORS["loading"]):
                return SessionState.AUTHENTICATED, None

            return SessionState.DISCONNECTED, None
        except WebDriverException as e:
            logger.debug(f"State detection failed: {e}")
            return SessionState.DISCONNECTED, None

    # ── Chats ─────────────────────────────────────────────────────

    def open_chat(self, phone: str) -> None:
        """
        Open the chat for a phone through the click-to-chat URL.

        Raises:
            WhatsAppBlockedError: account shows blocking indicators
            WhatsAppInvalidNumberError: phone is not registered on WhatsApp
            WhatsAppClientError: chat did not load in time
        """
        if self._check_for_blocks():
            raise WhatsAppBlockedError("WhatsApp blocking detected")

        logger.debug(f"Opening chat with: {phone}")
        self.driver.get(self.SEND_URL.format(phone=phone))

        def chat_or_popup(driver):
            if self._find_message_input():
                return "chat"
            popup = self._find(self.SELECTORS["popup"])
            if popup and any(ind in popup.text.lower() for ind in self.INVALID_NUMBER_INDICATORS):
                return "invalid"
            return False

        try:
            outcome = WebDriverWait(self.driver, self._chat_load_timeout).until(chat_or_popup)
        except TimeoutException:
            if any(ind in self._page_text() for ind in self.INVALID_NUMBER_INDICATORS):
                outcome = "invalid"
            else:
                raise WhatsAppClientError(f"Timed out opening chat with {phone}")

        if outcome == "invalid":
            raise WhatsAppInvalidNumberError(f"Phone number {phone} is not registered on WhatsApp (invalid number)")

        logger.info(f"Chat opened successfully: {phone}")

    def _find_message_input(self):
        """Find the message input box with multiple fallback selectors."""
        selectors_to_try = [
            self.SELECTORS["message_input"],
            self.SELECTORS["message_input_alt"],
            'div[title="Type a message"]',
            'div[role="textbox"][contenteditable="true"]',
        ]

        for selector in selectors_to_try:
            element = self._find(selector)
            if element:
                return element

        return None

    def _type_text(self, box, text: str) -> None:
        """Type text in chunks; newlines become Shift+Enter so they don't send early."""
        lines = text.split("\n")
        for line_no, line in enumerate(lines):
            chunk_size = 50
            for i in range(0, len(line), chunk_size):
                box.send_keys(line[i:i + chunk_size])
                self._random_delay(0.1, 0.3)
            if line_no < len(lines) - 1:
                box.send_keys(Keys.SHIFT, Keys.ENTER)

    def send_message(self, text: str) -> None:
        """Send a message in the current chat."""
        self._random_delay(0.5, 1.0)

        input_box = self._find_message_input()
        if not input_box:
            raise WhatsAppClientError("Could not find message input box")

        input_box.click()
        self._random_delay(0.3, 0.6)
        self._type_text(input_box, text)
        self._random_delay(0.3, 0.5)
        input_box.send_keys(Keys.ENTER)

        logger.info(f"Sent message: {text[:50]}...")

    def send_file(self, file_path: Path, caption: str = "") -> None:
        """Attach a document in the current chat and send it with a caption."""
        attach = self._find(self.SELECTORS["attach_button"])
        if not attach:
            raise WhatsAppClientError("Could not find attach button")
        attach.click()
        self._random_delay(0.5, 1.0)

        file_input = self._find(self.SELECTORS["document_input"]) or self._find(self.SELECTORS["file_input"])
        if not file_input:
            raise WhatsAppClientError("Could not find file input")
        file_input.send_keys(str(Path(file_path).resolve()))

        try:
            WebDriverWait(self.driver, self._chat_load_timeout).until(
                lambda d: self._find(self.SELECTORS["send_button"])
            )
        except TimeoutException:
            raise WhatsAppClientError("Attachment preview did not open")

        if caption:
            caption_box = self._find(self.SELECTORS["caption_input"])
            if caption_box:
                caption_box.click()
                self._type_text(caption_box, caption)
            else:
                logger.warning("Caption box not found, sending attachment without caption")

        self._random_delay(0.3, 0.6)
        self._find(self.SELECTORS["send_button"]).click()
        # Give the upload a moment before navigating away
        time.sleep(3)
        logger.info(f"Sent attachment: {Path(file_path).name}")

    # ── Reading ───────────────────────────────────────────────────

    def _extract_text_from_message(self, element) -> Optional[str]:
        """Extract text content from a message element."""
        text_selectors = [
            'span.selectable-text.copyable-text > span',
            'span.selectable-text.copyable-text',
            'span.selectable-text',
            'span[dir="ltr"]',
        ]

        for selector in text_selectors:
            try:
                for text_el in element.find_elements(By.CSS_SELECTOR, selector):
                    text = text_el.text.strip()
                    if text:
                        return text
            except (NoSuchElementException, StaleElementReferenceException):
                continue

        try:
            return element.text.strip() if element.text else None
        except StaleElementReferenceException:
            return None

    def read_latest_incoming_message(self) -> Optional[str]:
        """Read the latest INCOMING message in the current chat."""
        try:
            elements = self.driver.find_elements(By.CSS_SELECTOR, self.SELECTORS["all_messages"])
        except WebDriverException as e:
            logger.debug(f"Failed to read messages: {e}")
            return None

        incoming = []
        for el in elements:
            try:
                pre_text = el.get_attribute('data-pre-plain-text') or ''
                # Outgoing rows carry our own name after the timestamp
                if '] You:' not in pre_text:
                    incoming.append(el)
            except StaleElementReferenceException:
                continue

        if not incoming:
            logger.debug("No incoming messages found")
            return None

        return self._extract_text_from_message(incoming[-1])

    def last_outgoing_read(self) -> bool:
        """True when the last message we sent in the current chat shows blue ticks."""
        try:
            outgoing = self.driver.find_elements(By.CSS_SELECTOR, self.SELECTORS["outgoing_message"])
            if not outgoing:
                return False
            for tick in outgoing[-1].find_elements(By.CSS_SELECTOR, self.SELECTORS["read_ticks"]):
                label = (tick.get_attribute("aria-label") or "").lower()
                if "read" in label:
                    return True
            return False
        except (StaleElementReferenceException, WebDriverException) as e:
            logger.debug(f"Read receipt check failed: {e}")
            return False

    def unread_chat_titles(self) -> List[str]:
        """Titles of chats in the side pane showing an unread badge."""
        titles = []
        try:
            for badge in self.driver.find_elements(By.CSS_SELECTOR, self.SELECTORS["unread_badge"]):
                try:
                    row = badge.find_element(By.XPATH, "./ancestor::div[@role='listitem']")
                    title = row.find_element(By.CSS_SELECTOR, "span[title]").get_attribute("title")
                    if title:
                        titles.append(title)
                except (NoSuchElementException, StaleElementReferenceException):
                    continue
        except WebDriverException as e:
            logger.debug(f"Unread chat scan failed: {e}")
        return titles

    def close(self) -> None:
        """Close browser and cleanup."""
        try:
            self.driver.quit()
            logger.info("Browser closed")
        except WebDriverException as e:
            logger.debug(f"Error closing browser: {e}")
