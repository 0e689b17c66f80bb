# customs_app/browser_automation/selenium_form_session.py
import base64
import logging
from typing import Optional, Tuple, List, Dict, Iterable

from selenium import webdriver
from selenium.webdriver.chrome.service import Service as ChromeService
from selenium.webdriver.chrome.options import Options as ChromeOptions
from selenium.webdriver.common.by import By
from selenium.webdriver.support.ui import WebDriverWait
from selenium.webdriver.support import expected_conditions as EC
from selenium.common.exceptions import (
    TimeoutException,
    WebDriverException,
    StaleElementReferenceException,
)
from selenium.webdriver.remote.webelement import WebElement

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(module)s - %(message)s')

FIND_BY_STRATEGIES = {
    'css': By.CSS_SELECTOR,
    'xpath': By.XPATH,
    'id': By.ID,
}

USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"


def _resolve_by(selector: str, find_by: Optional[str]) -> Tuple[str, str]:
    if find_by is None:
        return By.CSS_SELECTOR, "css"
    if find_by not in FIND_BY_STRATEGIES:
        logging.warning(f"SeleniumFormSession: Unrecognized find_by strategy '{find_by}'. Defaulting to css for selector '{selector}'.")
        return By.CSS_SELECTOR, "css"
    return FIND_BY_STRATEGIES[find_by], find_by


class SeleniumFormSession:
    """
    One Chrome WebDriver owned by a single automation run.

    Interaction helpers return True/False instead of raising so the caller decides
    which failures are fatal. Use it as a context manager: the driver is quit on
    every exit path.
    """

    def __init__(self, headless: bool = True, webdriver_path: Optional[str] = None, page_load_timeout: int = 30):
        self.driver: Optional[webdriver.Chrome] = None
        self.launch_error: Optional[str] = None
        try:
            chrome_options = ChromeOptions()
            if headless:
                chrome_options.add_argument("--headless=new")
                chrome_options.add_argument("--disable-gpu")
            chrome_options.add_argument("--no-sandbox") # Common for Docker/CI environments
            chrome_options.add_argument("--disable-dev-shm-usage")
            chrome_options.add_argument("--window-size=1920,1080")
            chrome_options.add_argument("--disable-blink-features=AutomationControlled")
            chrome_options.add_argument(f"--user-agent={USER_AGENT}")

            if webdriver_path:
                service = ChromeService(executable_path=webdriver_path)
                self.driver = webdriver.Chrome(service=service, options=chrome_options)
            else:
                # Selenium Manager resolves chromedriver when no path is given
                self.driver = webdriver.Chrome(options=chrome_options)

            self.driver.set_page_load_timeout(page_load_timeout)
            logging.info(f"SeleniumFormSession: WebDriver initialized (headless={headless}).")

        except WebDriverException as e:
            logging.error(f"SeleniumFormSession: Error initializing WebDriver: {e}")
            self.launch_error = str(e)
            self.driver = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, tb):
        self.close_browser()
        return False

    def navigate_to_url(self, url: str, timeout: float = 30) -> bool:
        if not self.driver:
            logging.error("SeleniumFormSession: Driver not initialized.")
            return False
        try:
            self.driver.set_page_load_timeout(max(1, int(timeout)))
            self.driver.get(url)
            logging.info(f"SeleniumFormSession: Navigated to URL: {url}")
            return True
        except TimeoutException:
            logging.warning(f"SeleniumFormSession: Timeout while trying to navigate to {url}.")
            return False
        except WebDriverException as e:
            logging.error(f"SeleniumFormSession: Error navigating to URL '{url}': {e}")
            return False

    def wait_for_visible(self, selector: str, find_by: Optional[str] = 'css', timeout: float = 5) -> bool:
        """Waits until an element matching `selector` is displayed."""
        if not self.driver:
            return False
        by_strategy, strategy_name = _resolve_by(selector, find_by)
        try:
            WebDriverWait(self.driver, timeout).until(EC.visibility_of_element_located((by_strategy, selector)))
            return True
        except TimeoutException:
            logging.info(f"SeleniumFormSession: '{selector}' ({strategy_name}) not visible within {timeout:.1f}s.")
            return False
        except WebDriverException as e:
            logging.warning(f"SeleniumFormSession: WebDriver error waiting for '{selector}': {e}")
            return False

    def wait_for_any(self, selectors: Dict[str, str], timeout: float = 15) -> Optional[str]:
        """
        Waits until one of several CSS selectors has a visible match and returns its key.
        Keys are checked in insertion order on every poll, so earlier keys win ties.
        """
        if not self.driver:
            return None

        def _first_visible(driver):
            for key, selector in selectors.items():
                try:
                    for element in driver.find_elements(By.CSS_SELECTOR, selector):
                        if element.is_displayed():
                            return key
                except StaleElementReferenceException:
                    continue
            return False

        try:
            return WebDriverWait(self.driver, timeout).until(_first_visible)
        except TimeoutException:
            return None
        except WebDriverException as e:
            logging.warning(f"SeleniumFormSession: WebDriver error waiting for outcome indicators: {e}")
            return None

    def click_element(self, selector: str, find_by: Optional[str] = 'css', timeout: float = 5) -> bool:
        if not self.driver:
            logging.error("SeleniumFormSession: Driver not initialized.")
            return False
        by_strategy, strategy_name = _resolve_by(selector, find_by)
        try:
            element = WebDriverWait(self.driver, timeout).until(EC.element_to_be_clickable((by_strategy, selector)))
            element.click()
            logging.info(f"SeleniumFormSession: Clicked element located by {strategy_name} '{selector}'")
            return True
        except TimeoutException:
            logging.warning(f"SeleniumFormSession: Timeout finding or clicking element located by {strategy_name} '{selector}'.")
            return False
        except WebDriverException as e: # Catches ElementClickInterceptedException etc.
            logging.warning(f"SeleniumFormSession: WebDriver error clicking element located by {strategy_name} '{selector}': {e}")
            return False

    def fill_text_field(self, selector: str, text: str, find_by: Optional[str] = 'css', timeout: float = 5) -> bool:
        if not self.driver:
            logging.error("SeleniumFormSession: Driver not initialized.")
            return False
        by_strategy, strategy_name = _resolve_by(selector, find_by)
        try:
            wait = WebDriverWait(self.driver, timeout)
            element = wait.until(EC.visibility_of_element_located((by_strategy, selector)))
            element = wait.until(EC.element_to_be_clickable((by_strategy, selector)))
            element.clear()
            element.send_keys(text)
            logging.info(f"SeleniumFormSession: Filled field located by {strategy_name} '{selector}' with '{text[:30]}'")
            return True
        except TimeoutException:
            logging.warning(f"SeleniumFormSession: Timeout finding or interacting with field located by {strategy_name} '{selector}'.")
            return False
        except WebDriverException as e:
            logging.warning(f"SeleniumFormSession: WebDriver error filling field located by {strategy_name} '{selector}': {e}")
            return False

    def open_dropdown(self, selector: str, find_by: Optional[str] = 'css', timeout: float = 5) -> bool:
        """
        Opens an Ant Design select. Tries a native click on the control first and
        falls back to a script click on the enclosing `.ant-select` container.
        """
        if self.click_element(selector, find_by=find_by, timeout=timeout):
            return True
        if not self.driver:
            return False
        by_strategy, _ = _resolve_by(selector, find_by)
        try:
            element = self.driver.find_element(by_strategy, selector)
            self.driver.execute_script(
                "var el = arguments[0];"
                "var container = el.closest('.ant-select') || el;"
                "el.focus(); container.dispatchEvent(new MouseEvent('mousedown', {bubbles: true}));"
                "container.click();",
                element,
            )
            logging.info(f"SeleniumFormSession: Opened dropdown '{selector}' via container click.")
            return True
        except WebDriverException as e:
            logging.warning(f"SeleniumFormSession: Could not open dropdown '{selector}': {e}")
            return False

    def dismiss_dropdowns(self) -> None:
        """Closes any open dropdown panel so the next attempt starts clean."""
        if not self.driver:
            return
        try:
            self.driver.execute_script("document.body.click();")
        except WebDriverException as e:
            logging.debug(f"SeleniumFormSession: Could not dismiss dropdowns: {e}")

    def _owned_panel(self, control_selector: str, find_by: Optional[str]) -> Optional[WebElement]:
        """
        The open dropdown panel that belongs to a select control, found through the
        control's `aria-controls` listbox id. None while that panel is not shown.
        """
        by_strategy, _ = _resolve_by(control_selector, find_by)
        control = self.driver.find_element(by_strategy, control_selector)
        list_id = control.get_attribute("aria-controls") or control.get_attribute("aria-owns")
        if not list_id:
            return None
        panel = self.driver.execute_script(
            "var list = document.getElementById(arguments[0]);"
            "return list ? list.closest('.ant-select-dropdown') : null;",
            list_id,
        )
        if panel is None or "ant-select-dropdown-hidden" in (panel.get_attribute("class") or ""):
            return None
        return panel if panel.is_displayed() else None

    def choose_dropdown_option(self, option_selector: str, value: str, timeout: float = 5,
                               control_selector: Optional[str] = None, find_by: Optional[str] = 'css') -> bool:
        """
        Clicks the first visible option whose text or title equals, then contains, `value`.

        With `control_selector`, options are only looked up inside the panel owned by
        that control, so a panel left open by another select is never used.
        """
        if not self.driver:
            return False

        def _visible_options(driver):
            try:
                if control_selector is None:
                    scope = driver
                else:
                    scope = self._owned_panel(control_selector, find_by)
                    if scope is None:
                        return False
                return [o for o in scope.find_elements(By.CSS_SELECTOR, option_selector) if o.is_displayed()] or False
            except StaleElementReferenceException:
                return False

        try:
            options: List[WebElement] = WebDriverWait(self.driver, timeout).until(_visible_options)
        except TimeoutException:
            logging.warning(f"SeleniumFormSession: No visible options for '{option_selector}'.")
            return False

        wanted = value.strip().lower()
        labelled = []
        for option in options:
            try:
                labelled.append((option, (option.text or "").strip().lower(), (option.get_attribute("title") or "").strip().lower()))
            except StaleElementReferenceException:
                continue

        exact = [o for o, text, title in labelled if wanted in (text, title)]
        partial = [o for o, text, title in labelled if wanted in text or wanted in title]
        for candidate in exact + partial:
            try:
                candidate.click()
                logging.info(f"SeleniumFormSession: Selected option '{value}'.")
                return True
            except WebDriverException as e:
                logging.debug(f"SeleniumFormSession: Option click failed, trying next match: {e}")

        sample = [text for _, text, _ in labelled[:10]]
        logging.warning(f"SeleniumFormSession: Option '{value}' not found. First options: {sample}")
        return False

    def set_checked(self, selector: str, checked: bool, find_by: Optional[str] = 'css', timeout: float = 5) -> bool:
        """Clicks a checkbox or radio only when its state differs from `checked`."""
        if not self.driver:
            return False
        by_strategy, strategy_name = _resolve_by(selector, find_by)
        try:
            element = WebDriverWait(self.driver, timeout).until(EC.presence_of_element_located((by_strategy, selector)))
            if element.is_selected() == checked:
                return True
            try:
                element.click()
            except WebDriverException:
                # Ant Design hides the native input behind a styled wrapper
                self.driver.execute_script("arguments[0].click();", element)
            logging.info(f"SeleniumFormSession: Set {strategy_name} '{selector}' checked={checked}")
            return True
        except TimeoutException:
            logging.warning(f"SeleniumFormSession: Timeout locating toggle {strategy_name} '{selector}'.")
            return False
        except WebDriverException as e:
            logging.warning(f"SeleniumFormSession: WebDriver error toggling {strategy_name} '{selector}': {e}")
            return False

    def get_texts(self, selector: str) -> List[str]:
        """Stripped text of every visible element matching a CSS selector."""
        if not self.driver:
            return []
        texts = []
        try:
            for element in self.driver.find_elements(By.CSS_SELECTOR, selector):
                try:
                    if element.is_displayed() and element.text.strip():
                        texts.append(element.text.strip())
                except StaleElementReferenceException:
                    continue
        except WebDriverException as e:
            logging.warning(f"SeleniumFormSession: Could not read texts for '{selector}': {e}")
        return texts

    def read_value(self, selector: str, find_by: Optional[str] = 'css') -> Optional[str]:
        """
        The value a control currently shows: the selected item of an Ant Design select,
        'true'/'false' for checkboxes and radios, otherwise the input's value.
        None when the control is not on the page.
        """
        if not self.driver:
            return None
        by_strategy, strategy_name = _resolve_by(selector, find_by)
        try:
            element = self.driver.find_element(by_strategy, selector)
            return self.driver.execute_script(
                "var el = arguments[0];"
                "var select = el.closest('.ant-select');"
                "if (select) {"
                "  var item = select.querySelector('.ant-select-selection-item');"
                "  return item ? (item.getAttribute('title') || item.textContent || '').trim() : '';"
                "}"
                "if (el.type === 'checkbox' || el.type === 'radio') { return el.checked ? 'true' : 'false'; }"
                "return (el.value || '').trim();",
                element,
            )
        except WebDriverException as e: # Includes NoSuchElementException
            logging.info(f"SeleniumFormSession: Could not read {strategy_name} '{selector}': {e}")
            return None

    def capture_image_data(self, selectors: Iterable[str], timeout: float = 10) -> Optional[str]:
        """
        Returns the first visible image-like element among `selectors` as a PNG data URL.
        Canvas elements are exported with toDataURL, data-URL images are returned as-is
        and anything else is captured with an element screenshot.
        """
        if not self.driver:
            return None
        selectors = list(selectors)

        def _first_match(driver):
            for selector in selectors:
                for element in driver.find_elements(By.CSS_SELECTOR, selector):
                    try:
                        if element.is_displayed():
                            return element
                    except StaleElementReferenceException:
                        continue
            return False

        try:
            element = WebDriverWait(self.driver, timeout).until(_first_match)
        except TimeoutException:
            logging.info("SeleniumFormSession: No confirmation image found.")
            return None

        try:
            tag_name = element.tag_name.lower()
            if tag_name == "canvas":
                data_url = self.driver.execute_script("return arguments[0].toDataURL('image/png');", element)
                if data_url:
                    return data_url
            if tag_name == "img":
                src = element.get_attribute("src") or ""
                if src.startswith("data:image"):
                    return src
            png_bytes = element.screenshot_as_png
            return "data:image/png;base64," + base64.b64encode(png_bytes).decode("ascii")
        except WebDriverException as e:
            logging.warning(f"SeleniumFormSession: Failed to capture confirmation image: {e}")
            return None

    def close_browser(self):
        """Closes the browser and quits the driver."""
        if self.driver:
            try:
                self.driver.quit()
                logging.info("SeleniumFormSession: Browser closed and driver quit.")
            except WebDriverException as e:
                logging.error(f"SeleniumFormSession: Error quitting driver: {e}")
            finally:
                self.driver = None
