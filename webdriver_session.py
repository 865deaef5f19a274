import asyncio
import json
import logging
import random
import shutil
import tempfile
from contextlib import contextmanager
from typing import Optional, Tuple

import requests
from bs4 import BeautifulSoup
from selenium import webdriver
from selenium.common.exceptions import WebDriverException
from selenium.webdriver.common.action_chains import ActionChains
from selenium.webdriver.common.by import By
from selenium.webdriver.common.keys import Keys

from polling import (
    TransientFault,
    run_blocking,
    to_seconds,
    wait_until,
    wait_until_blocking,
    wait_until_chained,
)
from session_config import (
    ClickStrategy,
    InputBehaviour,
    InputStrategy,
    ScrollBehaviour,
    SessionDefaults,
)
from tracemanager import TraceManager

logger = logging.getLogger(__name__)

Locator = Tuple[str, str]

SUPPORTED_BY = frozenset({
    By.ID,
    By.XPATH,
    By.LINK_TEXT,
    By.PARTIAL_LINK_TEXT,
    By.NAME,
    By.TAG_NAME,
    By.CLASS_NAME,
    By.CSS_SELECTOR,
})

CHROME_ARGS = [
    "--disable-extensions",
    "--disable-infobars",
    "--disable-features=TranslateUI,PasswordCheck,PasswordLeakDetection,PasswordManagerOnboarding,AutofillServerCommunication",
    "--no-first-run",
    "--no-default-browser-check",
    "--disable-save-password-bubble",
    "--password-store=basic",
    "--use-mock-keychain",
    "--disable-notifications",
    "--disable-popup-blocking",
]

# keep the temp profile from raising password / autofill prompts
CHROME_PREFS = {
    "credentials_enable_service": False,
    "profile.password_manager_enabled": False,
    "profile.password_manager_leak_detection": False,
    "autofill.profile_enabled": False,
}

WINDOW_SIZE = (1920, 1080)
REMOTE_READY_TIMEOUT = 10
NEW_TAB_TIMEOUT = 1.0
NEW_TAB_POLL_INTERVAL = 0.1

EVENT_SIMULATION_SCRIPT = """
function simulate(element, eventName) {
    var mouseEvents = /^(?:click|dblclick|contextmenu|mouse(?:down|up|over|out|move|enter|leave))$/;
    var event;
    if (mouseEvents.test(eventName)) {
        event = new MouseEvent(eventName, {bubbles: true, cancelable: true, view: window, button: 0});
    } else {
        event = new Event(eventName, {bubbles: true, cancelable: true});
    }
    return element.dispatchEvent(event);
}
"""


class ElementNotFound(LookupError):
    """No element exists at the requested locator/index."""


def locator(value: str, by: str = By.XPATH) -> Locator:
    if by not in SUPPORTED_BY:
        raise ValueError(f"Unsupported locator strategy: {by!r}")
    if not value:
        raise ValueError("Locator value must not be empty")
    return by, value


def _describe(target):
    if isinstance(target, tuple):
        return f"{target[0]}={target[1]}"
    return repr(target)


@contextmanager
def _driver_faults_are_transient():
    try:
        yield
    except (WebDriverException, ElementNotFound) as exc:
        raise TransientFault(str(exc) or type(exc).__name__) from exc


class WebDriverSession:
    def __init__(self, driver=None, defaults: Optional[SessionDefaults] = None, tracer: Optional[TraceManager] = None):
        self.driver = driver
        self.defaults = defaults or SessionDefaults()
        self.tracer = tracer or TraceManager(enabled=self.defaults.trace_enabled, out_dir=self.defaults.trace_dir)
        self.user_data_dir = None
        self._random = random.Random()

    # ---------------- Browser lifecycle ----------------
    def launch(self):
        if self.driver is not None:
            return self.driver

        options = webdriver.ChromeOptions()
        for arg in CHROME_ARGS:
            options.add_argument(arg)
        options.add_experimental_option("prefs", CHROME_PREFS)
        if self.defaults.headless:
            options.add_argument("--headless=new")

        if self.defaults.remote_url:
            self._wait_for_remote()
            self.driver = webdriver.Remote(command_executor=self.defaults.remote_url, options=options)
        else:
            # fresh profile per session, removed again in close()
            self.user_data_dir = tempfile.mkdtemp(prefix="webdriver-profile-")
            options.add_argument(f"--user-data-dir={self.user_data_dir}")
            try:
                self.driver = webdriver.Chrome(options=options)
            except Exception:
                shutil.rmtree(self.user_data_dir, ignore_errors=True)
                self.user_data_dir = None
                raise

        self.driver.set_window_size(*WINDOW_SIZE)
        if self.defaults.fullscreen:
            self.driver.fullscreen_window()
        logger.info("Browser launched (headless=%s, remote=%s)", self.defaults.headless, self.defaults.remote_url)
        return self.driver

    def _wait_for_remote(self, timeout=REMOTE_READY_TIMEOUT):
        status_url = self.defaults.remote_url.rstrip("/") + "/status"
        http = requests.Session()
        http.trust_env = False

        def ready():
            try:
                r = http.get(status_url, timeout=1)
                return r.ok and r.json().get("value", {}).get("ready", False)
            except (requests.RequestException, ValueError) as e:
                raise TransientFault(str(e)) from e

        if not wait_until_blocking(ready, timeout, 0.5):
            raise RuntimeError(f"WebDriver endpoint not available: {status_url}")
        logger.info("Remote WebDriver ready at %s", status_url)

    def close(self):
        if self.driver is None:
            return
        try:
            self.driver.quit()
            logger.info("Browser closed")
        except WebDriverException as e:
            logger.warning("Error closing browser: %s", e)
        finally:
            self.driver = None
            if self.user_data_dir:
                shutil.rmtree(self.user_data_dir, ignore_errors=True)
                self.user_data_dir = None
            if self.tracer.enabled:
                self.tracer.dump()

    def _active_driver(self):
        if self.driver is None:
            raise RuntimeError("Browser not launched")
        return self.driver

    def navigate(self, url: str):
        self._active_driver().get(url)
        logger.info("Navigated to %s", url)

    # ---------------- Tracing ----------------
    @contextmanager
    def _step(self, action, target=None, params=None):
        if not self.tracer.enabled:
            yield None
            return

        entry = self.tracer.start_step(action=action, target=target, params=params)
        try:
            yield entry
        except Exception as e:
            self.tracer.failure(entry, e)
            self._capture_failure_artifacts(entry)
            self.tracer.dump()
            raise
        if entry["result"] is None:
            self.tracer.success(entry)

    def _retry_hook(self, entry):
        if entry is None:
            return None
        return lambda attempt, fault: self.tracer.record_retry(entry, fault)

    def _record_timeout(self, entry, timeout):
        if entry is None:
            return
        self.tracer.timed_out(entry, to_seconds(timeout))
        self._capture_failure_artifacts(entry)
        self.tracer.dump()

    def _capture_failure_artifacts(self, entry):
        if not self.defaults.screenshot_on_fail or self.driver is None:
            return

        try:
            shot_path = self.tracer.artifact_path(entry, "png")
            if self.driver.save_screenshot(shot_path):
                self.tracer.attach_artifact(entry, "screenshot", shot_path)
        except WebDriverException as e:
            logger.warning("Screenshot for step %s failed: %s", entry["step"], e)

        try:
            html = self.driver.page_source
            dom_path = self.tracer.artifact_path(entry, "html")
            with open(dom_path, "w", encoding="utf-8") as f:
                f.write(html)
            self.tracer.attach_artifact(entry, "dom", dom_path)
        except (WebDriverException, OSError) as e:
            logger.warning("DOM snapshot for step %s failed: %s", entry["step"], e)

    # ---------------- Page access ----------------
    def execute_javascript(self, script: str, *args):
        return self._active_driver().execute_script(script, *args)

    def page_source(self) -> str:
        return self._active_driver().page_source

    def page_text(self) -> str:
        """Visible text of the current document, scripts and styles removed."""
        soup = BeautifulSoup(self.page_source(), "html.parser")
        for tag in soup(["script", "style", "noscript", "template"]):
            tag.decompose()
        return soup.get_text(" ", strip=True)

    def find_element(self, target, index: int = 0):
        if not isinstance(target, tuple):
            return target

        by, value = target
        elements = self._active_driver().find_elements(by, value)
        if index < 0 or index >= len(elements):
            raise ElementNotFound(f"No element #{index} for {by}={value!r} ({len(elements)} found)")
        return elements[index]

    # ---------------- Scrolling and events ----------------
    def scroll_to_element(self, target, behaviour=None, index: int = 0):
        behaviour = ScrollBehaviour(behaviour or self.defaults.scroll_behaviour)
        if behaviour is ScrollBehaviour.NONE:
            return

        element = self.find_element(target, index)
        if behaviour is ScrollBehaviour.DRIVER_SCROLL:
            # reading this property makes the driver scroll the element into view
            _ = element.location_once_scrolled_into_view
        else:
            self.execute_javascript("arguments[0].scrollIntoView({block: 'center', inline: 'center'});", element)

    def simulate_javascript_event(self, target, event_name: str, index: int = 0):
        element = self.find_element(target, index)
        script = f"{EVENT_SIMULATION_SCRIPT}\nreturn simulate(arguments[0], {json.dumps(event_name)});"
        return self.execute_javascript(script, element)

    # ---------------- Clicking ----------------
    def click_element(self, target, strategy=None, scroll=None, index: int = 0):
        strategy = ClickStrategy(strategy or self.defaults.click_strategy)

        with self._step("click", _describe(target), {"strategy": strategy.value, "index": index}):
            element = self.find_element(target, index)
            self.scroll_to_element(element, scroll)

            if strategy is ClickStrategy.SIMPLE:
                element.click()
            elif strategy is ClickStrategy.MOUSE_ACTION:
                self._mouse_action_click(element)
            elif strategy is ClickStrategy.JAVASCRIPT:
                self.execute_javascript("arguments[0].click();", element)
            else:
                self.simulate_javascript_event(element, "click")

    def _mouse_action_click(self, element):
        self.execute_javascript("arguments[0].scrollIntoView();", element)
        ActionChains(self._active_driver()).move_to_element(element).click_and_hold(element).release().perform()

    async def click_all_elements_async(
        self,
        target,
        strategy=None,
        scroll=None,
        displayed_only: bool = False,
        sleep_after_each_click_ms: int = 0,
    ) -> int:
        """
        Click every element of a locator (or of an iterable of elements),
        optionally skipping hidden ones. Returns how many were clicked.
        """
        if isinstance(target, tuple):
            elements = list(self._active_driver().find_elements(*target))
        else:
            elements = list(target)

        clicked = 0
        for element in elements:
            if displayed_only and not element.is_displayed():
                continue
            self.click_element(element, strategy, scroll)
            clicked += 1
            await asyncio.sleep(sleep_after_each_click_ms / 1000)
        return clicked

    def click_all_elements(self, target, strategy=None, scroll=None, displayed_only=False, sleep_after_each_click_ms=0) -> int:
        return run_blocking(
            self.click_all_elements_async(target, strategy, scroll, displayed_only, sleep_after_each_click_ms)
        )

    def get_element_above_element(self, target, index: int = 0):
        """Topmost element at the target's position; may be the target itself."""
        element = self.find_element(target, index)
        self.execute_javascript("arguments[0].scrollIntoView();", element)
        location = element.location
        x = location["x"] - int(self.execute_javascript("return window.pageXOffset;") or 0)
        y = location["y"] - int(self.execute_javascript("return window.pageYOffset;") or 0)
        return self.execute_javascript("return document.elementFromPoint(arguments[0], arguments[1]);", x, y)

    def hover_over_element(self, target, index: int = 0):
        element = self.find_element(target, index)
        ActionChains(self._active_driver()).move_to_element(element).perform()

    def submit_form(self, target, index: int = 0):
        self.find_element(target, index).submit()

    # ---------------- Input ----------------
    async def simulate_input_async(self, target, text: str, strategy=None, behaviour=None, index: int = 0):
        strategy = InputStrategy(strategy or self.defaults.input_strategy)
        behaviour = InputBehaviour(behaviour or self.defaults.input_behaviour)

        params = {"strategy": strategy.value, "behaviour": behaviour.value, "length": len(text)}
        with self._step("simulate_input", _describe(target), params):
            element = self.find_element(target, index)
            if behaviour in (InputBehaviour.CLEAR_AT_START, InputBehaviour.CLEAR_AT_START_TAB_AT_END):
                element.clear()
            if behaviour in (InputBehaviour.TAB_AT_END, InputBehaviour.CLEAR_AT_START_TAB_AT_END):
                text += Keys.TAB

            if strategy is InputStrategy.SEND_KEYS:
                element.send_keys(text)
                return

            for character in text:
                element.send_keys(character)
                await asyncio.sleep(self._humanlike_delay())

    def simulate_input(self, target, text: str, strategy=None, behaviour=None, index: int = 0):
        run_blocking(self.simulate_input_async(target, text, strategy, behaviour, index))

    def _humanlike_delay(self) -> float:
        low = self.defaults.humanlike_min_delay_ms
        high = self.defaults.humanlike_max_delay_ms
        return self._random.randint(low, high) / 1000

    # ---------------- Wait helpers ----------------
    async def wait_for_page_contains_string_async(self, text: str, timeout=None, visible_text_only: bool = False) -> bool:
        """
        Wait until the page source (or only its visible text) contains ``text``.
        Returns False when the timeout runs out.
        """
        self._active_driver()
        timeout = self.defaults.page_contains_string_timeout if timeout is None else timeout
        snapshot = self.page_text if visible_text_only else self.page_source

        def contains():
            with _driver_faults_are_transient():
                return text in snapshot()

        params = {"visible_text_only": visible_text_only}
        with self._step("wait_for_page_contains_string", text, params) as entry:
            met = await wait_until(contains, timeout, self.defaults.poll_interval, on_retry=self._retry_hook(entry))
            if not met:
                logger.info("Text %r not found within %ss", text, timeout)
                self._record_timeout(entry, timeout)
        return met

    def wait_for_page_contains_string(self, text: str, timeout=None, visible_text_only: bool = False) -> bool:
        return run_blocking(self.wait_for_page_contains_string_async(text, timeout, visible_text_only))

    async def wait_for_element_exists_async(self, target: Locator, timeout=None, index: int = 0) -> bool:
        """Wait until the active frame holds at least ``index + 1`` matches."""
        driver = self._active_driver()
        by, value = target
        timeout = self.defaults.element_exists_timeout if timeout is None else timeout

        def exists():
            with _driver_faults_are_transient():
                return len(driver.find_elements(by, value)) > index

        with self._step("wait_for_element_exists", _describe(target), {"index": index}) as entry:
            met = await wait_until(exists, timeout, self.defaults.poll_interval, on_retry=self._retry_hook(entry))
            if not met:
                logger.info("Element %s #%d did not appear within %ss", _describe(target), index, timeout)
                self._record_timeout(entry, timeout)
        return met

    def wait_for_element_exists(self, target: Locator, timeout=None, index: int = 0) -> bool:
        return run_blocking(self.wait_for_element_exists_async(target, timeout, index))

    async def wait_for_element_displayed_async(self, target, timeout=None, index: int = 0) -> bool:
        """
        Wait until an element is displayed. A locator is resolved once up front;
        if nothing matches at ``index`` the result is False straight away.
        """
        timeout = self.defaults.element_displayed_timeout if timeout is None else timeout
        try:
            element = self.find_element(target, index)
        except ElementNotFound:
            logger.info("Element %s #%d does not exist", _describe(target), index)
            return False

        def displayed():
            with _driver_faults_are_transient():
                return element.is_displayed()

        with self._step("wait_for_element_displayed", _describe(target), {"index": index}) as entry:
            met = await wait_until(displayed, timeout, self.defaults.poll_interval, on_retry=self._retry_hook(entry))
            if not met:
                logger.info("Element %s #%d not displayed within %ss", _describe(target), index, timeout)
                self._record_timeout(entry, timeout)
        return met

    def wait_for_element_displayed(self, target, timeout=None, index: int = 0) -> bool:
        return run_blocking(self.wait_for_element_displayed_async(target, timeout, index))

    async def wait_for_element_exists_and_displayed_async(self, target: Locator, timeout=None, index: int = 0) -> bool:
        """
        Wait for the element to exist, then to be displayed, within one shared
        budget (by default the exists and displayed timeouts added together).
        """
        driver = self._active_driver()
        by, value = target
        timeout = self.defaults.element_exists_and_displayed_timeout if timeout is None else timeout

        def exists():
            with _driver_faults_are_transient():
                return len(driver.find_elements(by, value)) > index

        def displayed():
            # re-resolved every time so a re-rendered element is not stale
            with _driver_faults_are_transient():
                return self.find_element(target, index).is_displayed()

        with self._step("wait_for_element_exists_and_displayed", _describe(target), {"index": index}) as entry:
            met = await wait_until_chained(
                exists,
                displayed,
                timeout,
                self.defaults.poll_interval,
                on_retry=self._retry_hook(entry),
            )
            if not met:
                logger.info("Element %s #%d not visible within %ss", _describe(target), index, timeout)
                self._record_timeout(entry, timeout)
        return met

    def wait_for_element_exists_and_displayed(self, target: Locator, timeout=None, index: int = 0) -> bool:
        return run_blocking(self.wait_for_element_exists_and_displayed_async(target, timeout, index))

    # ---------------- Frames and tabs ----------------
    def switch_to_frame(self, frame, index: int = 0):
        """Frame by name/id, position, element or locator."""
        driver = self._active_driver()
        if isinstance(frame, tuple):
            frame = self.find_element(frame, index)
        driver.switch_to.frame(frame)

    def switch_to_default_frame(self):
        self._active_driver().switch_to.default_content()

    async def open_new_tab_async(self) -> str:
        driver = self._active_driver()
        window_count = len(driver.window_handles)
        self.execute_javascript("window.open('');")

        opened = await wait_until(
            lambda: len(driver.window_handles) > window_count,
            NEW_TAB_TIMEOUT,
            NEW_TAB_POLL_INTERVAL,
            transient=(WebDriverException,),
        )
        if not opened:
            logger.warning("No new window handle after %ss", NEW_TAB_TIMEOUT)

        handle = driver.window_handles[-1]
        driver.switch_to.window(handle)
        return handle

    def open_new_tab(self) -> str:
        return run_blocking(self.open_new_tab_async())

    def make_element_visible(self, target, index: int = 0):
        element = self.find_element(target, index)
        self.execute_javascript("arguments[0].style.display = 'block';", element)
        if element.get_attribute("type") == "hidden":
            self.execute_javascript("arguments[0].setAttribute('type', '');", element)
