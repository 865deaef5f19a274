import pytest

from session_config import SessionDefaults
from webdriver_session import WebDriverSession


class FakeElement:
    def __init__(self, name="element", displayed=True, attributes=None, location=None):
        self.name = name
        self.displayed = displayed
        self.attributes = dict(attributes or {})
        self.location = location or {"x": 0, "y": 0}
        self.clicks = 0
        self.typed = []
        self.cleared = 0
        self.submitted = 0
        self.scrolled = 0
        self.display_checks = 0

    def is_displayed(self):
        self.display_checks += 1
        if isinstance(self.displayed, BaseException):
            raise self.displayed
        if callable(self.displayed):
            return self.displayed()
        return self.displayed

    def click(self):
        self.clicks += 1

    def send_keys(self, text):
        self.typed.append(text)

    def clear(self):
        self.cleared += 1

    def submit(self):
        self.submitted += 1

    @property
    def location_once_scrolled_into_view(self):
        self.scrolled += 1
        return self.location

    def get_attribute(self, name):
        return self.attributes.get(name)

    def __repr__(self):
        return f"<FakeElement {self.name}>"


class FakeSwitchTo:
    def __init__(self):
        self.frames = []
        self.windows = []
        self.default_content_calls = 0

    def frame(self, frame):
        self.frames.append(frame)

    def default_content(self):
        self.default_content_calls += 1

    def window(self, handle):
        self.windows.append(handle)


class FakeDriver:
    """Just enough of a Selenium WebDriver for the session to drive."""

    def __init__(self, page_source="<html><body></body></html>"):
        self.source = page_source
        self.elements = {}
        self.scripts = []
        self.script_results = {}
        self.window_handles = ["main"]
        self.open_window_on_script = True
        self.switch_to = FakeSwitchTo()
        self.visited = []
        self.quit_calls = 0
        self.find_calls = 0

    @property
    def page_source(self):
        if isinstance(self.source, BaseException):
            raise self.source
        if callable(self.source):
            return self.source()
        return self.source

    def find_elements(self, by, value):
        self.find_calls += 1
        found = self.elements.get((by, value), [])
        if callable(found):
            found = found()
        return list(found)

    def execute_script(self, script, *args):
        self.scripts.append((script, args))
        if "window.open" in script and self.open_window_on_script:
            self.window_handles.append(f"tab-{len(self.window_handles)}")
        for fragment, result in self.script_results.items():
            if fragment in script:
                return result
        return None

    def get(self, url):
        self.visited.append(url)

    def quit(self):
        self.quit_calls += 1

    def save_screenshot(self, path):
        with open(path, "wb") as f:
            f.write(b"png")
        return True


@pytest.fixture
def fake_driver():
    return FakeDriver()


@pytest.fixture
def fast_defaults():
    return SessionDefaults(
        page_contains_string_timeout=0.2,
        element_exists_timeout=0.2,
        element_displayed_timeout=0.2,
        poll_interval=0.02,
        humanlike_min_delay_ms=0,
        humanlike_max_delay_ms=1,
    )


@pytest.fixture
def session(fake_driver, fast_defaults):
    return WebDriverSession(driver=fake_driver, defaults=fast_defaults)
