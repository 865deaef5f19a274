import math
import os
from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Mapping, Optional

from dotenv import load_dotenv

ENV_PREFIX = "WEB_MCP_"


class ClickStrategy(str, Enum):
    SIMPLE = "simple"                       # WebElement.click()
    MOUSE_ACTION = "mouse_action"           # pointer move, press and release
    JAVASCRIPT = "javascript"               # el.click() inside the page
    JAVASCRIPT_EVENT = "javascript_event"   # synthetic DOM "click" event


class ScrollBehaviour(str, Enum):
    NONE = "none"
    DRIVER_SCROLL = "driver_scroll"
    JAVASCRIPT_SCROLL_INTO_VIEW = "javascript_scroll_into_view"


class InputStrategy(str, Enum):
    SEND_KEYS = "send_keys"
    HUMAN_LIKE = "human_like"


class InputBehaviour(str, Enum):
    NONE = "none"
    CLEAR_AT_START = "clear_at_start"
    TAB_AT_END = "tab_at_end"
    CLEAR_AT_START_TAB_AT_END = "clear_at_start_tab_at_end"


@dataclass(frozen=True)
class SessionDefaults:
    """Defaults a WebDriverSession falls back to when a call leaves them out."""

    click_strategy: ClickStrategy = ClickStrategy.SIMPLE
    scroll_behaviour: ScrollBehaviour = ScrollBehaviour.NONE
    input_strategy: InputStrategy = InputStrategy.SEND_KEYS
    input_behaviour: InputBehaviour = InputBehaviour.NONE
    page_contains_string_timeout: float = 30.0
    element_exists_timeout: float = 30.0
    element_displayed_timeout: float = 30.0
    poll_interval: float = 0.25
    humanlike_min_delay_ms: int = 50
    humanlike_max_delay_ms: int = 200
    headless: bool = False
    fullscreen: bool = False
    remote_url: Optional[str] = None
    trace_enabled: bool = False
    trace_dir: str = "traces"
    screenshot_on_fail: bool = False

    def __post_init__(self):
        for name in ("page_contains_string_timeout", "element_exists_timeout", "element_displayed_timeout"):
            value = getattr(self, name)
            if not math.isfinite(value) or value < 0:
                raise ValueError(f"{name} must be a finite non-negative number")
        if not math.isfinite(self.poll_interval) or self.poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        if self.humanlike_min_delay_ms < 0 or self.humanlike_min_delay_ms > self.humanlike_max_delay_ms:
            raise ValueError("humanlike delays must satisfy 0 <= min <= max")

    @property
    def element_exists_and_displayed_timeout(self) -> float:
        return self.element_exists_timeout + self.element_displayed_timeout

    def with_overrides(self, **changes) -> "SessionDefaults":
        return replace(self, **changes)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "SessionDefaults":
        """
        Build defaults from WEB_MCP_* variables, e.g. WEB_MCP_CLICK_STRATEGY=javascript
        or WEB_MCP_ELEMENT_EXISTS_TIMEOUT=10. Reading the process environment
        also loads a .env file if one is present.
        """
        if environ is None:
            load_dotenv(override=True)
            environ = os.environ

        values = {}
        for field in fields(cls):
            raw = environ.get(ENV_PREFIX + field.name.upper())
            if raw is None or raw == "":
                continue
            values[field.name] = _parse(field.name, field.default, raw)
        return cls(**values)


def _parse(name, default, raw):
    raw = raw.strip()
    try:
        if isinstance(default, Enum):
            return type(default)(raw.lower())
        if isinstance(default, bool):
            return _parse_bool(raw)
        if isinstance(default, int):
            return int(raw)
        if isinstance(default, float):
            return float(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid value for {ENV_PREFIX}{name.upper()}: {raw!r}") from exc
    return raw


def _parse_bool(raw):
    lowered = raw.lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(raw)
