import dataclasses

import pytest

import session_config
from session_config import (
    ClickStrategy,
    InputBehaviour,
    InputStrategy,
    ScrollBehaviour,
    SessionDefaults,
)


def test_defaults_match_library_defaults():
    defaults = SessionDefaults()

    assert defaults.click_strategy is ClickStrategy.SIMPLE
    assert defaults.scroll_behaviour is ScrollBehaviour.NONE
    assert defaults.input_strategy is InputStrategy.SEND_KEYS
    assert defaults.input_behaviour is InputBehaviour.NONE
    assert defaults.element_exists_timeout == 30.0
    assert defaults.element_displayed_timeout == 30.0
    assert defaults.page_contains_string_timeout == 30.0
    assert defaults.poll_interval == 0.25


def test_exists_and_displayed_timeout_is_the_sum():
    defaults = SessionDefaults(element_exists_timeout=5, element_displayed_timeout=2.5)

    assert defaults.element_exists_and_displayed_timeout == 7.5


def test_defaults_are_immutable():
    defaults = SessionDefaults()

    with pytest.raises(dataclasses.FrozenInstanceError):
        defaults.click_strategy = ClickStrategy.JAVASCRIPT


def test_with_overrides_returns_a_copy():
    defaults = SessionDefaults()

    changed = defaults.with_overrides(click_strategy=ClickStrategy.MOUSE_ACTION, poll_interval=0.1)

    assert changed.click_strategy is ClickStrategy.MOUSE_ACTION
    assert changed.poll_interval == 0.1
    assert defaults.click_strategy is ClickStrategy.SIMPLE


@pytest.mark.parametrize(
    "changes",
    [
        {"element_exists_timeout": -1},
        {"poll_interval": 0},
        {"poll_interval": float("nan")},
        {"poll_interval": float("inf")},
        {"page_contains_string_timeout": float("nan")},
        {"element_displayed_timeout": float("inf")},
        {"humanlike_min_delay_ms": 300, "humanlike_max_delay_ms": 100},
    ],
)
def test_invalid_values_are_rejected(changes):
    with pytest.raises(ValueError):
        SessionDefaults(**changes)


def test_from_env_parses_each_field_type():
    environ = {
        "WEB_MCP_CLICK_STRATEGY": "JavaScript_Event",
        "WEB_MCP_SCROLL_BEHAVIOUR": "driver_scroll",
        "WEB_MCP_INPUT_BEHAVIOUR": "clear_at_start_tab_at_end",
        "WEB_MCP_ELEMENT_EXISTS_TIMEOUT": "12.5",
        "WEB_MCP_HUMANLIKE_MAX_DELAY_MS": "400",
        "WEB_MCP_HEADLESS": "yes",
        "WEB_MCP_TRACE_ENABLED": "0",
        "WEB_MCP_REMOTE_URL": "http://grid:4444/wd/hub",
        "UNRELATED": "ignored",
    }

    defaults = SessionDefaults.from_env(environ)

    assert defaults.click_strategy is ClickStrategy.JAVASCRIPT_EVENT
    assert defaults.scroll_behaviour is ScrollBehaviour.DRIVER_SCROLL
    assert defaults.input_behaviour is InputBehaviour.CLEAR_AT_START_TAB_AT_END
    assert defaults.element_exists_timeout == 12.5
    assert defaults.humanlike_max_delay_ms == 400
    assert defaults.headless is True
    assert defaults.trace_enabled is False
    assert defaults.remote_url == "http://grid:4444/wd/hub"


def test_from_env_ignores_empty_values():
    defaults = SessionDefaults.from_env({"WEB_MCP_POLL_INTERVAL": ""})

    assert defaults.poll_interval == 0.25


def test_from_env_rejects_non_finite_interval():
    with pytest.raises(ValueError, match="poll_interval"):
        SessionDefaults.from_env({"WEB_MCP_POLL_INTERVAL": "nan"})


@pytest.mark.parametrize(
    "name, raw",
    [
        ("WEB_MCP_CLICK_STRATEGY", "double"),
        ("WEB_MCP_HEADLESS", "maybe"),
        ("WEB_MCP_POLL_INTERVAL", "fast"),
    ],
)
def test_from_env_rejects_bad_values(name, raw):
    with pytest.raises(ValueError, match=name):
        SessionDefaults.from_env({name: raw})


def test_from_env_reads_process_environment(monkeypatch):
    loaded = []
    monkeypatch.setattr(session_config, "load_dotenv", lambda override: loaded.append(override))
    monkeypatch.setenv("WEB_MCP_INPUT_STRATEGY", "human_like")

    defaults = SessionDefaults.from_env()

    assert loaded == [True]
    assert defaults.input_strategy is InputStrategy.HUMAN_LIKE
