import logging
import os

from mcp.server.fastmcp import FastMCP
from selenium.common.exceptions import TimeoutException

from session_config import InputBehaviour, InputStrategy, SessionDefaults
from webdriver_session import ElementNotFound, WebDriverSession, locator

app = FastMCP("webdriver-extensions")
session = WebDriverSession(defaults=SessionDefaults.from_env())

def ok(**k): return {"status": "OK", **k}
def err(code, msg): return {"status": "ERROR", "error_code": code, "message": msg}

def _timeout(timeout_ms):
    return None if timeout_ms is None else timeout_ms / 1000

# ---------------- Browser tools ----------------

@app.tool()
async def launch_application(url: str):
    try:
        session.launch()
        session.navigate(url)
        return ok()
    except Exception as e:
        return err("LAUNCH_FAILED", str(e))

@app.tool()
async def close_application():
    session.close()
    return ok()

@app.tool()
async def navigate(url: str):
    """
    Navigate to a URL without closing the browser.
    """
    try:
        session.navigate(url)
        return ok()
    except TimeoutException as e:
        return err("NAVIGATION_TIMEOUT", str(e))
    except Exception as e:
        return err("NAVIGATION_FAILED", str(e))

@app.tool()
async def get_page_html():
    try:
        return ok(html=session.page_source())
    except Exception as e:
        return err("PAGE_SOURCE_FAILED", str(e))

@app.tool()
async def get_page_text():
    """
    Visible text of the current page, without markup, scripts or styles.
    """
    try:
        return ok(text=session.page_text())
    except Exception as e:
        return err("PAGE_TEXT_FAILED", str(e))

# ---------------- Mouse and keyboard tools ----------------

@app.tool()
async def click(selector: str, by: str = "xpath", index: int = 0, strategy: str = None):
    """
    Click an element. strategy is one of simple, mouse_action, javascript,
    javascript_event; the session default is used when omitted.
    """
    try:
        session.click_element(locator(selector, by), strategy=strategy, index=index)
        return ok()
    except ElementNotFound as e:
        return err("ELEMENT_NOT_FOUND", str(e))
    except ValueError as e:
        return err("INVALID_ARGUMENT", str(e))
    except Exception as e:
        return err("CLICK_FAILED", str(e))

@app.tool()
async def type_into(selector: str, value: str, by: str = "xpath", index: int = 0):
    """
    Clear the field, then send the whole value at once.
    """
    try:
        await session.simulate_input_async(
            locator(selector, by), value,
            strategy=InputStrategy.SEND_KEYS,
            behaviour=InputBehaviour.CLEAR_AT_START,
            index=index,
        )
        return ok()
    except ElementNotFound as e:
        return err("ELEMENT_NOT_FOUND", str(e))
    except Exception as e:
        return err("TYPE_FAILED", str(e))

@app.tool()
async def type_like_human(selector: str, value: str, by: str = "xpath", index: int = 0, press_tab: bool = False):
    """
    Types text character-by-character into the field.

    IMPORTANT:
    - This tool DOES NOT clear the field first. It appends to existing text.
    - Use press_tab=True to leave the field with TAB afterwards.
    """
    behaviour = InputBehaviour.TAB_AT_END if press_tab else InputBehaviour.NONE
    try:
        await session.simulate_input_async(
            locator(selector, by), value,
            strategy=InputStrategy.HUMAN_LIKE,
            behaviour=behaviour,
            index=index,
        )
        return ok()
    except ElementNotFound as e:
        return err("ELEMENT_NOT_FOUND", str(e))
    except Exception as e:
        return err("HUMAN_TYPE_FAILED", str(e))

@app.tool()
async def hover(selector: str, by: str = "xpath", index: int = 0):
    try:
        session.hover_over_element(locator(selector, by), index=index)
        return ok()
    except ElementNotFound as e:
        return err("ELEMENT_NOT_FOUND", str(e))
    except Exception as e:
        return err("HOVER_FAILED", str(e))

@app.tool()
async def submit_form(selector: str, by: str = "xpath", index: int = 0):
    try:
        session.submit_form(locator(selector, by), index=index)
        return ok()
    except ElementNotFound as e:
        return err("ELEMENT_NOT_FOUND", str(e))
    except Exception as e:
        return err("SUBMIT_FAILED", str(e))

@app.tool()
async def scroll_to_element(selector: str, by: str = "xpath", index: int = 0):
    try:
        session.scroll_to_element(locator(selector, by), behaviour="javascript_scroll_into_view", index=index)
        return ok()
    except ElementNotFound as e:
        return err("NOT_FOUND", str(e))
    except Exception as e:
        return err("SCROLL_FAILED", str(e))

@app.tool()
async def make_visible(selector: str, by: str = "xpath", index: int = 0):
    """
    Force a hidden element to display so it can be interacted with.
    """
    try:
        session.make_element_visible(locator(selector, by), index=index)
        return ok()
    except ElementNotFound as e:
        return err("ELEMENT_NOT_FOUND", str(e))
    except Exception as e:
        return err("MAKE_VISIBLE_FAILED", str(e))

# ---------------- Wait tools ----------------

@app.tool()
async def wait_for_text(text: str, timeout_ms: int = None, visible_only: bool = False):
    try:
        if await session.wait_for_page_contains_string_async(text, _timeout(timeout_ms), visible_only):
            return ok()
        return err("TIMEOUT", f"Text not found: '{text}'")
    except Exception as e:
        return err("WAIT_FAILED", str(e))

@app.tool()
async def wait_for_element(selector: str, by: str = "xpath", timeout_ms: int = None, index: int = 0):
    try:
        if await session.wait_for_element_exists_async(locator(selector, by), _timeout(timeout_ms), index):
            return ok()
        return err("TIMEOUT", f"Element not found: {selector}")
    except Exception as e:
        return err("WAIT_FAILED", str(e))

@app.tool()
async def wait_for_visible_element(selector: str, by: str = "xpath", timeout_ms: int = None, index: int = 0):
    """
    Wait for an element to exist and then to be displayed, sharing one timeout.
    """
    try:
        target = locator(selector, by)
        if await session.wait_for_element_exists_and_displayed_async(target, _timeout(timeout_ms), index):
            return ok()
        return err("TIMEOUT", f"Element not visible: {selector}")
    except Exception as e:
        return err("WAIT_FAILED", str(e))

# ---------------- Frame and tab tools ----------------

@app.tool()
async def switch_to_frame(name: str = None, selector: str = None, by: str = "xpath", index: int = 0):
    """
    Switch into an iframe, either by its name/id or by a selector for the
    frame element.
    """
    try:
        if selector:
            session.switch_to_frame(locator(selector, by), index=index)
        elif name:
            session.switch_to_frame(name)
        else:
            session.switch_to_frame(index)
        return ok()
    except ElementNotFound as e:
        return err("ELEMENT_NOT_FOUND", str(e))
    except Exception as e:
        return err("FRAME_SWITCH_FAILED", str(e))

@app.tool()
async def switch_to_default_frame():
    try:
        session.switch_to_default_frame()
        return ok()
    except Exception as e:
        return err("FRAME_SWITCH_FAILED", str(e))

@app.tool()
async def open_new_tab():
    try:
        return ok(handle=await session.open_new_tab_async())
    except Exception as e:
        return err("NEW_TAB_FAILED", str(e))


def main():
    logging.basicConfig(
        level=os.getenv("WEB_MCP_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    app.run()


if __name__ == "__main__":
    main()
