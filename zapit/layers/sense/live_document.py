"""
Live Document - The Document interface over a running browser.

Every read and write is a small script executed in the page through
Selenium, so the rule engine mutates the real DOM the user sees.
"""

from typing import Hashable, List, Optional, TYPE_CHECKING

from selenium.common.exceptions import InvalidSelectorException, WebDriverException
from selenium.webdriver.common.by import By

from zapit.core.errors import InvalidSelectorError
from zapit.layers.sense.document import Document, Element

if TYPE_CHECKING:
    from selenium.webdriver.remote.webdriver import WebDriver
    from selenium.webdriver.remote.webelement import WebElement


INSTALL_STYLESHEET_JS = """
    const styleId = arguments[0];
    if (document.getElementById(styleId)) return false;
    const style = document.createElement('style');
    style.id = styleId;
    style.textContent = arguments[1];
    (document.head || document.documentElement).appendChild(style);
    return true;
"""


class LiveElement(Element):
    """Element backed by a Selenium WebElement."""

    def __init__(self, driver: "WebDriver", web_element: "WebElement"):
        self.driver = driver
        self.web_element = web_element

    def _run(self, script: str, *args):
        return self.driver.execute_script(script, self.web_element, *args)

    @property
    def handle(self) -> Hashable:
        # WebDriver element references stay stable for one document load.
        return self.web_element.id

    @property
    def tag_name(self) -> str:
        return (self.web_element.tag_name or "").lower()

    @property
    def element_id(self) -> str:
        return self.web_element.get_attribute("id") or ""

    @property
    def classes(self) -> List[str]:
        return (self.web_element.get_attribute("class") or "").split()

    @property
    def parent(self) -> Optional[Element]:
        parent = self._run("return arguments[0].parentElement;")
        if parent is None:
            return None
        return LiveElement(self.driver, parent)

    @property
    def children(self) -> List[Element]:
        children = self._run("return Array.from(arguments[0].children);") or []
        return [LiveElement(self.driver, child) for child in children]

    def get_attribute(self, name: str) -> Optional[str]:
        return self.web_element.get_attribute(name)

    def set_attribute(self, name: str, value: str) -> None:
        self._run("arguments[0].setAttribute(arguments[1], arguments[2]);", name, value)

    def remove_attribute(self, name: str) -> None:
        self._run("arguments[0].removeAttribute(arguments[1]);", name)

    def has_class(self, name: str) -> bool:
        return bool(self._run("return arguments[0].classList.contains(arguments[1]);", name))

    def add_class(self, name: str) -> None:
        self._run("arguments[0].classList.add(arguments[1]);", name)

    def remove_class(self, name: str) -> None:
        self._run("arguments[0].classList.remove(arguments[1]);", name)

    def get_style(self, css_name: str) -> str:
        return self._run("return arguments[0].style.getPropertyValue(arguments[1]);", css_name) or ""

    def set_style(self, css_name: str, value: str) -> None:
        if not value:
            self.remove_style(css_name)
            return
        self._run("arguments[0].style.setProperty(arguments[1], arguments[2]);", css_name, value)

    def remove_style(self, css_name: str) -> None:
        self._run("arguments[0].style.removeProperty(arguments[1]);", css_name)

    @property
    def inner_html(self) -> str:
        return self._run("return arguments[0].innerHTML;") or ""

    @inner_html.setter
    def inner_html(self, markup: str) -> None:
        self._run("arguments[0].innerHTML = arguments[1];", markup or "")

    @property
    def text(self) -> str:
        return self._run("return arguments[0].textContent;") or ""


class LiveDocument(Document):
    """
    The page currently loaded in a WebDriver session.

    Example:
        >>> doc = LiveDocument(driver)
        >>> doc.select("#ad-123")
    """

    def __init__(self, driver: "WebDriver"):
        self.driver = driver

    @property
    def url(self) -> str:
        return self.driver.current_url

    def select(self, selector: str) -> List[Element]:
        try:
            found = self.driver.find_elements(By.CSS_SELECTOR, selector)
        except InvalidSelectorException as e:
            raise InvalidSelectorError(selector, e.msg) from e
        return [LiveElement(self.driver, web_element) for web_element in found]

    def install_stylesheet(self, style_id: str, css: str) -> None:
        self.driver.execute_script(INSTALL_STYLESHEET_JS, style_id, css)

    def is_ready(self) -> bool:
        """True once the page has finished loading."""
        try:
            return self.driver.execute_script("return document.readyState;") == "complete"
        except WebDriverException:
            return False
