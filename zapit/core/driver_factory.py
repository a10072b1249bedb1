"""
Driver Factory - WebDriver creation for live sessions.

Provides a single place to build the Chrome WebDriver that hosts live
pages, and to wait for a page to finish loading before rules are
pushed into it.
"""

from typing import Optional
from selenium import webdriver
from selenium.common.exceptions import TimeoutException
from selenium.webdriver.chrome.options import Options as ChromeOptions
from selenium.webdriver.support.ui import WebDriverWait

# Type alias for driver - can be extended to support other browsers
WebDriverType = webdriver.Chrome


def create_driver(
    headless: bool = False,
    profile_path: Optional[str] = None,
    page_load_timeout: int = 30,
) -> WebDriverType:
    """
    Create a Chrome WebDriver instance.

    Args:
        headless: Run browser in headless mode
        profile_path: Path to browser profile for session persistence
        page_load_timeout: Seconds before a navigation is abandoned

    Returns:
        WebDriver instance

    Example:
        >>> driver = create_driver(headless=True)
        >>> driver.get("https://example.com")
    """
    options = ChromeOptions()

    if headless:
        options.add_argument("--headless=new")

    if profile_path:
        options.add_argument(f"--user-data-dir={profile_path}")

    # Common stability options
    options.add_argument("--disable-extensions")
    options.add_argument("--no-sandbox")
    options.add_argument("--disable-dev-shm-usage")
    options.add_argument("--disable-gpu")
    options.add_argument("--window-size=1920,1080")

    driver = webdriver.Chrome(options=options)
    driver.set_page_load_timeout(page_load_timeout)
    return driver


def wait_for_page_load(driver: WebDriverType, timeout: int = 30) -> bool:
    """
    Block until ``document.readyState`` is ``complete``.

    Returns:
        True if the page finished loading within ``timeout`` seconds
    """
    try:
        WebDriverWait(driver, timeout).until(
            lambda d: d.execute_script("return document.readyState;") == "complete"
        )
        return True
    except TimeoutException:
        return False
