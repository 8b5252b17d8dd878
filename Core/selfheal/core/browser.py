from __future__ import annotations

from typing import Any

from selenium import webdriver
from selenium.webdriver import ChromeOptions, EdgeOptions, FirefoxOptions

from selfheal.core.session import AutomationSession

_VENDOR_KEYS = {"goog:chromeOptions", "ms:edgeOptions"}


class BrowserSession:
    """Creates healing-ready browser sessions from capability dicts."""

    def __init__(self, hub_url: str | None = None, headless: bool = False, page_load_timeout: int = 30) -> None:
        self.hub_url = hub_url
        self.headless = headless
        self.page_load_timeout = page_load_timeout

    def start(self, capabilities: dict[str, Any], name: str | None = None) -> AutomationSession:
        options = self.build_options(capabilities)
        if self.hub_url:
            driver = webdriver.Remote(command_executor=self.hub_url, options=options)
        elif isinstance(options, FirefoxOptions):
            driver = webdriver.Firefox(options=options)
        elif isinstance(options, EdgeOptions):
            driver = webdriver.Edge(options=options)
        else:
            driver = webdriver.Chrome(options=options)
        driver.set_page_load_timeout(self.page_load_timeout)
        driver.implicitly_wait(0)
        return AutomationSession(driver, name=name)

    def build_options(self, capabilities: dict[str, Any]):
        browser_name = str(capabilities.get("browserName", "chrome")).lower()
        if browser_name == "chrome":
            options = ChromeOptions()
            vendor = capabilities.get("goog:chromeOptions", {})
            if self.headless:
                options.add_argument("--headless=new")
        elif browser_name in {"microsoftedge", "edge"}:
            options = EdgeOptions()
            vendor = capabilities.get("ms:edgeOptions", {})
            if self.headless:
                options.add_argument("--headless=new")
        elif browser_name == "firefox":
            options = FirefoxOptions()
            vendor = {}
            if self.headless:
                options.add_argument("-headless")
        else:
            raise ValueError(f"Unsupported browser: {browser_name}")

        for argument in vendor.get("args", []):
            options.add_argument(argument)
        for extension in vendor.get("extensions", []):
            options.add_encoded_extension(extension)
        for key, value in capabilities.items():
            if key in _VENDOR_KEYS or key == "browserName":
                continue
            options.set_capability(key, value)
        return options
