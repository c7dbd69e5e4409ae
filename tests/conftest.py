# tests/conftest.py
import asyncio
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import pytest
from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

from config_manager import AutomationConfig, EventPublisherConfig, TargetCredentials
from filling import StepAction, StepExecutor, WizardStep
from locator import FieldSelectors, SelectorCandidate
from targets import TargetDefinition
from flow import PageCheck


# ---------------------------------------------------------------------
# Test-wide env isolation: no real credentials or overrides leak in
# ---------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch):
    for key in list(os.environ):
        if key.startswith("AUTOMATION_") or key.startswith("EVENTIM_") or key.startswith("DEMO_"):
            monkeypatch.delenv(key, raising=False)


# ---------------------------------------------------------------------
# Playwright doubles
# ---------------------------------------------------------------------
class FakeKeyboard:
    def __init__(self, page: "FakePage"):
        self.page = page
        self.typed = ""

    async def type(self, text: str):
        self.typed += text
        if self.page.focused is not None:
            self.page.focused.value += text


class FakeElement:
    def __init__(self, page: "FakePage", name: str, visible: bool = True, has_box: bool = True,
                 tag: str = "input", on_click=None, click_error: Optional[Exception] = None):
        self.page = page
        self.name = name
        self.visible = visible
        self.has_box = has_box
        self.tag = tag
        self.on_click = on_click
        self.click_error = click_error
        self.value = ""
        self.selected: Optional[Dict[str, str]] = None
        self.options: List[str] = []
        self.select_timeouts: List[Optional[int]] = []

    async def is_visible(self) -> bool:
        return self.visible

    async def bounding_box(self):
        return {"x": 0, "y": 0, "width": 100, "height": 20} if self.has_box else None

    async def click(self):
        if self.click_error:
            raise self.click_error
        self.page.actions.append(("click", self.name))
        self.page.focused = self
        if self.on_click:
            self.on_click(self.page)

    async def fill(self, value: str):
        self.page.actions.append(("fill", self.name))
        self.value = value

    async def evaluate(self, script: str):
        return self.tag

    async def select_option(self, label: Optional[str] = None, value: Optional[str] = None,
                            timeout: Optional[int] = None):
        self.select_timeouts.append(timeout)
        wanted = label if label is not None else value
        if label is not None and label not in self.options:
            raise PlaywrightError(f"did not find some options: label={label}")
        self.selected = {"label": label, "value": value}
        self.page.actions.append(("select", self.name, wanted))


class FakePage:
    """
    Minimal async Page: ``elements`` maps a selector string to the handles it returns.
    Selectors listed in ``invalid_selectors`` raise like an unsupported selector engine.
    """

    def __init__(self, url: str = "about:blank", title: str = ""):
        self.url = url
        self.title_text = title
        self.elements: Dict[str, List[FakeElement]] = {}
        self.invalid_selectors: List[str] = []
        self.snapshots: Dict[str, List[Dict[str, Any]]] = {}
        self.actions: List[tuple] = []
        self.queries: List[str] = []
        self.keyboard = FakeKeyboard(self)
        self.focused: Optional[FakeElement] = None
        self.closed = False
        self.goto_error: Optional[Exception] = None
        self.goto_delay = 0.0
        self.navigation_timeout = False
        self.pages: Dict[str, str] = {}

    def add(self, selector: str, name: str, **kwargs) -> FakeElement:
        element = FakeElement(self, name, **kwargs)
        self.elements.setdefault(selector, []).append(element)
        return element

    def is_closed(self) -> bool:
        return self.closed

    async def title(self) -> str:
        if self.closed:
            raise PlaywrightError("Target page, context or browser has been closed")
        return self.title_text

    async def query_selector_all(self, selector: str):
        self.queries.append(selector)
        if self.closed:
            raise PlaywrightError("Target page, context or browser has been closed")
        if selector in self.invalid_selectors:
            raise PlaywrightError(f"Unexpected token in selector {selector}")
        return list(self.elements.get(selector, []))

    async def eval_on_selector_all(self, selector: str, script: str, arg=None):
        return list(self.snapshots.get(selector, []))

    async def goto(self, url: str, wait_until: str = None, timeout: int = None):
        self.actions.append(("goto", url))
        if self.goto_delay:
            await asyncio.sleep(self.goto_delay)
        if self.goto_error:
            raise self.goto_error
        self.url = url
        self.title_text = self.pages.get(url, self.title_text)

    @asynccontextmanager
    async def expect_navigation(self, wait_until: str = None, timeout: int = None):
        self.actions.append(("expect_navigation", timeout))
        yield
        if self.navigation_timeout:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded.")

    async def wait_for_url(self, url, wait_until: str = None, timeout: int = None):
        if url not in self.url:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {url}")

    async def wait_for_load_state(self, state: str = None, timeout: int = None):
        self.actions.append(("load_state", state))

    async def wait_for_selector(self, selector: str, state: str = None, timeout: int = None):
        handles = self.elements.get(selector)
        if not handles:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {selector}")
        return handles[0]


class FakeSession:
    """Stands in for BrowserSession; counts opens and closes."""

    def __init__(self, page: Optional[FakePage] = None, open_error: Optional[Exception] = None):
        self.page = page or FakePage()
        self.open_error = open_error
        self.opened = 0
        self.closed = 0

    async def open(self):
        self.opened += 1
        if self.open_error:
            raise self.open_error
        return self.page

    async def close(self):
        self.closed += 1


class SessionRecorder:
    """Session factory that hands out prepared sessions and remembers them."""

    def __init__(self, *sessions: FakeSession):
        self.prepared = list(sessions)
        self.created: List[FakeSession] = []

    def __call__(self, mode, label):
        session = self.prepared.pop(0) if self.prepared else FakeSession()
        self.created.append(session)
        return session


# ---------------------------------------------------------------------
# Shared configuration and target fixtures
# ---------------------------------------------------------------------
@pytest.fixture
def fast_automation() -> AutomationConfig:
    return AutomationConfig(
        max_retries=1,
        retry_base_delay=0,
        element_wait_timeout=30,
        navigation_timeout=1000,
        poll_interval=5,
        typing_delay_min=0,
        typing_delay_max=0,
        enable_performance_monitoring=True,
    )


@pytest.fixture
def fast_config(fast_automation) -> EventPublisherConfig:
    return EventPublisherConfig(
        automation=fast_automation,
        credentials={"demo": TargetCredentials(email="organiser@example.com", password="s3cret")},
    )


def selectors(**fields: str) -> Dict[str, FieldSelectors]:
    """selectors(email="input[type=email]") -> one-candidate selector sets"""
    return {
        name: FieldSelectors(field_name=name, candidates=[SelectorCandidate(name=f"by {name}", selector=sel)])
        for name, sel in fields.items()
    }


@pytest.fixture
def executor(fast_automation) -> StepExecutor:
    return StepExecutor(
        selectors=selectors(email="#email", password="#password", submit="#submit",
                            category="#category", publish="#publish", banner="#banner"),
        config=fast_automation,
        label="demo",
    )


LOGIN_URL = "https://tickets.example.com/login"
DASHBOARD_URL = "https://tickets.example.com/dashboard"


def go_to_dashboard(page: FakePage):
    page.url = DASHBOARD_URL
    page.title_text = "Tableau de bord"


@pytest.fixture
def demo_definition() -> TargetDefinition:
    return TargetDefinition(
        name="demo",
        display_name="Demo Tickets",
        budget_ms=5000,
        selectors=selectors(email="#email", password="#password", submit="#submit",
                            title="#title", publish="#publish"),
        steps=[
            WizardStep(name="open_login", action=StepAction.NAVIGATE, value=LOGIN_URL),
            WizardStep(name="fill_email", action=StepAction.FILL, target_field="email",
                       value_from="credentials.email"),
            WizardStep(name="fill_password", action=StepAction.FILL, target_field="password",
                       value_from="credentials.password"),
            WizardStep(name="submit_login", action=StepAction.CLICK, target_field="submit",
                       checkpoint="logged_in"),
            WizardStep(name="fill_title", action=StepAction.FILL, target_field="title", value_from="title"),
            WizardStep(name="publish", action=StepAction.CLICK, target_field="publish", commit=True),
        ],
        checks={"logged_in": [PageCheck(kind="url_excludes", value="login")]},
        success_check="logged_in",
    )


def login_page(title_field: bool = True) -> FakePage:
    """A page on which the demo target's whole wizard can run."""
    page = FakePage(title="Connexion")
    page.add("#email", "email")
    page.add("#password", "password")
    page.add("#submit", "submit", tag="button", on_click=go_to_dashboard)
    if title_field:
        page.add("#title", "title")
    page.add("#publish", "publish", tag="button")
    return page


EVENT = {
    "title": "Jazz au Sunset",
    "date": "2026-11-21",
    "time": "21:30",
    "venue": "Sunset Sunside",
    "address": "60 rue des Lombards, Paris",
    "eventUrl": "https://hormur.com/events/jazz",
}
