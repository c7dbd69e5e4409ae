"""
filling.py

This module executes single wizard steps against a Playwright page: navigating,
filling fields, clicking, selecting options and waiting. Each step yields a
StepOutcome; only a lost page escapes as TransportFault.
"""

import asyncio
import json
import logging
import random
import time
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Union

from playwright.async_api import (
    Page,
    ElementHandle,
    Error as PlaywrightError,
    TimeoutError as PlaywrightTimeoutError,
)

from base_exceptions import ErrorKind, TransportFault
from config_manager import AutomationConfig
from extraction import capture_page_diagnostics
from locator import ElementLocator, ElementMatch, FieldSelectors, NotFound, raise_if_transport_fault
from performance_monitor import PerformanceMonitor


class StepAction(str, Enum):
    NAVIGATE = "navigate"
    FILL = "fill"
    CLICK = "click"
    SELECT = "select"
    WAIT_FOR_ELEMENT = "wait_for_element"
    WAIT_FOR_NAVIGATION = "wait_for_navigation"


ValueProducer = Union[str, Callable[[Mapping[str, str]], str]]


@dataclass(frozen=True)
class WizardStep:
    """One UI action in a target's fixed step sequence."""
    name: str
    action: StepAction
    target_field: Optional[str] = None
    value: Optional[str] = None
    value_from: Optional[ValueProducer] = None
    continue_on_missing: bool = False
    expect_navigation: bool = False
    timeout_ms: Optional[int] = None
    settle_ms: int = 0
    fallback_url: Optional[str] = None
    checkpoint: Optional[str] = None
    commit: bool = False
    load_state: str = "domcontentloaded"


@dataclass
class StepOutcome:
    step_name: str
    succeeded: bool
    duration_ms: int = 0
    error_kind: Optional[ErrorKind] = None
    message: str = ""
    skipped: bool = False
    diagnostics: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['error_kind'] = self.error_kind.value if self.error_kind else None
        return {k: v for k, v in data.items() if v is not None}


def option_selector(label: str) -> str:
    """Listbox option by visible text; the label is quoted as a CSS string."""
    return f'[role="option"]:has-text({json.dumps(label or "", ensure_ascii=False)})'


class StepFailure(Exception):
    """Internal signal from an action handler; always converted to a StepOutcome."""

    def __init__(self, kind: ErrorKind, message: str, not_found: Optional[NotFound] = None):
        self.kind = kind
        self.message = message
        self.not_found = not_found
        super().__init__(message)


class StepExecutor:
    """
    Executes WizardSteps for one target, using that target's selector set.
    """

    def __init__(self, selectors: Mapping[str, FieldSelectors], config: AutomationConfig = None,
                 locator: ElementLocator = None, performance_monitor: PerformanceMonitor = None,
                 label: str = ""):
        self.selectors = selectors
        self.config = config or AutomationConfig()
        self.locator = locator or ElementLocator()
        self.performance_monitor = performance_monitor or PerformanceMonitor(enable_monitoring=False)
        self.label = label
        self.logger = logging.getLogger(f"{__name__}.StepExecutor")

    async def execute(self, page: Page, step: WizardStep, resolved_value: Optional[str] = None) -> StepOutcome:
        start = time.monotonic()
        outcome = StepOutcome(step_name=step.name, succeeded=True)
        not_found = None

        try:
            note = await self._dispatch(page, step, resolved_value)
            if note:
                outcome.skipped = True
                outcome.message = note
            if step.settle_ms:
                await asyncio.sleep(step.settle_ms / 1000)
        except StepFailure as failure:
            outcome.succeeded = False
            outcome.error_kind = failure.kind
            outcome.message = failure.message
            not_found = failure.not_found
        except TransportFault as fault:
            duration = time.monotonic() - start
            self.performance_monitor.record_outcome(f"step:{step.name}", duration, False, str(fault))
            self.logger.error(f"[{self.label}] Step '{step.name}' lost the page: {fault}")
            raise

        if not outcome.succeeded:
            outcome.diagnostics = await self._diagnostics(page, step, not_found)

        duration = time.monotonic() - start
        outcome.duration_ms = int(duration * 1000)
        self.performance_monitor.record_outcome(f"step:{step.name}", duration, outcome.succeeded, outcome.message or None)

        if outcome.succeeded:
            suffix = f" ({outcome.message})" if outcome.skipped else ""
            self.logger.info(f"[{self.label}] Step '{step.name}' done in {outcome.duration_ms}ms{suffix}")
        else:
            self.logger.warning(f"[{self.label}] Step '{step.name}' failed after {outcome.duration_ms}ms: "
                                f"{outcome.error_kind.value}: {outcome.message}")
        return outcome

    async def _dispatch(self, page: Page, step: WizardStep, value: Optional[str]) -> Optional[str]:
        handlers = {
            StepAction.NAVIGATE: self._navigate,
            StepAction.FILL: self._fill,
            StepAction.CLICK: self._click,
            StepAction.SELECT: self._select,
            StepAction.WAIT_FOR_ELEMENT: self._wait_for_element,
            StepAction.WAIT_FOR_NAVIGATION: self._wait_for_navigation,
        }
        return await handlers[step.action](page, step, value)

    # Actions

    async def _navigate(self, page: Page, step: WizardStep, url: Optional[str]) -> Optional[str]:
        if not url:
            raise StepFailure(ErrorKind.DISQUALIFYING_STEP_FAILURE, "navigate step has no URL")
        await self._goto(page, url, step.timeout_ms or self.config.navigation_timeout)
        return None

    async def _fill(self, page: Page, step: WizardStep, value: Optional[str]) -> Optional[str]:
        async def fill(element: ElementHandle):
            await element.click()
            await element.fill("")
            for char in value or "":
                await page.keyboard.type(char)
                await self._typing_pause()

        return await self._with_element(page, step, fill)

    async def _click(self, page: Page, step: WizardStep, value: Optional[str]) -> Optional[str]:
        async def click(element: ElementHandle):
            if not step.expect_navigation:
                await element.click()
                return

            clicked = False
            try:
                async with page.expect_navigation(wait_until="domcontentloaded",
                                                  timeout=step.timeout_ms or self.config.navigation_timeout):
                    await element.click()
                    clicked = True
            except PlaywrightTimeoutError:
                if not clicked:
                    raise
                # Sites may update in place instead of navigating
                self.logger.info(f"[{self.label}] No navigation after '{step.name}', continuing on {page.url}")

        return await self._with_element(page, step, click)

    async def _select(self, page: Page, step: WizardStep, label: Optional[str]) -> Optional[str]:
        async def select(element: ElementHandle):
            timeout = self.config.element_wait_timeout
            tag = await element.evaluate("el => el.tagName.toLowerCase()")
            if tag == "select":
                try:
                    await element.select_option(label=label, timeout=timeout)
                except PlaywrightError as e:
                    raise_if_transport_fault(page, e)
                    await element.select_option(value=label, timeout=timeout)
                return

            # Custom dropdown: a button opening a listbox
            await element.click()
            option = await page.wait_for_selector(option_selector(label), state="visible", timeout=timeout)
            await option.click()

        return await self._with_element(page, step, select)

    async def _wait_for_element(self, page: Page, step: WizardStep, value: Optional[str]) -> Optional[str]:
        field_selectors = self._field(step)
        timeout = step.timeout_ms or self.config.element_wait_timeout
        deadline = time.monotonic() + timeout / 1000

        while True:
            result = await self.locator.locate(page, field_selectors.candidates, field_selectors.snapshot,
                                               capture_snapshot=False)
            if isinstance(result, ElementMatch):
                return None
            if time.monotonic() >= deadline:
                break
            await asyncio.sleep(self.config.poll_interval / 1000)

        if step.continue_on_missing:
            return f"optional element '{step.target_field}' did not appear"
        raise StepFailure(ErrorKind.STEP_TIMEOUT,
                          f"'{step.target_field}' not visible after {timeout}ms")

    async def _wait_for_navigation(self, page: Page, step: WizardStep, url_pattern: Optional[str]) -> Optional[str]:
        timeout = step.timeout_ms or self.config.navigation_timeout
        try:
            if url_pattern:
                await page.wait_for_url(url_pattern, wait_until=step.load_state, timeout=timeout)
            else:
                await page.wait_for_load_state(step.load_state, timeout=timeout)
        except PlaywrightTimeoutError:
            raise StepFailure(ErrorKind.STEP_TIMEOUT,
                              f"navigation ({url_pattern or step.load_state}) not reached after {timeout}ms")
        except PlaywrightError as e:
            raise_if_transport_fault(page, e)
            raise StepFailure(ErrorKind.TRANSPORT_FAULT, str(e))
        return None

    # Helpers

    async def _goto(self, page: Page, url: str, timeout: int):
        try:
            await page.goto(url, wait_until="domcontentloaded", timeout=timeout)
        except PlaywrightTimeoutError:
            raise StepFailure(ErrorKind.STEP_TIMEOUT, f"{url} did not load within {timeout}ms")
        except PlaywrightError as e:
            raise_if_transport_fault(page, e)
            raise StepFailure(ErrorKind.TRANSPORT_FAULT, f"{url}: {e}")

    def _field(self, step: WizardStep) -> FieldSelectors:
        field_selectors = self.selectors.get(step.target_field or "")
        if not field_selectors:
            raise StepFailure(ErrorKind.DISQUALIFYING_STEP_FAILURE,
                              f"no selector set for field '{step.target_field}'")
        return field_selectors

    async def _with_element(self, page: Page, step: WizardStep,
                            action: Callable[[ElementHandle], Any]) -> Optional[str]:
        """
        Locate the step's field and run ``action`` on it, retrying with exponential backoff.
        Optional steps get a single attempt.
        """
        field_selectors = self._field(step)
        attempts = 1 if step.continue_on_missing else self.config.max_retries + 1
        not_found = None
        last_error: Optional[StepFailure] = None

        for attempt in range(attempts):
            last_attempt = attempt == attempts - 1
            result = await self.locator.locate(page, field_selectors.candidates, field_selectors.snapshot,
                                               capture_snapshot=last_attempt)
            if isinstance(result, NotFound):
                not_found = result
                last_error = None
            else:
                not_found = None
                try:
                    await action(result.element)
                    self.logger.debug(f"[{self.label}] '{step.name}' used {result.candidate.name}: "
                                      f"{result.candidate.selector}")
                    return None
                except PlaywrightTimeoutError as e:
                    last_error = StepFailure(ErrorKind.STEP_TIMEOUT, str(e))
                except PlaywrightError as e:
                    raise_if_transport_fault(page, e)
                    last_error = StepFailure(ErrorKind.DISQUALIFYING_STEP_FAILURE, str(e))

            if not last_attempt:
                wait_time = self.config.retry_base_delay * (2 ** attempt) / 1000
                self.logger.info(f"[{self.label}] Retrying '{step.name}' in {wait_time:.1f}s "
                                 f"(attempt {attempt + 2}/{attempts})")
                await asyncio.sleep(wait_time)

        if last_error:
            raise last_error

        if step.fallback_url:
            self.logger.info(f"[{self.label}] '{step.target_field}' not found, going to {step.fallback_url}")
            await self._goto(page, step.fallback_url, step.timeout_ms or self.config.navigation_timeout)
            return None

        if step.continue_on_missing:
            return f"optional element '{step.target_field}' not present"

        raise StepFailure(ErrorKind.ELEMENT_NOT_FOUND,
                          f"'{step.target_field}': {not_found.describe()}", not_found)

    async def _typing_pause(self):
        low, high = self.config.typing_delay_min, self.config.typing_delay_max
        if high > 0:
            await asyncio.sleep(random.uniform(low, high) / 1000)

    async def _diagnostics(self, page: Page, step: WizardStep, not_found: Optional[NotFound]) -> Dict[str, Any]:
        field_selectors = self.selectors.get(step.target_field or "")
        snapshot_selector = field_selectors.snapshot if field_selectors else "input"

        if not_found is not None and not_found.snapshot is not None:
            diagnostics = {'url': page.url, 'snapshot_selector': snapshot_selector,
                           'elements': not_found.snapshot}
            try:
                diagnostics['title'] = await page.title()
            except PlaywrightError as e:
                diagnostics['error'] = str(e)
        else:
            diagnostics = await capture_page_diagnostics(page, snapshot_selector)

        diagnostics['step'] = step.name
        if not_found is not None:
            diagnostics['candidates'] = [c.selector for c in not_found.candidates]
            if not_found.errors:
                diagnostics['selector_errors'] = not_found.errors
        return diagnostics
