"""
flow.py

Drives a target's fixed step sequence strictly forward, one step at a time,
halting at the first disqualifying failure. After the last step a pluggable,
per-target success check decides whether the run actually worked.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from playwright.async_api import Page, Error as PlaywrightError

from base_exceptions import ErrorKind
from extraction import capture_page_diagnostics
from filling import StepExecutor, StepOutcome, WizardStep
from locator import ElementLocator, ElementMatch, FieldSelectors, raise_if_transport_fault

logger = logging.getLogger(__name__)

SUCCESS_CHECK_STEP = "success_check"


@dataclass(frozen=True)
class PageCheck:
    """
    A success predicate on the current page.

    kind: ``url_excludes``, ``url_contains``, ``title_excludes`` or ``element_visible``
    (``value`` is then a logical field name from the target's selector set).
    """
    kind: str
    value: str

    async def evaluate(self, page: Page, locator: ElementLocator,
                       selectors: Mapping[str, FieldSelectors]) -> Tuple[bool, str]:
        if self.kind == "url_excludes":
            return self.value.lower() not in page.url.lower(), f"url {page.url} contains '{self.value}'"
        if self.kind == "url_contains":
            return self.value.lower() in page.url.lower(), f"url {page.url} lacks '{self.value}'"
        if self.kind == "title_excludes":
            title = await page.title()
            return self.value.lower() not in title.lower(), f"title '{title}' contains '{self.value}'"
        if self.kind == "element_visible":
            field_selectors = selectors.get(self.value)
            if not field_selectors:
                return False, f"no selector set for '{self.value}'"
            result = await locator.locate(page, field_selectors.candidates, capture_snapshot=False)
            return isinstance(result, ElementMatch), f"'{self.value}' is not visible"
        return False, f"unknown check kind '{self.kind}'"


@dataclass
class SequenceResult:
    """Terminal state of a run: Completed, or Failed at ``failed_index``."""
    completed: bool
    outcomes: List[StepOutcome] = field(default_factory=list)
    failed_index: Optional[int] = None
    final_url: str = ""
    final_title: str = ""

    @property
    def failure(self) -> Optional[StepOutcome]:
        if self.completed or not self.outcomes:
            return None
        return self.outcomes[-1]

    @property
    def failed_step(self) -> Optional[str]:
        failure = self.failure
        return failure.step_name if failure else None

    def trace(self) -> List[Dict[str, Any]]:
        return [outcome.to_dict() for outcome in self.outcomes]


class WizardSequencer:
    """
    Interprets a fixed list of WizardSteps for one target.

    ``checks`` maps predicate names to lists of PageCheck; a step's ``checkpoint``
    and the sequencer's ``success_check`` refer to those names. ``dry_run_check``,
    when given, replaces ``success_check`` in a dry run.
    """

    def __init__(self, steps: Sequence[WizardStep], executor: StepExecutor,
                 checks: Optional[Mapping[str, Sequence[PageCheck]]] = None,
                 success_check: Optional[str] = None, dry_run: bool = False, label: str = "",
                 dry_run_check: Optional[str] = None):
        self.steps = list(steps)
        self.executor = executor
        self.checks = dict(checks or {})
        # A dry run never reaches the commit steps the publish check depends on
        self.success_check = dry_run_check if dry_run and dry_run_check else success_check
        self.dry_run = dry_run
        self.label = label
        self.logger = logging.getLogger(f"{__name__}.WizardSequencer")

    async def run(self, page: Page, values: Mapping[str, str]) -> SequenceResult:
        result = SequenceResult(completed=False)
        total = len(self.steps)

        for index, step in enumerate(self.steps):
            self.logger.info(f"[{self.label}] Step {index + 1}/{total}: {step.name} ({step.action.value})")

            if step.commit and self.dry_run:
                result.outcomes.append(StepOutcome(step_name=step.name, succeeded=True, skipped=True,
                                                   message="dry run: publishing step not executed"))
                continue

            try:
                value = self._resolve_value(step, values)
            except KeyError as e:
                outcome = StepOutcome(step_name=step.name, succeeded=False,
                                      error_kind=ErrorKind.DISQUALIFYING_STEP_FAILURE,
                                      message=f"unknown value producer {e}")
                return await self._fail(page, result, index, outcome)

            outcome = await self.executor.execute(page, step, value)

            if outcome.succeeded and step.checkpoint:
                passed, reason = await self._run_check(page, step.checkpoint)
                if not passed:
                    outcome.succeeded = False
                    outcome.error_kind = ErrorKind.DISQUALIFYING_STEP_FAILURE
                    outcome.message = f"checkpoint '{step.checkpoint}' failed: {reason}"
                    outcome.diagnostics = await capture_page_diagnostics(page)

            if not outcome.succeeded and step.continue_on_missing:
                self.logger.info(f"[{self.label}] Optional step '{step.name}' failed, continuing")
                result.outcomes.append(outcome)
                continue

            if not outcome.succeeded:
                return await self._fail(page, result, index, outcome)

            result.outcomes.append(outcome)

        if self.success_check:
            passed, reason = await self._run_check(page, self.success_check)
            if not passed:
                outcome = StepOutcome(step_name=SUCCESS_CHECK_STEP, succeeded=False,
                                      error_kind=ErrorKind.DISQUALIFYING_STEP_FAILURE,
                                      message=f"success check '{self.success_check}' failed: {reason}",
                                      diagnostics=await capture_page_diagnostics(page))
                return await self._fail(page, result, total, outcome)

        result.completed = True
        await self._record_location(page, result)
        self.logger.info(f"[{self.label}] Sequence completed at {result.final_url}")
        return result

    def _resolve_value(self, step: WizardStep, values: Mapping[str, str]) -> Optional[str]:
        if step.value_from is None:
            return step.value
        if callable(step.value_from):
            return step.value_from(values)
        return values[step.value_from]

    async def _run_check(self, page: Page, name: str) -> Tuple[bool, str]:
        checks = self.checks.get(name)
        if not checks:
            return False, f"no check named '{name}'"
        for check in checks:
            try:
                passed, reason = await check.evaluate(page, self.executor.locator, self.executor.selectors)
            except PlaywrightError as e:
                raise_if_transport_fault(page, e)
                return False, str(e)
            if not passed:
                return False, reason
        return True, ""

    async def _fail(self, page: Page, result: SequenceResult, index: int, outcome: StepOutcome) -> SequenceResult:
        result.outcomes.append(outcome)
        result.failed_index = index
        await self._record_location(page, result)
        self.logger.warning(f"[{self.label}] Sequence halted at '{outcome.step_name}': {outcome.message}")
        return result

    async def _record_location(self, page: Page, result: SequenceResult):
        result.final_url = page.url
        try:
            result.final_title = await page.title()
        except PlaywrightError as e:
            raise_if_transport_fault(page, e)
