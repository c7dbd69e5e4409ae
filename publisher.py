"""
publisher.py

One target's unit of work: open a browser, run the target's wizard with values
derived from the listing, and always close the browser. ``publish`` never
raises; every outcome is a PublishResult.
"""

import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Dict, List, Mapping, Optional

from playwright.async_api import async_playwright, Page, Error as PlaywrightError

from base_exceptions import ErrorKind
from config_manager import AutomationModeConfig, EventPublisherConfig, TargetCredentials
from filling import StepExecutor
from flow import SequenceResult, WizardSequencer
from mapping import EventListing, build_field_values
from performance_monitor import PerformanceMonitor, performance_monitor
from targets import TargetDefinition

logger = logging.getLogger(__name__)


@dataclass
class PublishResult:
    target: str
    succeeded: bool
    message: str = ""
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    failed_step: Optional[str] = None
    final_url: Optional[str] = None
    final_title: Optional[str] = None
    budget_ms: Optional[int] = None
    steps: List[Dict[str, Any]] = field(default_factory=list)
    diagnostics: Optional[Dict[str, Any]] = None

    @classmethod
    def timeout(cls, target: str, budget_ms: int) -> "PublishResult":
        return cls(target=target, succeeded=False, error_kind=ErrorKind.DEADLINE_EXCEEDED,
                   error=f"Timeout after {budget_ms / 1000:g}s", budget_ms=budget_ms)

    @classmethod
    def from_exception(cls, target: str, error: BaseException) -> "PublishResult":
        kind = getattr(error, 'kind', ErrorKind.TRANSPORT_FAULT)
        return cls(target=target, succeeded=False, error=str(error) or type(error).__name__, error_kind=kind)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['success'] = data.pop('succeeded')
        data['error_kind'] = self.error_kind.value if self.error_kind else None
        return {k: v for k, v in data.items() if v not in (None, [], '')}


class BrowserSession:
    """
    Playwright Chromium instance, context and page owned by one publisher.
    ``close`` is idempotent and safe on a partially opened session.
    """

    def __init__(self, mode: AutomationModeConfig, label: str = ""):
        self.mode = mode
        self.label = label
        self.page: Optional[Page] = None
        self._playwright = None
        self._browser = None
        self._context = None
        self._closed = False
        self.logger = logging.getLogger(f"{__name__}.BrowserSession")

    async def open(self) -> Page:
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self.mode.headless,
            args=self.mode.browser_args,
            slow_mo=self.mode.slow_motion,
            timeout=self.mode.launch_timeout,
        )
        self._context = await self._browser.new_context(
            user_agent=self.mode.user_agent,
            locale="fr-FR",
            extra_http_headers={'Accept-Language': self.mode.accept_language},
            viewport={'width': self.mode.viewport_width, 'height': self.mode.viewport_height},
        )
        self.page = await self._context.new_page()
        self.logger.info(f"[{self.label}] Browser page configured")
        return self.page

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self):
        if self._closed:
            return
        self._closed = True

        for name, resource, closer in (
            ("context", self._context, "close"),
            ("browser", self._browser, "close"),
            ("playwright", self._playwright, "stop"),
        ):
            if resource is None:
                continue
            try:
                await getattr(resource, closer)()
            except PlaywrightError as e:
                self.logger.warning(f"[{self.label}] Error closing {name}: {e}")
        self.logger.info(f"[{self.label}] Browser closed")


SessionFactory = Callable[[AutomationModeConfig, str], BrowserSession]


class TargetPublisher:
    """Publishes one listing on one target site."""

    def __init__(self, definition: TargetDefinition, credentials: TargetCredentials,
                 config: EventPublisherConfig, session_factory: SessionFactory = BrowserSession):
        self.definition = definition
        self.credentials = credentials
        self.config = config
        self.session_factory = session_factory
        self.performance_monitor = PerformanceMonitor(
            enable_monitoring=config.automation.enable_performance_monitoring,
            label=definition.name,
        )
        self.logger = logging.getLogger(f"{__name__}.TargetPublisher")

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def budget_ms(self) -> int:
        return self.config.budget_for(self.name, self.definition.budget_ms)

    @performance_monitor("publish")
    async def publish(self, listing: EventListing) -> PublishResult:
        self.logger.info(f"[{self.name}] Publishing '{listing.title}' ({listing.date} {listing.time})")

        if not self.credentials.is_complete():
            self.logger.error(f"[{self.name}] Credentials not configured, browser not launched")
            return PublishResult(target=self.name, succeeded=False,
                                 error=f"Missing credentials: set {self.name.upper()}_EMAIL and "
                                       f"{self.name.upper()}_PASSWORD",
                                 error_kind=ErrorKind.DISQUALIFYING_STEP_FAILURE)

        session = self.session_factory(self.config.automation_mode, self.name)
        try:
            page = await session.open()
            sequencer = self._build_sequencer()
            values = build_field_values(listing, self.credentials)
            sequence = await sequencer.run(page, values)
            return self._to_publish_result(listing, sequence)
        except Exception as e:
            self.logger.error(f"[{self.name}] Publishing aborted: {e}")
            return PublishResult.from_exception(self.name, e)
        finally:
            await session.close()
            summary = self.performance_monitor.get_performance_summary()
            if summary:
                self.logger.info(f"[{self.name}] Performance summary: {summary}")

    def _build_sequencer(self) -> WizardSequencer:
        executor = StepExecutor(
            selectors=self.definition.selectors,
            config=self.config.automation,
            performance_monitor=self.performance_monitor,
            label=self.name,
        )
        return WizardSequencer(
            steps=self.definition.steps,
            executor=executor,
            checks=self.definition.checks,
            success_check=self.definition.success_check,
            dry_run_check=self.definition.dry_run_check,
            dry_run=self.config.automation.dry_run,
            label=self.name,
        )

    def _to_publish_result(self, listing: EventListing, sequence: SequenceResult) -> PublishResult:
        display_name = self.definition.display_name or self.name

        if sequence.completed:
            if self.config.automation.dry_run:
                message = (f"Dry run on {display_name}: wizard completed without publishing, "
                           f"logged in as {self.credentials.email}")
            else:
                message = f"'{listing.title}' published on {display_name}"
            self.logger.info(f"[{self.name}] {message} ({sequence.final_url})")
            return PublishResult(target=self.name, succeeded=True, message=message,
                                 final_url=sequence.final_url, final_title=sequence.final_title,
                                 steps=sequence.trace())

        failure = sequence.failure
        return PublishResult(
            target=self.name,
            succeeded=False,
            error=f"Step '{failure.step_name}' failed: {failure.message}",
            error_kind=failure.error_kind,
            failed_step=failure.step_name,
            final_url=sequence.final_url,
            final_title=sequence.final_title,
            steps=sequence.trace(),
            diagnostics=failure.diagnostics,
        )


def build_publishers(definitions: Mapping[str, TargetDefinition], config: EventPublisherConfig,
                     names: Optional[List[str]] = None,
                     session_factory: SessionFactory = BrowserSession) -> List[TargetPublisher]:
    """One publisher per enabled target, optionally restricted to ``names``."""
    wanted = [n.lower() for n in names] if names else None
    publishers = []
    for name, definition in definitions.items():
        if wanted is not None and name not in wanted:
            continue
        settings = config.targets.get(name)
        if not definition.enabled or (settings and not settings.enabled):
            logger.info(f"Target {name} disabled, skipping")
            continue
        publishers.append(TargetPublisher(definition, config.credentials_for(name), config,
                                          session_factory=session_factory))
    return publishers
