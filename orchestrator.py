"""
orchestrator.py

Publishes one listing on several targets concurrently. Each target runs under
its own deadline and its failure never affects the others.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Sequence

from deadline import with_deadline
from mapping import EventListing
from publisher import PublishResult, TargetPublisher

logger = logging.getLogger(__name__)


@dataclass
class OrchestrationResult:
    results: Dict[str, PublishResult] = field(default_factory=dict)

    @property
    def success_count(self) -> int:
        return sum(1 for result in self.results.values() if result.succeeded)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def success(self) -> bool:
        """Partial success is success: at least one target published."""
        return self.success_count > 0

    @property
    def message(self) -> str:
        if not self.results:
            return "No target configured"
        return f"Published on {self.success_count}/{self.total} target(s)"

    def to_dict(self) -> Dict[str, Any]:
        return {name: result.to_dict() for name, result in self.results.items()}


class MultiTargetOrchestrator:

    def __init__(self, cancel_on_timeout: bool = True):
        self.cancel_on_timeout = cancel_on_timeout
        self.logger = logging.getLogger(f"{__name__}.MultiTargetOrchestrator")

    async def publish_all(self, listing: EventListing, targets: Sequence[TargetPublisher]) -> OrchestrationResult:
        names = [target.name for target in targets]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate target names: {', '.join(duplicates)}")

        self.logger.info(f"Publishing '{listing.title}' on {len(targets)} target(s): "
                         f"{', '.join(t.name for t in targets)}")

        runs = [
            with_deadline(lambda t=target: t.publish(listing), target.budget_ms, target.name,
                          cancel_on_timeout=self.cancel_on_timeout)
            for target in targets
        ]
        outcomes = await asyncio.gather(*runs, return_exceptions=True)

        result = OrchestrationResult()
        for target, outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                self.logger.error(f"[{target.name}] Unexpected error: {outcome}")
                outcome = PublishResult.from_exception(target.name, outcome)
            result.results[target.name] = outcome

        self.logger.info(result.message)
        return result
