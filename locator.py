"""
locator.py

Resolves a logical form field to a page element by trying an ordered list of
selector candidates and returning the first visible match.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from playwright.async_api import Page, ElementHandle, Error as PlaywrightError

from base_exceptions import TransportFault
from extraction import snapshot_elements

logger = logging.getLogger(__name__)

CLOSED_MARKERS = ("target closed", "has been closed", "browser has disconnected", "page crashed")


@dataclass(frozen=True)
class SelectorCandidate:
    """One named strategy for finding an element, e.g. "by stable attribute"."""
    name: str
    selector: str


@dataclass
class FieldSelectors:
    """Ordered candidates for one logical field, plus the element kind to snapshot on failure."""
    field_name: str
    candidates: List[SelectorCandidate]
    snapshot: str = "input"


@dataclass
class ElementMatch:
    element: ElementHandle
    candidate: SelectorCandidate
    index: int


@dataclass
class NotFound:
    """No candidate produced a visible element. Carries what was tried and what the page had."""
    candidates: List[SelectorCandidate]
    errors: Dict[str, str] = field(default_factory=dict)
    snapshot: Optional[List[Dict[str, Any]]] = None

    def describe(self) -> str:
        tried = ", ".join(c.selector for c in self.candidates)
        return f"no visible element for any of: {tried}"


LocateResult = Union[ElementMatch, NotFound]


def raise_if_transport_fault(page: Page, error: Exception) -> None:
    """Re-raise ``error`` as TransportFault when the page or browser is gone."""
    message = str(error).lower()
    if page.is_closed() or any(marker in message for marker in CLOSED_MARKERS):
        raise TransportFault(str(error)) from error


class ElementLocator:
    """Tries selector candidates in declaration order; first visible match wins."""

    def __init__(self):
        self.logger = logging.getLogger(f"{__name__}.ElementLocator")

    async def locate(self, page: Page, candidates: Sequence[SelectorCandidate],
                     snapshot_selector: str = "input", capture_snapshot: bool = True) -> LocateResult:
        errors: Dict[str, str] = {}

        for candidate in candidates:
            try:
                handles = await page.query_selector_all(candidate.selector)
                for index, handle in enumerate(handles):
                    if await self._is_rendered(handle):
                        self.logger.debug(f"Found element with {candidate.name}: {candidate.selector}")
                        return ElementMatch(element=handle, candidate=candidate, index=index)
            except PlaywrightError as e:
                raise_if_transport_fault(page, e)
                # Invalid or unsupported selector syntax for this engine
                self.logger.debug(f"Selector candidate '{candidate.selector}' failed: {e}")
                errors[candidate.selector] = str(e)

        not_found = NotFound(candidates=list(candidates), errors=errors)
        if capture_snapshot:
            try:
                not_found.snapshot = await snapshot_elements(page, snapshot_selector)
            except PlaywrightError as e:
                raise_if_transport_fault(page, e)
                errors[f"snapshot:{snapshot_selector}"] = str(e)
        return not_found

    async def _is_rendered(self, handle: ElementHandle) -> bool:
        """Visible and laid out (not display:none, has a bounding box)."""
        if not await handle.is_visible():
            return False
        return await handle.bounding_box() is not None
