"""
extraction.py

This module captures structured snapshots of the current page so that a human
can update a target's selector set after a failed run. Snapshots are only
taken on failure paths.
"""

import logging
from typing import Any, Dict, List

from playwright.async_api import Page, Error as PlaywrightError

logger = logging.getLogger(__name__)

MAX_SNAPSHOT_ELEMENTS = 50

# Runs in the page: one record per matched element, attributes only.
SNAPSHOT_SCRIPT = """
(elements, limit) => elements.slice(0, limit).map(el => ({
    tag: el.tagName.toLowerCase(),
    type: el.getAttribute('type') || '',
    name: el.getAttribute('name') || '',
    id: el.id || '',
    placeholder: el.getAttribute('placeholder') || '',
    className: typeof el.className === 'string' ? el.className : '',
    testId: el.getAttribute('data-testid') || '',
    text: (el.innerText || el.value || '').trim().slice(0, 80),
    visible: !!(el.offsetWidth || el.offsetHeight || el.getClientRects().length)
}))
"""


async def snapshot_elements(page: Page, selector: str = "input",
                            limit: int = MAX_SNAPSHOT_ELEMENTS) -> List[Dict[str, Any]]:
    """Every element matching ``selector`` with the attributes selectors are usually built from."""
    return await page.eval_on_selector_all(selector, SNAPSHOT_SCRIPT, limit)


async def capture_page_diagnostics(page: Page, selector: str = "input") -> Dict[str, Any]:
    """
    URL, title and an element snapshot of the current page.

    Best effort: a page that can no longer be queried yields whatever was
    collected plus the error text.
    """
    diagnostics: Dict[str, Any] = {'url': '', 'title': '', 'snapshot_selector': selector, 'elements': []}
    try:
        diagnostics['url'] = page.url
        diagnostics['title'] = await page.title()
        diagnostics['elements'] = await snapshot_elements(page, selector)
    except PlaywrightError as e:
        logger.debug(f"Diagnostics capture incomplete: {e}")
        diagnostics['error'] = str(e)
    return diagnostics
