"""
deadline.py

Races one target's publish run against its wall-clock budget.
"""

import asyncio
import logging
from typing import Awaitable, Callable

from publisher import PublishResult

logger = logging.getLogger(__name__)

Work = Callable[[], Awaitable[PublishResult]]


def _log_late_result(target: str):
    def callback(task: asyncio.Task):
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"[{target}] Abandoned run failed after its deadline: {error}")
        else:
            logger.info(f"[{target}] Abandoned run finished after its deadline: success={task.result().succeeded}")
    return callback


async def with_deadline(work: Work, budget_ms: int, target: str,
                        cancel_on_timeout: bool = True) -> PublishResult:
    """
    Run ``work`` for at most ``budget_ms``.

    On expiry a DeadlineExceeded result is returned immediately, without awaiting
    the work. With ``cancel_on_timeout`` the abandoned task is also cancelled so
    its ``finally`` blocks close the browser in the background; otherwise it is
    left running and its late result is only logged.
    """
    task = asyncio.ensure_future(work())
    try:
        done, _ = await asyncio.wait({task}, timeout=budget_ms / 1000)
    except asyncio.CancelledError:
        task.cancel()
        raise

    if task in done:
        try:
            return task.result()
        except Exception as e:
            logger.error(f"[{target}] Run raised past the publisher boundary: {e}")
            return PublishResult.from_exception(target, e)

    logger.warning(f"[{target}] Deadline of {budget_ms}ms exceeded")
    if cancel_on_timeout:
        task.cancel()
    else:
        task.add_done_callback(_log_late_result(target))
    return PublishResult.timeout(target, budget_ms)
