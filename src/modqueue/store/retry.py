"""Bounded existence polling for eventually-consistent storage operations.

Copying an artifact between containers may complete asynchronously on the
storage side.  :func:`wait_until_visible` polls a caller-supplied check at a
fixed interval for a bounded number of attempts and raises
:exc:`PromotionTimeoutError` instead of blocking indefinitely.

The retry policy is expressed with :mod:`tenacity`; the ``sleep`` callable is
injectable so tests can run the full attempt budget without real waiting.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    """Base class for failures reported by an artifact store."""


class PromotionTimeoutError(StorageError):
    """Raised when a copied artifact does not become visible in time."""


def _is_not_visible(visible: bool) -> bool:
    return not visible


async def wait_until_visible(
    check: Callable[[], Awaitable[bool]],
    *,
    attempts: int = 30,
    interval: float = 1.0,
    description: str = "artifact",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> int:
    """Poll *check* until it returns ``True`` or the attempt budget runs out.

    Parameters
    ----------
    check:
        Zero-argument coroutine function returning ``True`` once the artifact
        is visible.  Exceptions it raises are not retried; they propagate
        immediately.
    attempts:
        Maximum number of calls to *check*.
    interval:
        Fixed wait, in seconds, between two calls.
    description:
        Human-readable name of the artifact, used in log and error messages.
    sleep:
        Awaitable sleep function.  Defaults to :func:`asyncio.sleep`.

    Returns
    -------
    int
        The attempt number on which the artifact became visible (1-based).

    Raises
    ------
    PromotionTimeoutError
        If *check* never returned ``True`` within *attempts* calls.
    """

    def _log_attempt(retry_state: RetryCallState) -> None:
        logger.info(
            "%s copy check #%d: not visible yet", description, retry_state.attempt_number
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(interval),
        retry=retry_if_result(_is_not_visible),
        before_sleep=_log_attempt,
        sleep=sleep,
    )
    calls = 0

    async def _counted() -> bool:
        nonlocal calls
        calls += 1
        return await check()

    try:
        await retrying(_counted)
    except RetryError as exc:
        raise PromotionTimeoutError(
            f"{description} copy did not complete after {attempts} attempts."
        ) from exc

    logger.debug("%s visible after %d attempt(s)", description, calls)
    return calls
