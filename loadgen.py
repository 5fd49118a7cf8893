from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import httpx

from errors import ConfigError

logger = logging.getLogger(__name__)

Transport = Callable[[str], Awaitable[tuple[Optional[str], Optional[str]]]]
Clock = Callable[[], int]


def make_admission_gate(limit: int) -> asyncio.Semaphore:
    if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
        raise ConfigError(f"concurrency must be a positive integer, got {limit!r}")
    return asyncio.Semaphore(limit)


def parse_status_code(status: Optional[str]) -> int:
    if not status:
        return 0
    head = status.strip().split(" ", 1)[0]
    try:
        return int(head)
    except ValueError:
        return 0


@dataclass(frozen=True)
class RequestOutcome:
    task_id: int
    url: str
    status: Optional[str]
    error: Optional[str]
    duration_ns: int

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def status_code(self) -> int:
        return parse_status_code(self.status)


def _error_text(exc: BaseException) -> str:
    text = str(exc).strip()
    return text or type(exc).__name__


class HttpxTransport:
    """Issues one GET per call through a shared client.

    Every completed response is reported by its status line, whatever the
    code; only failures to obtain a response come back as errors.
    """

    def __init__(self, client: httpx.AsyncClient, timeout_s: float) -> None:
        self.client = client
        self.timeout_s = timeout_s

    async def __call__(self, url: str) -> tuple[Optional[str], Optional[str]]:
        try:
            response = await self.client.get(url, timeout=self.timeout_s)
        except httpx.TimeoutException as exc:
            return None, f"timeout: {_error_text(exc)}"
        except httpx.HTTPError as exc:
            return None, _error_text(exc)
        return f"{response.status_code} {response.reason_phrase}".strip(), None


async def execute_request(
    task_id: int,
    url: str,
    gate: asyncio.Semaphore,
    transport: Transport,
    clock: Clock = time.perf_counter_ns,
) -> RequestOutcome:
    status: Optional[str] = None
    error: Optional[str] = None

    async with gate:
        start = clock()
        try:
            status, error = await transport(url)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            status, error = None, _error_text(exc)
        end = clock()

    if error is not None:
        status = None
        logger.debug("request %d to %s failed: %s", task_id, url, error)
    elif status is None:
        error = "transport returned neither status nor error"

    return RequestOutcome(
        task_id=task_id,
        url=url,
        status=status,
        error=error,
        duration_ns=max(0, end - start),
    )
