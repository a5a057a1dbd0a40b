"""Readiness polling with typed outcomes.

A service that is still booting refuses connections, answers with 5xx or has
a status command that exits non-zero. None of that is a failure: the prober
keeps polling until the predicate holds or the timeout elapses. Only a
permanent response class (the container exited, the target URL can never be
reached, a status code that will not change by waiting) ends the wait early
with ``ERRORED``.
"""

import asyncio
import logging
import re
from typing import Callable, Optional

import httpx

from ..runtime.base import ContainerHandle, ContainerStatus
from .errors import CommandError
from .models import ExecTarget, HttpTarget, ProbeOutcome, ProbeResponse, ProbeResult, ProbeTarget, ReadinessProbe

logger = logging.getLogger(__name__)

# Status codes that no amount of waiting will change.
PERMANENT_STATUSES = frozenset({400, 405, 410, 501, 505})

# Floor for a single query so the last attempt before the deadline still runs.
MIN_QUERY_TIMEOUT = 0.05


def status_in(*codes: int) -> Callable[[ProbeResponse], bool]:
    """Predicate: response status is one of codes"""
    accepted = frozenset(codes)
    return lambda response: response.status in accepted


def body_matches(pattern: str) -> Callable[[ProbeResponse], bool]:
    """Predicate: successful response whose body matches a regular expression"""
    compiled = re.compile(pattern)
    return lambda response: response.status in (0, 200) and compiled.search(response.body) is not None


def exit_ok() -> Callable[[ProbeResponse], bool]:
    """Predicate: status command exited with 0"""
    return lambda response: response.status == 0


class _NotReady(Exception):
    """Transient query failure; keep polling"""


class _PermanentFailure(Exception):
    """Query failure that waiting cannot fix"""


class ReadinessProber:
    """Poll status targets until they report ready"""

    def __init__(self, runtime, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.runtime = runtime
        self.transport = transport

    async def wait_for(self, probe: ReadinessProbe, handle: Optional[ContainerHandle] = None) -> ProbeResult:
        """Wait using a spec's probe definition"""
        return await self.wait_ready(probe.target, probe.predicate, probe.interval, probe.timeout, handle=handle)

    async def wait_ready(
        self,
        target: ProbeTarget,
        predicate: Callable[[ProbeResponse], bool],
        interval: float,
        timeout: float,
        handle: Optional[ContainerHandle] = None,
    ) -> ProbeResult:
        """Poll target every interval seconds until predicate holds or timeout elapses.

        Returns READY, TIMED_OUT or ERRORED. TIMED_OUT is only reported once
        the full timeout has passed, and never later than one interval after
        it. Cancellation propagates to the caller.
        """
        loop = asyncio.get_running_loop()
        started = loop.time()
        deadline = started + timeout
        attempts = 0
        last_response = None
        last_error = ""

        while True:
            attempts += 1
            remaining = deadline - loop.time()
            query_timeout = max(min(interval, remaining), MIN_QUERY_TIMEOUT)

            try:
                response = await asyncio.wait_for(self._query(target, handle), timeout=query_timeout)
            except _PermanentFailure as e:
                logger.warning("Probe %s errored: %s", target, e)
                return ProbeResult(ProbeOutcome.ERRORED, attempts, loop.time() - started, last_response, str(e))
            except (_NotReady, asyncio.TimeoutError) as e:
                last_error = str(e) or "query timed out"
                logger.debug("Probe %s not reachable yet (attempt %d): %s", target, attempts, last_error)
            else:
                last_response = response
                if response.status in PERMANENT_STATUSES:
                    detail = f"permanent status {response.status}"
                    logger.warning("Probe %s errored: %s", target, detail)
                    return ProbeResult(ProbeOutcome.ERRORED, attempts, loop.time() - started, response, detail)
                if self._evaluate(predicate, response):
                    return ProbeResult(ProbeOutcome.READY, attempts, loop.time() - started, response)
                last_error = f"status {response.status}"
                logger.debug("Probe %s not ready yet (attempt %d): %s", target, attempts, last_error)

            now = loop.time()
            if now >= deadline:
                break
            await asyncio.sleep(min(interval, deadline - now))
            if loop.time() >= deadline:
                break

        elapsed = loop.time() - started
        logger.warning("Probe %s timed out after %.1fs (%d attempts)", target, elapsed, attempts)
        return ProbeResult(ProbeOutcome.TIMED_OUT, attempts, elapsed, last_response, last_error)

    @staticmethod
    def _evaluate(predicate, response: ProbeResponse) -> bool:
        try:
            return bool(predicate(response))
        except (ValueError, KeyError, TypeError) as e:
            # Half-initialized services return bodies the predicate cannot parse.
            logger.debug("Predicate rejected response: %s", e)
            return False

    async def _query(self, target: ProbeTarget, handle: Optional[ContainerHandle]) -> ProbeResponse:
        if isinstance(target, HttpTarget):
            return await self._query_http(target)
        if isinstance(target, ExecTarget):
            return await self._query_exec(target, handle)
        raise _PermanentFailure(f"unsupported probe target {target!r}")

    async def _query_http(self, target: HttpTarget) -> ProbeResponse:
        try:
            async with httpx.AsyncClient(verify=target.verify, transport=self.transport) as client:
                response = await client.get(target.url)
        except (httpx.UnsupportedProtocol, httpx.InvalidURL) as e:
            raise _PermanentFailure(str(e)) from e
        except httpx.TransportError as e:
            raise _NotReady(str(e)) from e

        return ProbeResponse(response.status_code, response.text)

    async def _query_exec(self, target: ExecTarget, handle: Optional[ContainerHandle]) -> ProbeResponse:
        if handle is None:
            raise _PermanentFailure("exec probe needs a running instance")

        try:
            output = await self.runtime.exec(handle, target.command)
        except CommandError as e:
            status = await self.runtime.inspect_status(handle)
            if status is ContainerStatus.EXITED:
                raise _PermanentFailure(f"container {handle.name} exited") from e
            return ProbeResponse(e.returncode or 1, e.stdout)

        return ProbeResponse(0, output)
