"""Health polling for freshly started dependencies."""

from __future__ import annotations

import asyncio
import base64
import hashlib
import os
from typing import Awaitable, Callable

import httpx

from .errors import HealthCheckConfigError, HealthCheckTimeoutError
from .logging_utils import get_logger
from .models import (
    CommandCheck,
    HealthCheck,
    HttpCheck,
    NoHealthCheck,
    TcpPortCheck,
    WebSocketCheck,
)

_LOG = get_logger("deps.health")

LOOPBACK_HOST = "127.0.0.1"
DEFAULT_POLL_INTERVAL_S = 0.25
DEFAULT_ATTEMPT_TIMEOUT_S = 2.0
_WS_GUID = "258EAFA5-E914-47DA-95CA-C5AB0DC85B11"

Probe = Callable[[float], Awaitable[bool]]


def describe_target(check: HealthCheck) -> str:
    if isinstance(check, NoHealthCheck):
        return "none"
    if isinstance(check, TcpPortCheck):
        return f"tcp://{LOOPBACK_HOST}:{check.port}"
    if isinstance(check, (HttpCheck, WebSocketCheck)):
        return check.url
    if isinstance(check, CommandCheck):
        return f"command `{check.command}`"
    raise TypeError(f"Unsupported health check: {check!r}")


def websocket_accept_token(key: str) -> str:
    digest = hashlib.sha1((key + _WS_GUID).encode("ascii")).digest()
    return base64.b64encode(digest).decode("ascii")


def _handshake_url(url: str) -> str:
    if url.startswith("ws://"):
        return "http://" + url[len("ws://") :]
    if url.startswith("wss://"):
        return "https://" + url[len("wss://") :]
    return url


class HealthChecker:
    """Polls one health check until it passes or the deadline expires.

    Individual attempt failures are expected while a service boots and are
    only logged at debug level; the caller sees either success or a single
    ``HealthCheckTimeoutError``.
    """

    def __init__(
        self,
        *,
        poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
        attempt_timeout_s: float = DEFAULT_ATTEMPT_TIMEOUT_S,
        http_client_factory: Callable[..., httpx.AsyncClient] | None = None,
    ) -> None:
        self._poll_interval_s = poll_interval_s
        self._attempt_timeout_s = attempt_timeout_s
        self._client_factory = http_client_factory

    def _client(self, timeout_s: float) -> httpx.AsyncClient:
        if self._client_factory:
            return self._client_factory(timeout=timeout_s)
        return httpx.AsyncClient(timeout=timeout_s)

    async def wait(self, check: HealthCheck, timeout_s: float, *, name: str) -> None:
        if isinstance(check, NoHealthCheck):
            return
        probe = self._probe_for(check)
        target = describe_target(check)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(0.0, timeout_s)
        attempts = 0
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            attempts += 1
            try:
                ok = await asyncio.wait_for(
                    probe(min(self._attempt_timeout_s, remaining)), timeout=remaining
                )
            except asyncio.TimeoutError:
                ok = False
            if ok:
                _LOG.info("{} healthy ({}) after {} attempt(s)", name, target, attempts)
                return
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(min(self._poll_interval_s, remaining))
        raise HealthCheckTimeoutError(name, target, timeout_s)

    def _probe_for(self, check: HealthCheck) -> Probe:
        if isinstance(check, TcpPortCheck):
            return lambda timeout_s: self._probe_tcp(check.port, timeout_s)
        if isinstance(check, HttpCheck):
            return lambda timeout_s: self._probe_http(check.url, timeout_s)
        if isinstance(check, WebSocketCheck):
            return lambda timeout_s: self._probe_websocket(check.url, timeout_s)
        if isinstance(check, CommandCheck):
            argv = check.command.split()
            if not argv:
                raise HealthCheckConfigError("Health check command is empty")
            return lambda timeout_s: self._probe_command(argv, timeout_s)
        raise TypeError(f"Unsupported health check: {check!r}")

    async def _probe_tcp(self, port: int, timeout_s: float) -> bool:
        try:
            _reader, writer = await asyncio.wait_for(
                asyncio.open_connection(LOOPBACK_HOST, port), timeout=timeout_s
            )
        except (OSError, asyncio.TimeoutError) as exc:
            _LOG.debug("TCP probe on port {} failed: {}", port, exc)
            return False
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True

    async def _probe_http(self, url: str, timeout_s: float) -> bool:
        try:
            async with self._client(timeout_s) as client:
                response = await client.get(url)
        except (httpx.HTTPError, httpx.InvalidURL, OSError) as exc:
            _LOG.debug("HTTP probe {} failed: {}", url, exc)
            return False
        return 200 <= response.status_code < 300

    async def _probe_websocket(self, url: str, timeout_s: float) -> bool:
        key = base64.b64encode(os.urandom(16)).decode("ascii")
        headers = {
            "Connection": "Upgrade",
            "Upgrade": "websocket",
            "Sec-WebSocket-Version": "13",
            "Sec-WebSocket-Key": key,
        }
        try:
            async with self._client(timeout_s) as client:
                async with client.stream("GET", _handshake_url(url), headers=headers) as response:
                    if response.status_code != 101:
                        return False
                    accept = response.headers.get("sec-websocket-accept")
        except (httpx.HTTPError, httpx.InvalidURL, OSError) as exc:
            _LOG.debug("WebSocket handshake {} failed: {}", url, exc)
            return False
        return accept == websocket_accept_token(key)

    async def _probe_command(self, argv: list[str], timeout_s: float) -> bool:
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            _LOG.debug("Health command {} could not start: {}", argv[0], exc)
            return False
        try:
            returncode = await asyncio.wait_for(proc.wait(), timeout=timeout_s)
        except asyncio.TimeoutError:
            returncode = None
        finally:
            if proc.returncode is None:
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
                await proc.wait()
        return returncode == 0


async def wait_healthy(
    check: HealthCheck,
    timeout_s: float,
    *,
    name: str,
    poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
    attempt_timeout_s: float = DEFAULT_ATTEMPT_TIMEOUT_S,
) -> None:
    checker = HealthChecker(
        poll_interval_s=poll_interval_s, attempt_timeout_s=attempt_timeout_s
    )
    await checker.wait(check, timeout_s, name=name)
