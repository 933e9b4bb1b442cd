from __future__ import annotations

import asyncio
import os
import socket
import time

import pytest

from depkeeper.errors import HealthCheckConfigError, HealthCheckTimeoutError
from depkeeper.health import HealthChecker, describe_target, wait_healthy, websocket_accept_token
from depkeeper.models import CommandCheck, HttpCheck, NoHealthCheck, TcpPortCheck, WebSocketCheck


def _unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


async def _start_server(respond):
    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            request = await reader.readuntil(b"\r\n\r\n")
            writer.write(respond(request))
            await writer.drain()
        except (asyncio.IncompleteReadError, ConnectionError):
            pass
        finally:
            writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    return server, port


def _checker() -> HealthChecker:
    return HealthChecker(poll_interval_s=0.05, attempt_timeout_s=0.5)


@pytest.mark.anyio
async def test_no_health_check_passes_with_zero_timeout() -> None:
    started = time.monotonic()
    await wait_healthy(NoHealthCheck(), 0, name="svc")
    assert time.monotonic() - started < 0.1


@pytest.mark.anyio
async def test_unreachable_tcp_port_times_out_near_deadline() -> None:
    port = _unused_port()
    started = time.monotonic()
    with pytest.raises(HealthCheckTimeoutError) as excinfo:
        await wait_healthy(TcpPortCheck(port=port), 0.3, name="svc")
    elapsed = time.monotonic() - started

    assert 0.25 <= elapsed < 2.0
    assert excinfo.value.target == f"tcp://127.0.0.1:{port}"
    assert str(port) in str(excinfo.value)


@pytest.mark.anyio
async def test_tcp_port_accepting_connections_is_healthy() -> None:
    server, port = await _start_server(lambda _request: b"")
    async with server:
        await _checker().wait(TcpPortCheck(port=port), 2.0, name="svc")


@pytest.mark.anyio
async def test_http_polls_until_2xx() -> None:
    responses = iter([b"503 Service Unavailable", b"503 Service Unavailable"])

    def respond(_request: bytes) -> bytes:
        status = next(responses, b"200 OK")
        return b"HTTP/1.1 " + status + b"\r\nContent-Length: 0\r\nConnection: close\r\n\r\n"

    server, port = await _start_server(respond)
    async with server:
        await _checker().wait(HttpCheck(url=f"http://127.0.0.1:{port}/health"), 3.0, name="api")
    assert next(responses, None) is None


@pytest.mark.anyio
async def test_http_error_status_times_out() -> None:
    def respond(_request: bytes) -> bytes:
        return b"HTTP/1.1 500 Internal Server Error\r\nContent-Length: 0\r\nConnection: close\r\n\r\n"

    server, port = await _start_server(respond)
    url = f"http://127.0.0.1:{port}/health"
    async with server:
        with pytest.raises(HealthCheckTimeoutError, match="/health"):
            await _checker().wait(HttpCheck(url=url), 0.4, name="api")


@pytest.mark.anyio
async def test_websocket_handshake_succeeds() -> None:
    def respond(request: bytes) -> bytes:
        key = ""
        for line in request.decode("latin-1").split("\r\n"):
            name, _, value = line.partition(":")
            if name.strip().lower() == "sec-websocket-key":
                key = value.strip()
        return (
            b"HTTP/1.1 101 Switching Protocols\r\n"
            b"Upgrade: websocket\r\n"
            b"Connection: Upgrade\r\n"
            b"Sec-WebSocket-Accept: " + websocket_accept_token(key).encode("ascii") + b"\r\n\r\n"
        )

    server, port = await _start_server(respond)
    async with server:
        await _checker().wait(WebSocketCheck(url=f"ws://127.0.0.1:{port}/ws"), 2.0, name="gw")


@pytest.mark.anyio
async def test_websocket_rejected_upgrade_times_out() -> None:
    def respond(_request: bytes) -> bytes:
        return b"HTTP/1.1 400 Bad Request\r\nContent-Length: 0\r\nConnection: close\r\n\r\n"

    server, port = await _start_server(respond)
    async with server:
        with pytest.raises(HealthCheckTimeoutError):
            await _checker().wait(WebSocketCheck(url=f"ws://127.0.0.1:{port}/ws"), 0.4, name="gw")


@pytest.mark.anyio
async def test_empty_command_is_a_config_error() -> None:
    started = time.monotonic()
    with pytest.raises(HealthCheckConfigError):
        await wait_healthy(CommandCheck(command="   "), 5.0, name="svc")
    assert time.monotonic() - started < 0.5


@pytest.mark.anyio
@pytest.mark.skipif(os.name == "nt", reason="relies on POSIX true/false")
async def test_command_exit_status_decides_health() -> None:
    await _checker().wait(CommandCheck(command="true"), 2.0, name="svc")
    with pytest.raises(HealthCheckTimeoutError, match="false"):
        await _checker().wait(CommandCheck(command="false"), 0.3, name="svc")


@pytest.mark.anyio
@pytest.mark.skipif(os.name == "nt", reason="relies on POSIX sleep")
async def test_slow_command_does_not_outlive_deadline() -> None:
    started = time.monotonic()
    with pytest.raises(HealthCheckTimeoutError):
        await _checker().wait(CommandCheck(command="sleep 5"), 0.3, name="svc")
    assert time.monotonic() - started < 2.0


def test_describe_target() -> None:
    assert describe_target(TcpPortCheck(port=80)) == "tcp://127.0.0.1:80"
    assert describe_target(HttpCheck(url="http://x/h")) == "http://x/h"
    assert "redis-cli ping" in describe_target(CommandCheck(command="redis-cli ping"))
