"""Default connection testers: a TCP reachability probe and an HTTP probe."""

import asyncio
import logging
import time
from datetime import timedelta

import httpx

from connwatch.core.config import settings
from connwatch.core.errors import ConnectionTestError
from connwatch.models.application import DatabaseConnection
from connwatch.services.connections.base import ConnectionTester, TestResult

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {
    "postgresql": 5432,
    "mysql": 3306,
    "mariadb": 3306,
    "sqlserver": 1433,
    "oracle": 1521,
    "mongodb": 27017,
    "redis": 6379,
}


class TcpConnectionTester(ConnectionTester):
    """Succeeds when a TCP connection to host:port can be opened.

    No timeout here; the executor bounds every test.
    """

    async def test(self, connection: DatabaseConnection) -> TestResult:
        if not connection.host:
            raise ConnectionTestError("Connection has no host configured")

        port = connection.port or DEFAULT_PORTS.get(connection.connection_type)
        if port is None:
            raise ConnectionTestError(f"No port configured for {connection.connection_type} connection")

        start = time.perf_counter()
        try:
            _, writer = await asyncio.open_connection(connection.host, port)
        except OSError as e:
            elapsed = timedelta(seconds=time.perf_counter() - start)
            return TestResult(
                is_successful=False,
                message=f"Could not connect to {connection.host}:{port}: {e}",
                response_time=elapsed,
            )

        elapsed = timedelta(seconds=time.perf_counter() - start)
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            logger.debug(f"Error closing probe socket to {connection.host}:{port}")

        return TestResult(
            is_successful=True,
            message=f"Connected to {connection.host}:{port}",
            response_time=elapsed,
        )


class HttpConnectionTester(ConnectionTester):
    """Succeeds when a GET on the connection URL answers below the configured status."""

    def __init__(
        self,
        status_below: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.status_below = status_below or settings.http_probe_expected_status_below
        self.transport = transport

    async def test(self, connection: DatabaseConnection) -> TestResult:
        if not connection.url:
            raise ConnectionTestError("Connection has no URL configured")

        start = time.perf_counter()
        try:
            async with httpx.AsyncClient(transport=self.transport, follow_redirects=True) as client:
                resp = await client.get(connection.url)
        except httpx.HTTPError as e:
            return TestResult(
                is_successful=False,
                message=f"Request to {connection.url} failed: {e}",
                response_time=timedelta(seconds=time.perf_counter() - start),
            )

        elapsed = timedelta(seconds=time.perf_counter() - start)
        if resp.status_code < self.status_below:
            return TestResult(
                is_successful=True,
                message=f"HTTP {resp.status_code} from {connection.url}",
                response_time=elapsed,
            )
        return TestResult(
            is_successful=False,
            message=f"Unexpected HTTP {resp.status_code} from {connection.url}",
            response_time=elapsed,
        )
