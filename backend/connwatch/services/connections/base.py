"""Connection test capability interface. The scheduler only ever calls `test()`."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import timedelta
from typing import Awaitable, Callable

from connwatch.models.application import DatabaseConnection


@dataclass
class TestResult:
    __test__ = False  # not a pytest class

    is_successful: bool
    message: str
    response_time: timedelta = timedelta(0)


@dataclass
class TestableConnection:
    __test__ = False

    id: int
    name: str
    test: Callable[[], Awaitable[TestResult]]


class ConnectionTester(ABC):
    @abstractmethod
    async def test(self, connection: DatabaseConnection) -> TestResult:
        """Try to reach the connection once and report how it went.

        Raises ConnectionTestError when the connection is not testable as configured.
        """
        ...


class ConnectionSource(ABC):
    @abstractmethod
    async def active_connections(self, application_id: int) -> list[TestableConnection]:
        """Active connections of an application, in a stable order.

        Raises if the application itself cannot be resolved.
        """
        ...
