"""Connection source backed by the application and connection tables."""

import logging
from functools import partial

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from connwatch.core.errors import NotFoundError
from connwatch.models.application import Application, DatabaseConnection
from connwatch.services.connections import get_connection_tester
from connwatch.services.connections.base import ConnectionSource, TestableConnection

logger = logging.getLogger(__name__)


class DatabaseConnectionSource(ConnectionSource):
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    async def active_connections(self, application_id: int) -> list[TestableConnection]:
        with Session(self.engine) as session:
            if session.get(Application, application_id) is None:
                raise NotFoundError("Application", application_id)

            connections = session.exec(
                select(DatabaseConnection)
                .where(DatabaseConnection.application_id == application_id)
                .where(DatabaseConnection.is_active == True)  # noqa: E712
                .order_by(DatabaseConnection.id)  # type: ignore
            ).all()

        logger.debug(f"Application {application_id} has {len(connections)} active connections")
        return [
            TestableConnection(
                id=conn.id,  # type: ignore[arg-type]
                name=conn.name,
                test=partial(get_connection_tester(conn.connection_type).test, conn),
            )
            for conn in connections
        ]
