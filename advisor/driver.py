"""Short-lived read-only connections to the databases under review."""

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Connection
from sqlalchemy.pool import NullPool

from models.data_models import Instance

logger = logging.getLogger(__name__)

DRIVERS = {
    "MYSQL": "mysql+pymysql",
    "TIDB": "mysql+pymysql",
    "POSTGRES": "postgresql+psycopg2",
}

READ_ONLY_STATEMENTS = {
    "MYSQL": "SET SESSION TRANSACTION READ ONLY",
    "TIDB": "SET SESSION TRANSACTION READ ONLY",
    "POSTGRES": "SET SESSION CHARACTERISTICS AS TRANSACTION READ ONLY",
}


class ReadOnlyDriverFactory:
    """Opens one connection per check, never pooled."""

    def __init__(self, connect_timeout: int = 10):
        self.connect_timeout = connect_timeout

    def build_url(self, instance: Instance, database_name: str) -> URL:
        engine = instance.engine.upper()
        if engine not in DRIVERS:
            raise ValueError(f"unsupported database engine: {instance.engine}")
        return URL.create(
            DRIVERS[engine],
            username=instance.username or None,
            password=instance.password or None,
            host=instance.host or None,
            port=int(instance.port) if instance.port else None,
            database=database_name,
        )

    @contextmanager
    def open(self, instance: Instance, database_name: str) -> Iterator[Connection]:
        """
        Connect to a database with the session set read-only.

        The engine is disposed when the block exits, whatever the outcome.
        """
        engine = create_engine(
            self.build_url(instance, database_name),
            poolclass=NullPool,
            connect_args={"connect_timeout": self.connect_timeout},
        )
        try:
            with engine.connect() as connection:
                connection.execute(text(READ_ONLY_STATEMENTS[instance.engine.upper()]))
                # Session characteristics apply from the next transaction on
                connection.commit()
                yield connection
        finally:
            engine.dispose()
            logger.debug(f"Closed read-only connection to {instance.name}/{database_name}")
