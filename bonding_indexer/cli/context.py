# bonding_indexer/cli/context.py

import asyncio
import os
from typing import Optional

import msgspec

from .. import create_indexer
from ..core.container import IndexerContainer
from ..core.logging import IndexerLogger, log_with_context, INFO
from ..database.connection import DatabaseManager


class CLIContext:
    """Lazily builds the indexer container shared by every CLI command."""

    def __init__(self):
        self.logger = IndexerLogger.get_logger('cli.context')
        self.config_path: Optional[str] = None
        self.persist = True
        self._container: Optional[IndexerContainer] = None

    @property
    def container(self) -> IndexerContainer:
        if self._container is None:
            self._container = create_indexer(self.config_path, env_vars=dict(os.environ), persist=self.persist)
            log_with_context(self.logger, INFO, "CLI container ready",
                             config_path=self.config_path,
                             persist=self.persist)
        return self._container

    def get(self, service_type):
        return self.container.get(service_type)

    @staticmethod
    def run(coroutine):
        return asyncio.run(coroutine)

    @staticmethod
    def render(result) -> str:
        return msgspec.json.format(msgspec.json.encode(result), indent=2).decode()

    def shutdown(self) -> None:
        if self._container is not None and self._container.has_service(DatabaseManager):
            self._container.get(DatabaseManager).shutdown()
        self._container = None
