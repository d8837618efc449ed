"""
DLQ Intelligence Main Entrypoint
Wires the history store, broker collaborators, scanner and replay services
behind the HTTP API and runs them until shutdown
"""

import argparse
import asyncio
import importlib
import sys
from datetime import timedelta
from typing import Optional

import structlog
import uvicorn

from dlq_intel.api import ApiServices, create_app
from dlq_intel.broker import (
    BrokerClient,
    BrokerClientCache,
    BrokerClientFactory,
    BrokerError,
    NamespaceConnection,
    StaticNamespaceDirectory,
)
from dlq_intel.config import DlqIntelSettings, load_config
from dlq_intel.history import HistoryExporter, HistoryQueryService
from dlq_intel.observability import configure_logging, init_tracing, start_metrics_server
from dlq_intel.observability.health import HealthStatus
from dlq_intel.replay import HistoryRateLimiter, ReplayExecutor
from dlq_intel.rules import RuleEngine, RuleService
from dlq_intel.scanner import EntityScanner, ScanScheduler
from dlq_intel.store import HistoryStore, InMemoryHistoryStore, PostgresHistoryStore

logger = structlog.get_logger(__name__)


def load_client_factory(path: str) -> BrokerClientFactory:
    """
    Import a broker client factory from a 'package.module:callable' path

    Raises:
        ImportError: If the module cannot be imported
        AttributeError: If the callable does not exist
    """
    module_name, _, attribute = path.partition(":")
    module = importlib.import_module(module_name)
    return getattr(module, attribute)


def _unconfigured_factory(connection: NamespaceConnection) -> BrokerClient:
    raise BrokerError(
        f"No broker client factory configured for namespace {connection.namespace_id}"
    )


def build_store(config: DlqIntelSettings) -> HistoryStore:
    """Create the configured history store backend"""
    if config.store.backend == "postgres":
        if not config.store.connection_url:
            raise ValueError("store.connection_url is required for the postgres backend")
        return PostgresHistoryStore(
            connection_url=config.store.connection_url,
            initialize_schema=config.store.initialize_schema,
        )
    return InMemoryHistoryStore()


class DlqIntelService:
    """
    Main service orchestrator

    Owns the lifecycle of the store connection, broker clients and the
    background scan scheduler; serves the API with uvicorn.
    """

    def __init__(
        self,
        config: DlqIntelSettings,
        client_factory: Optional[BrokerClientFactory] = None,
        store: Optional[HistoryStore] = None,
    ):
        """
        Initialize service

        Args:
            config: Validated settings
            client_factory: Broker client factory (overrides broker.client_factory)
            store: History store (overrides store settings)
        """
        self.config = config

        if client_factory is None:
            client_factory = (
                load_client_factory(config.broker.client_factory)
                if config.broker.client_factory
                else _unconfigured_factory
            )

        self.store = store or build_store(config)
        self.directory = StaticNamespaceDirectory(config.namespaces)
        self.client_cache = BrokerClientCache(client_factory)
        self.engine = RuleEngine(regex_timeout_seconds=config.rules.regex_timeout_seconds)

        self.scanner = EntityScanner(
            store=self.store,
            directory=self.directory,
            client_cache=self.client_cache,
            peek_batch_size=config.scanner.peek_batch_size,
            body_preview_length=config.scanner.body_preview_length,
        )
        self.scheduler = ScanScheduler(
            scanner=self.scanner,
            directory=self.directory,
            active_interval_seconds=config.scanner.active_interval_seconds,
            inactive_interval_seconds=config.scanner.inactive_interval_seconds,
            max_parallel_scans=config.scanner.max_parallel_scans,
            initial_delay_seconds=config.scanner.initial_delay_seconds,
        )

        self.services = ApiServices(
            store=self.store,
            queries=HistoryQueryService(
                self.store,
                max_page_size=config.api.max_page_size,
                default_page_size=config.api.default_page_size,
            ),
            exporter=HistoryExporter(self.store, max_rows=config.api.export_max_rows),
            rules=RuleService(
                self.store,
                self.engine,
                test_sample_size=config.rules.test_sample_size,
                test_max_messages_ceiling=config.rules.test_max_messages_ceiling,
            ),
            replay=ReplayExecutor(
                store=self.store,
                engine=self.engine,
                directory=self.directory,
                client_cache=self.client_cache,
                rate_limiter=HistoryRateLimiter(self.store),
                window=timedelta(seconds=config.replay.rate_limit_window_seconds),
            ),
            health=HealthStatus(),
            scheduler=self.scheduler if config.scanner.enabled else None,
        )
        self.app = create_app(self.services)

        logger.info(
            "DlqIntelService initialized",
            store=self.store.backend,
            namespaces=len(config.namespaces),
            scanner_enabled=config.scanner.enabled,
        )

    async def start(self) -> None:
        """Connect the store and start background scanning"""
        await self.store.connect()
        if self.config.scanner.enabled:
            self.scheduler.start()

    async def stop(self) -> None:
        """Stop scanning and release broker and store connections"""
        logger.info("Stopping DlqIntelService")

        await self.scheduler.stop()

        try:
            await self.client_cache.close_all()
        except Exception as e:
            logger.error("Error closing broker clients", error=str(e))

        try:
            await self.store.disconnect()
        except Exception as e:
            logger.error("Error disconnecting history store", error=str(e))

    async def run(self) -> None:
        """Serve the API until uvicorn receives SIGINT or SIGTERM, then stop scanning"""
        await self.start()

        server_config = uvicorn.Config(
            self.app,
            host=self.config.api.host,
            port=self.config.api.port,
            log_config=None,
        )
        server = uvicorn.Server(server_config)

        try:
            await server.serve()
        finally:
            await self.stop()


async def main(config_path: Optional[str] = None) -> None:
    """
    Main entrypoint
    """
    config = load_config(config_path)

    configure_logging(
        log_level=config.observability.log_level,
        log_format=config.observability.log_format,
    )
    logger.info("Starting DLQ Intelligence service")

    start_metrics_server(port=config.observability.metrics_port)
    if config.observability.enable_tracing:
        init_tracing(service_name="dlq-intel")

    service = DlqIntelService(config)

    try:
        await service.run()
    except Exception as e:
        logger.error("Service failed", error=str(e))
        sys.exit(1)

    logger.info("DLQ Intelligence service stopped")


def cli() -> None:
    parser = argparse.ArgumentParser(description="DLQ intelligence and auto-replay service")
    parser.add_argument("--config", "-c", default=None, help="Path to YAML configuration file")
    args = parser.parse_args()
    asyncio.run(main(args.config))


if __name__ == "__main__":
    cli()
