"""
Broker Client Cache
Reuses one client per namespace instead of opening a connection per call
"""

from typing import Callable, Dict, Tuple

import structlog

from dlq_intel.broker.base import BrokerClient, NamespaceConnection

logger = structlog.get_logger(__name__)

BrokerClientFactory = Callable[[NamespaceConnection], BrokerClient]


class BrokerClientCache:
    """
    Caches broker clients keyed by namespace id

    A client is rebuilt when the namespace's connection string changes.
    """

    def __init__(self, factory: BrokerClientFactory):
        """
        Initialize cache

        Args:
            factory: Builds a client from resolved connection data
        """
        self._factory = factory
        self._clients: Dict[str, Tuple[str, BrokerClient]] = {}

    async def get_or_create(self, connection: NamespaceConnection) -> BrokerClient:
        """
        Get the cached client for a namespace, creating it on first use

        Args:
            connection: Resolved namespace connection data

        Returns:
            Broker client for the namespace
        """
        cached = self._clients.get(connection.namespace_id)
        if cached is not None:
            connection_string, client = cached
            if connection_string == connection.connection_string:
                return client

            logger.info("Connection changed, rebuilding client", namespace_id=connection.namespace_id)
            await self._close_client(connection.namespace_id, client)

        client = self._factory(connection)
        self._clients[connection.namespace_id] = (connection.connection_string, client)
        logger.debug("Broker client created", namespace_id=connection.namespace_id)
        return client

    async def remove(self, namespace_id: str) -> None:
        """Close and evict a namespace's client"""
        cached = self._clients.pop(namespace_id, None)
        if cached is not None:
            await self._close_client(namespace_id, cached[1])

    async def close_all(self) -> None:
        """Close every cached client"""
        for namespace_id in list(self._clients):
            await self.remove(namespace_id)

    def __contains__(self, namespace_id: str) -> bool:
        return namespace_id in self._clients

    def __len__(self) -> int:
        return len(self._clients)

    async def _close_client(self, namespace_id: str, client: BrokerClient) -> None:
        try:
            await client.close()
        except Exception as e:
            logger.warning("Error closing broker client", namespace_id=namespace_id, error=str(e))
