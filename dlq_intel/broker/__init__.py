"""
Broker collaborators: client interface, per-namespace client cache and namespace directory
"""

from dlq_intel.broker.base import (
    BrokerClient,
    BrokerError,
    EntityInfo,
    NamespaceConnection,
    NamespaceDirectory,
    NamespaceInfo,
    NamespaceResolutionError,
    PeekedMessage,
    ReplayItemResult,
    ReplaySource,
    ReplayTarget,
)
from dlq_intel.broker.cache import BrokerClientCache, BrokerClientFactory
from dlq_intel.broker.directory import StaticNamespaceDirectory

__all__ = [
    "BrokerClient",
    "BrokerError",
    "EntityInfo",
    "NamespaceConnection",
    "NamespaceDirectory",
    "NamespaceInfo",
    "NamespaceResolutionError",
    "PeekedMessage",
    "ReplayItemResult",
    "ReplaySource",
    "ReplayTarget",
    "BrokerClientCache",
    "BrokerClientFactory",
    "StaticNamespaceDirectory",
]
