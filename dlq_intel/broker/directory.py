"""
Static Namespace Directory
Namespaces and connection data taken from configuration
"""

from typing import Dict, Iterable, List

from dlq_intel.broker.base import (
    NamespaceConnection,
    NamespaceDirectory,
    NamespaceInfo,
    NamespaceResolutionError,
)
from dlq_intel.errors import ErrorCode


class StaticNamespaceDirectory(NamespaceDirectory):
    """Directory backed by an in-process list of namespaces"""

    def __init__(self, namespaces: Iterable = ()):
        """
        Initialize directory

        Args:
            namespaces: Objects with id, name, connection_string and active attributes
                (e.g. NamespaceSettings entries)
        """
        self._namespaces: Dict[str, object] = {}
        for namespace in namespaces:
            self.register(namespace)

    def register(self, namespace) -> None:
        """Add or replace a namespace"""
        self._namespaces[namespace.id] = namespace

    async def list_active(self) -> List[NamespaceInfo]:
        return [
            NamespaceInfo(id=ns.id, name=ns.name, active=ns.active)
            for ns in self._namespaces.values()
            if ns.active
        ]

    async def resolve(self, namespace_id: str) -> NamespaceConnection:
        namespace = self._namespaces.get(namespace_id)
        if namespace is None:
            raise NamespaceResolutionError(
                f"Namespace '{namespace_id}' not found", code=ErrorCode.NAMESPACE_NOT_FOUND
            )

        if not namespace.connection_string:
            raise NamespaceResolutionError(
                f"Namespace '{namespace_id}' has no connection string configured"
            )

        return NamespaceConnection(
            namespace_id=namespace.id,
            name=namespace.name,
            connection_string=namespace.connection_string,
        )
