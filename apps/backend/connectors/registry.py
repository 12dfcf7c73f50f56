"""
Connector registry: maps a source type to the connector that fetches it.
"""
import logging
from typing import Dict, Optional

from app.models import SourceType
from core.net import HTTPClient
from .base import SourceConnector

logger = logging.getLogger(__name__)

# Global registry instance
_registry: Optional['ConnectorRegistry'] = None


class ConnectorRegistry:
    """Registry for source connectors"""

    def __init__(self):
        self._connectors: Dict[SourceType, SourceConnector] = {}

    def register(self, connector: SourceConnector):
        if connector.source_type in self._connectors:
            logger.warning(f"Connector for {connector.source_type.value} already registered, replacing")
        self._connectors[connector.source_type] = connector
        logger.debug(f"Registered connector: {connector!r}")

    def get(self, source_type: SourceType) -> Optional[SourceConnector]:
        return self._connectors.get(source_type)

    def supported_types(self):
        return sorted(t.value for t in self._connectors)


def build_default_registry(http_client: Optional[HTTPClient] = None) -> ConnectorRegistry:
    from .ashby import AshbyConnector
    from .firecrawl import SearchConnector
    from .greenhouse import GreenhouseConnector
    from .lever import LeverConnector

    http = http_client or HTTPClient()
    registry = ConnectorRegistry()
    registry.register(GreenhouseConnector(http))
    registry.register(LeverConnector(http))
    registry.register(AshbyConnector(http))
    registry.register(SearchConnector(http))
    return registry


def get_registry() -> ConnectorRegistry:
    """Get global connector registry (lazy initialization)"""
    global _registry
    if _registry is None:
        _registry = build_default_registry()
    return _registry
