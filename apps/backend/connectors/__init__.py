"""
Source connectors for the job pipeline.

Each connector understands one upstream listing format:
- Greenhouse, Lever and Ashby public job board APIs
- Firecrawl web search for query-defined sources
"""

from .base import SourceConnector
from .registry import ConnectorRegistry, build_default_registry, get_registry

__all__ = [
    'SourceConnector',
    'ConnectorRegistry',
    'build_default_registry',
    'get_registry',
]
