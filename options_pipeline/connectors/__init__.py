"""Data source connectors package.

Re-exports the BaseConnector ABC, exception hierarchy, and the Polygon
options snapshot connector for convenient imports.
"""

from .base import (
    BaseConnector,
    ConfigurationError,
    ConnectorError,
    DataParsingError,
    FetchError,
    RateLimitError,
    UpstreamStatusError,
)
from .polygon_options import PolygonOptionsConnector

__all__ = [
    "BaseConnector",
    "ConfigurationError",
    "ConnectorError",
    "DataParsingError",
    "FetchError",
    "PolygonOptionsConnector",
    "RateLimitError",
    "UpstreamStatusError",
]
