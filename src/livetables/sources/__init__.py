"""
Ingestion connectors.
"""

from .directory_connector import ConnectorBatch, DirectoryConnector

__all__ = ["ConnectorBatch", "DirectoryConnector"]
