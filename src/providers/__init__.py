"""
Media source providers: local directory and remote GraphQL catalog.
"""

from .base import (
    Capabilities,
    MediaNotFound,
    MediaPayload,
    MediaSourceProvider,
    ProviderNotInitialized,
    ProviderResult,
    ProviderType,
    UnsupportedOperation,
)
from .factory import ProviderFactory, ProviderSetupError
from .local import LocalMediaProvider
from .remote import GraphQLClient, RemoteCatalogError, RemoteMediaProvider

__all__ = [
    "Capabilities",
    "GraphQLClient",
    "LocalMediaProvider",
    "MediaNotFound",
    "MediaPayload",
    "MediaSourceProvider",
    "ProviderFactory",
    "ProviderNotInitialized",
    "ProviderResult",
    "ProviderSetupError",
    "ProviderType",
    "RemoteCatalogError",
    "RemoteMediaProvider",
    "UnsupportedOperation",
]
