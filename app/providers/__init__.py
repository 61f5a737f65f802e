"""Text-generation provider adapters.

Each adapter sends one prompt to one provider and returns either a
``Completion`` or a ``ProviderError`` value. ``ProviderClient`` dispatches by
provider name.
"""

from app.providers.base import (
    BaseProvider,
    Completion,
    ProviderError,
    ProviderName,
    ResponseMetadata,
    UrlCitation,
    is_provider_error,
)
from app.providers.registry import ProviderClient, parse_provider

__all__ = [
    "BaseProvider",
    "Completion",
    "ProviderClient",
    "ProviderError",
    "ProviderName",
    "ResponseMetadata",
    "UrlCitation",
    "is_provider_error",
    "parse_provider",
]
