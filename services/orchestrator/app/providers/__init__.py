from .clients import BaseProviderClient, GenerationResult, generate_text, make_provider_client
from .registry import ProviderRegistry, ProviderStatus, build_default_registry

__all__ = [
    "BaseProviderClient",
    "ProviderRegistry",
    "ProviderStatus",
    "build_default_registry",
    "GenerationResult",
    "generate_text",
    "make_provider_client",
]
