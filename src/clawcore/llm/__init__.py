"""
LLM backends and the failover router.
"""

from .adapters import BackendAdapter, GeminiAdapter, OpenAICompatibleAdapter
from .router import ProviderRouter, build_default_router, build_messages

__all__ = [
    "BackendAdapter",
    "GeminiAdapter",
    "OpenAICompatibleAdapter",
    "ProviderRouter",
    "build_default_router",
    "build_messages",
]
