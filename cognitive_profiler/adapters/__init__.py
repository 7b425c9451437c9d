"""
Provider adapters for the external analysis backends.

Provides a pluggable interface so the orchestrator can call every provider
through the same contract, whatever backend sits behind it.
"""

from .base import BaseProviderAdapter, ProviderAdapter
from .errors import classify_error
from .langchain_adapter import LangChainProviderAdapter
from .registry import build_adapters, make_adapter, register

__all__ = [
    "BaseProviderAdapter",
    "ProviderAdapter",
    "LangChainProviderAdapter",
    "build_adapters",
    "classify_error",
    "make_adapter",
    "register",
]
