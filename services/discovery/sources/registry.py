"""
Source registry - name -> SourceAdapter class.
"""

from typing import Callable, Dict, List, Type

from services.discovery.sources.base import SourceAdapter

_REGISTRY: Dict[str, Type[SourceAdapter]] = {}


def register(name: str) -> Callable[[Type[SourceAdapter]], Type[SourceAdapter]]:
    """
    Decorator to register a source adapter class.

    Usage:
        @register("yellowpages")
        class YellowPagesSource(SourceAdapter):
            ...
    """

    def decorator(cls: Type[SourceAdapter]) -> Type[SourceAdapter]:
        if name in _REGISTRY:
            raise ValueError(f"Source '{name}' is already registered")
        _REGISTRY[name] = cls
        return cls

    return decorator


def get_source(name: str) -> Type[SourceAdapter]:
    """
    Get a source adapter class by name.

    Raises:
        ValueError: If the source is not registered
    """
    if name not in _REGISTRY:
        available = ", ".join(_REGISTRY.keys()) or "(none)"
        raise ValueError(f"Unknown source: '{name}'. Available: {available}")
    return _REGISTRY[name]


def list_sources() -> List[str]:
    return list(_REGISTRY.keys())
