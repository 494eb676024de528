from __future__ import annotations
from typing import Dict, List, Type, Callable
from importlib import import_module

from parley.core.errors import UnsupportedProvider

_BUILTIN_MODULES = (
    "parley.providers.openai_adapter",
    "parley.providers.deepseek",
    "parley.providers.echo",
)


class ProviderRegistry:
    """
    Closed set of backend adapters keyed by provider id.
    Adapters register themselves with @ProviderRegistry.register("<id>").
    """
    _classes: Dict[str, Type] = {}

    @classmethod
    def register(cls, name: str) -> Callable[[Type], Type]:
        name = name.lower()
        def deco(klass: Type) -> Type:
            klass.provider_id = name
            cls._classes[name] = klass
            return klass
        return deco

    @classmethod
    def get(cls, name: str) -> Type:
        key = (name or "").lower()
        if key not in cls._classes:
            known = ", ".join(sorted(cls._classes)) or "none"
            raise UnsupportedProvider(f"Unsupported provider: '{name}' (known: {known})")
        return cls._classes[key]

    @classmethod
    def names(cls) -> List[str]:
        return sorted(cls._classes)

    @classmethod
    def ensure_imports(cls) -> None:
        """
        Import built-in adapters so their @register decorators run.
        Call once before get().
        """
        for mod in _BUILTIN_MODULES:
            import_module(mod)
