from __future__ import annotations

from atsqueue.core.errors import UnknownProviderError
from atsqueue.crawlers.base import ProviderAdapter

ADAPTERS: dict[str, type[ProviderAdapter]] = {}


def register_adapter(cls: type[ProviderAdapter]) -> type[ProviderAdapter]:
    ADAPTERS[cls.provider_name] = cls
    return cls


def get_adapter(provider: str) -> ProviderAdapter:
    adapter_cls = ADAPTERS.get(provider)
    if not adapter_cls:
        raise UnknownProviderError(provider)
    return adapter_cls()


def load_builtin_adapters() -> None:
    # importing the modules runs their @register_adapter decorators
    from atsqueue.crawlers.adapters import ashby, greenhouse, lever, smartrecruiters, workday  # noqa: F401


load_builtin_adapters()
