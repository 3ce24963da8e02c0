"""Resource provider interface and config-driven loading."""

from __future__ import annotations

import importlib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from prcleaner.cleaner.urls import AzdoProjectUrl
from prcleaner.errors import ProviderLoadError
from prcleaner.utils.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class CleanupTarget:
    pr_id: int
    project: AzdoProjectUrl
    names: tuple[str, ...]
    azdo_token: str = field(default="", repr=False)


class ResourceProvider(ABC):
    """Removes one kind of cloud resource provisioned for a pull request.

    ``delete`` must be idempotent: it is called again on redelivery and may
    run concurrently for the same pull request. Return the number of
    resources removed, or raise ResourceNotFoundError when nothing matched.
    """

    @property
    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    async def delete(self, target: CleanupTarget) -> int: ...

    async def close(self) -> None:
        """Clean up resources. Override if needed."""


def load_providers(paths: list[str]) -> list[ResourceProvider]:
    """Instantiate providers from ``package.module:ClassName`` entries."""
    providers: list[ResourceProvider] = []
    for path in paths:
        if ":" in path:
            module_path, class_name = path.split(":", 1)
        else:
            module_path, _, class_name = path.rpartition(".")
        try:
            module = importlib.import_module(module_path)
            provider_class = getattr(module, class_name)
        except (ImportError, AttributeError, ValueError) as exc:
            raise ProviderLoadError(f"cannot load resource provider '{path}': {exc}") from exc

        provider = provider_class()
        if not isinstance(provider, ResourceProvider):
            raise ProviderLoadError(f"'{path}' is not a ResourceProvider")
        log.info("provider_loaded", provider=provider.name, path=path)
        providers.append(provider)
    return providers
