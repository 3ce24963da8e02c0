"""Cleanup executor: resolves the owning project and runs resource providers."""

from prcleaner.cleaner.executor import AzureCleaner, possible_names
from prcleaner.cleaner.providers import CleanupTarget, ResourceProvider, load_providers
from prcleaner.cleaner.urls import AzdoProjectUrl

__all__ = [
    "AzdoProjectUrl",
    "AzureCleaner",
    "CleanupTarget",
    "ResourceProvider",
    "load_providers",
    "possible_names",
]
