"""Exception hierarchy for the cleanup pipeline."""

from __future__ import annotations


class PrCleanerError(Exception):
    """Base class for all prcleaner errors."""


class MalformedResourceError(PrCleanerError):
    """A notification's resource could not be decoded for its event type."""


class MissingResourceLinkError(PrCleanerError):
    """A qualifying pull request event lacks its project or remote URL."""


class PublishError(PrCleanerError):
    """The message bus refused or failed to accept a message."""


class ProjectResolutionError(PrCleanerError):
    """No Azure DevOps project could be derived from the supplied URLs."""


class ResourceNotFoundError(PrCleanerError):
    """Raised by a resource provider when there is nothing left to delete."""


class ProviderLoadError(PrCleanerError):
    """A configured resource provider could not be imported."""
