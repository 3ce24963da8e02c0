"""Idempotent cleanup of the resources belonging to a pull request."""

from __future__ import annotations

from dataclasses import replace

from prcleaner.cleaner.providers import CleanupTarget, ResourceProvider
from prcleaner.cleaner.urls import AzdoProjectUrl
from prcleaner.config import CleanerConfig, ProjectConfig
from prcleaner.errors import ProjectResolutionError, ResourceNotFoundError
from prcleaner.utils.logging import get_logger

log = get_logger(__name__)


def possible_names(pr_id: int) -> tuple[str, ...]:
    """Names review resources are given for a pull request."""
    return (f"review-app-{pr_id}", f"ra-{pr_id}", f"ra{pr_id}")


class AzureCleaner:
    def __init__(
        self,
        config: CleanerConfig,
        providers: list[ResourceProvider] | None = None,
    ) -> None:
        self._config = config
        self._providers = list(providers or [])
        self._projects = [
            (AzdoProjectUrl.parse(p.url), p) for p in config.projects
        ]

    @property
    def providers(self) -> list[ResourceProvider]:
        return self._providers

    async def handle(
        self,
        pr_id: int,
        remote_url: str | None = None,
        raw_project_url: str | None = None,
    ) -> None:
        """Remove everything provisioned for ``pr_id``.

        The raw project URL wins over the remote URL when both are given.
        Projects outside the configured list are skipped. A provider that
        finds nothing counts as success, so repeated calls are safe.
        """
        project = self._resolve_project(remote_url, raw_project_url)

        token = ""
        if self._projects:
            match = self._find_project(project)
            if match is None:
                log.warning("project_not_allowed", project=project.url, pull_request_id=pr_id)
                return
            token = match.token

        if not self._providers:
            log.warning("no_resource_providers", pull_request_id=pr_id)
            return

        target = CleanupTarget(
            pr_id=pr_id,
            project=project,
            names=possible_names(pr_id),
            azdo_token=token,
        )
        log.info("cleanup_started", pull_request_id=pr_id, project=project.url, names=list(target.names))

        errors: list[Exception] = []
        deleted = 0
        for provider in self._providers:
            try:
                count = await provider.delete(target)
            except ResourceNotFoundError:
                log.info("already_clean", provider=provider.name, pull_request_id=pr_id)
                continue
            except Exception as exc:
                log.exception("provider_failed", provider=provider.name, pull_request_id=pr_id)
                errors.append(exc)
                continue
            deleted += count
            log.debug("provider_completed", provider=provider.name, deleted=count)

        if errors:
            raise errors[0]
        log.info("cleanup_completed", pull_request_id=pr_id, deleted=deleted)

    async def close(self) -> None:
        for provider in self._providers:
            try:
                await provider.close()
            except Exception:
                log.exception("provider_close_error", provider=provider.name)

    def _resolve_project(
        self, remote_url: str | None, raw_project_url: str | None
    ) -> AzdoProjectUrl:
        if raw_project_url:
            return AzdoProjectUrl.parse(raw_project_url)
        if remote_url:
            return AzdoProjectUrl.parse(remote_url)
        raise ProjectResolutionError("either a remote URL or a project URL is required")

    def _find_project(self, project: AzdoProjectUrl) -> ProjectConfig | None:
        for configured, entry in self._projects:
            if configured.matches(project):
                return entry
            if entry.id and replace(configured, project=entry.id).matches(project):
                return entry
        return None
