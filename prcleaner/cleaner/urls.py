"""Azure DevOps project URL parsing."""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import unquote, urlsplit

from prcleaner.errors import ProjectResolutionError


@dataclass(frozen=True)
class AzdoProjectUrl:
    """Organization and project (name or id) behind an Azure DevOps URL.

    Understands project URLs, REST API project URLs and git remote URLs on
    both ``dev.azure.com`` and the legacy ``*.visualstudio.com`` hosts::

        https://dev.azure.com/org/proj
        https://dev.azure.com/org/_apis/projects/<id>
        https://org@dev.azure.com/org/proj/_git/repo
        https://org.visualstudio.com/DefaultCollection/proj
    """

    hostname: str
    organization: str
    project: str

    @property
    def url(self) -> str:
        if self.hostname == "dev.azure.com":
            return f"https://dev.azure.com/{self.organization}/{self.project}"
        return f"https://{self.hostname}/{self.project}"

    @classmethod
    def parse(cls, value: str) -> AzdoProjectUrl:
        parts = urlsplit(value.strip())
        hostname = (parts.hostname or "").lower()
        segments = [unquote(s) for s in parts.path.split("/") if s]

        if hostname == "dev.azure.com":
            if not segments:
                raise ProjectResolutionError(f"no organization in '{value}'")
            organization, rest = segments[0], segments[1:]
        elif hostname.endswith(".visualstudio.com"):
            organization, rest = hostname.split(".", 1)[0], segments
            if rest and rest[0].lower() == "defaultcollection":
                rest = rest[1:]
        else:
            raise ProjectResolutionError(f"'{value}' is not an Azure DevOps URL")

        if len(rest) >= 3 and rest[0] == "_apis" and rest[1] == "projects":
            project = rest[2]
        elif len(rest) >= 2 and rest[0] == "_git":
            # Repository named after its project: https://dev.azure.com/org/_git/proj
            project = rest[1]
        elif rest and not rest[0].startswith("_"):
            project = rest[0]
        else:
            raise ProjectResolutionError(f"no project in '{value}'")

        return cls(hostname=hostname, organization=organization, project=project)

    def matches(self, other: AzdoProjectUrl) -> bool:
        return (
            self.organization.lower() == other.organization.lower()
            and self.project.lower() == other.project.lower()
        )

    def __str__(self) -> str:
        return self.url
