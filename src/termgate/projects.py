"""Project resolution — maps a project identifier to a workspace directory."""

from __future__ import annotations

import logging
import os
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class ProjectResolver(Protocol):
    """Anything that can turn a project identifier into a directory."""

    async def resolve(self, project: str) -> str | None:
        """Return the project's absolute directory, or None if unknown."""
        ...


class DirectoryProjectResolver:
    """Treats each subdirectory of ``root`` as a project named after it.

    Identifiers that aren't a single plain path segment (``..``, ``a/b``,
    hidden names) never resolve.
    """

    def __init__(self, root: str) -> None:
        self.root = os.path.realpath(os.path.expanduser(root))

    async def resolve(self, project: str) -> str | None:
        if not project or project.startswith(".") or os.sep in project:
            return None
        if os.altsep and os.altsep in project:
            return None
        path = os.path.realpath(os.path.join(self.root, project))
        if os.path.dirname(path) != self.root or not os.path.isdir(path):
            logger.debug("Project %r not found under %s", project, self.root)
            return None
        return path


class StaticProjectResolver:
    """Resolves from a fixed ``{project: directory}`` table."""

    def __init__(self, projects: dict[str, str]) -> None:
        self.projects = dict(projects)

    async def resolve(self, project: str) -> str | None:
        return self.projects.get(project)
