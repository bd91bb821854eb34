"""Tests for termgate.projects resolvers."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from termgate.projects import (
    DirectoryProjectResolver,
    ProjectResolver,
    StaticProjectResolver,
)


@pytest.fixture
def root(tmp_path: Path) -> Path:
    (tmp_path / "demo").mkdir()
    (tmp_path / ".hidden").mkdir()
    (tmp_path / "notes.txt").write_text("not a project")
    return tmp_path


class TestDirectoryProjectResolver:
    async def test_resolves_subdirectory(self, root: Path) -> None:
        resolver = DirectoryProjectResolver(str(root))
        assert await resolver.resolve("demo") == os.path.realpath(root / "demo")

    @pytest.mark.parametrize(
        "project",
        ["", "missing", "notes.txt", ".hidden", "..", ".", "demo/..", "../demo"],
    )
    async def test_not_found(self, root: Path, project: str) -> None:
        assert await DirectoryProjectResolver(str(root)).resolve(project) is None

    async def test_expands_user(self, monkeypatch: pytest.MonkeyPatch, root: Path) -> None:
        monkeypatch.setenv("HOME", str(root))
        resolver = DirectoryProjectResolver("~")
        assert await resolver.resolve("demo") == os.path.realpath(root / "demo")

    def test_satisfies_protocol(self, root: Path) -> None:
        assert isinstance(DirectoryProjectResolver(str(root)), ProjectResolver)


class TestStaticProjectResolver:
    async def test_lookup(self) -> None:
        resolver = StaticProjectResolver({"demo": "/srv/demo"})
        assert await resolver.resolve("demo") == "/srv/demo"
        assert await resolver.resolve("other") is None
