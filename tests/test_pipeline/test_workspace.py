"""
Tests for plugin_builder.pipeline.workspace
=============================================

The workspace directory must be gone after the ``async with`` block on
every exit path: normal, exception and cancellation. Build ids that would
resolve outside the build root are refused before anything is touched.
"""

import asyncio
from pathlib import Path

import pytest

from plugin_builder.core.exceptions import WorkspaceError
from plugin_builder.pipeline.workspace import Workspace, cleanup_workspace


class TestWorkspace:
    async def test_created_and_removed(self, tmp_path: Path) -> None:
        async with Workspace(tmp_path, "bld-1") as ws:
            assert ws.path == tmp_path / "bld-1"
            assert ws.path.is_dir()
            ws.archive_path.write_bytes(b"archive")
            ws.extract_dir.mkdir()
            (ws.extract_dir / "file.txt").write_text("x")

        assert not (tmp_path / "bld-1").exists()
        assert ws.cleaned_up is True

    async def test_removed_when_body_raises(self, tmp_path: Path) -> None:
        with pytest.raises(RuntimeError):
            async with Workspace(tmp_path, "bld-2") as ws:
                (ws.path / "partial").write_text("x")
                raise RuntimeError("crash")

        assert not (tmp_path / "bld-2").exists()

    async def test_removed_when_task_cancelled(self, tmp_path: Path) -> None:
        entered = asyncio.Event()

        async def run() -> None:
            async with Workspace(tmp_path, "bld-3"):
                entered.set()
                await asyncio.sleep(30)

        task = asyncio.create_task(run())
        await entered.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert not (tmp_path / "bld-3").exists()

    async def test_workspaces_are_isolated(self, tmp_path: Path) -> None:
        async with Workspace(tmp_path, "bld-a") as a, Workspace(tmp_path, "bld-b") as b:
            assert a.path != b.path
            a.archive_path.write_bytes(b"a")
            assert not b.archive_path.exists()

    async def test_root_is_created(self, tmp_path: Path) -> None:
        async with Workspace(tmp_path / "nested" / "builds", "bld-4") as ws:
            assert ws.path.is_dir()

    async def test_root_that_is_a_file_raises_workspace_error(self, tmp_path: Path) -> None:
        not_a_dir = tmp_path / "builds"
        not_a_dir.write_text("occupied")

        with pytest.raises(WorkspaceError) as exc_info:
            async with Workspace(not_a_dir, "bld-5"):
                pass

        assert exc_info.value.error_code == "WORKSPACE_UNAVAILABLE"
        assert not_a_dir.read_text() == "occupied"

    @pytest.mark.parametrize("build_id", ["../victim", "nested/../../victim", "", "."])
    async def test_build_id_outside_root_is_refused(self, tmp_path: Path, build_id: str) -> None:
        root = tmp_path / "builds"
        root.mkdir()
        victim = tmp_path / "victim"
        victim.mkdir()
        (victim / "precious.txt").write_text("keep me")

        with pytest.raises(WorkspaceError) as exc_info:
            async with Workspace(root, build_id):
                pass

        assert exc_info.value.error_code == "INVALID_WORKSPACE_PATH"
        assert (victim / "precious.txt").read_text() == "keep me"
        assert root.is_dir()

    async def test_absolute_build_id_is_refused(self, tmp_path: Path) -> None:
        victim = tmp_path / "victim"
        victim.mkdir()
        (victim / "precious.txt").write_text("keep me")

        with pytest.raises(WorkspaceError):
            Workspace(tmp_path / "builds", str(victim))

        assert (victim / "precious.txt").exists()


class TestCleanupWorkspace:
    async def test_missing_directory_counts_as_clean(self, tmp_path: Path) -> None:
        assert await cleanup_workspace(tmp_path / "never-created") is True

    async def test_failure_is_reported_not_raised(self, tmp_path: Path, monkeypatch) -> None:
        target = tmp_path / "ws"
        target.mkdir()

        def refuse(path) -> None:
            raise PermissionError("busy")

        monkeypatch.setattr("plugin_builder.pipeline.workspace.shutil.rmtree", refuse)

        assert await cleanup_workspace(target) is False
