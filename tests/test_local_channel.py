"""Tests for the local-machine channel."""

from __future__ import annotations

from pathlib import Path

import pytest

from vmagent.remote.local import TIMEOUT_EXIT_CODE, LocalChannel


class TestLocalExec:
    """Test command execution."""

    @pytest.mark.asyncio
    async def test_exec_captures_output(self) -> None:
        """Test stdout, stderr and exit code capture."""
        channel = LocalChannel()
        result = await channel.exec("echo out; echo err >&2; exit 3", timeout=10)

        assert result.exit_code == 3
        assert not result.success
        assert result.stdout.strip() == "out"
        assert result.stderr.strip() == "err"
        assert result.duration_ms >= 0

    @pytest.mark.asyncio
    async def test_exec_timeout(self) -> None:
        """Test that slow commands are killed."""
        channel = LocalChannel()
        result = await channel.exec("sleep 5", timeout=0.2)

        assert result.timed_out
        assert result.exit_code == TIMEOUT_EXIT_CODE
        assert "timed out" in result.stderr

    @pytest.mark.asyncio
    async def test_exec_env(self) -> None:
        """Test extra environment variables."""
        channel = LocalChannel(env={"VMAGENT_TEST_VALUE": "42"})
        result = await channel.exec("echo $VMAGENT_TEST_VALUE", timeout=10)
        assert result.stdout.strip() == "42"


class TestLocalFiles:
    """Test file primitives against a temp directory."""

    @pytest.mark.asyncio
    async def test_file_round_trip(self, tmp_path: Path) -> None:
        """Test write, stat, read, rename and unlink."""
        channel = LocalChannel()
        path = str(tmp_path / "a.txt")

        await channel.write_file(path, b"hello")
        stat = await channel.stat(path)
        assert stat is not None
        assert stat.size == 5
        assert not stat.is_dir
        assert await channel.read_file(path) == b"hello"

        moved = str(tmp_path / "b.txt")
        await channel.rename(path, moved)
        assert await channel.stat(path) is None

        await channel.unlink(moved)
        assert await channel.stat(moved) is None

    @pytest.mark.asyncio
    async def test_mkdir_and_readdir(self, tmp_path: Path) -> None:
        """Test nested mkdir and directory listing."""
        channel = LocalChannel()
        await channel.mkdir(str(tmp_path / "x" / "y"))
        (tmp_path / "f.txt").write_text("abc")

        entries = {e.name: e for e in await channel.readdir(str(tmp_path))}
        assert entries["x"].is_dir
        assert entries["f.txt"].size == 3

    @pytest.mark.asyncio
    async def test_rmdir_only_empty(self, tmp_path: Path) -> None:
        """Test that rmdir removes empty directories and refuses others."""
        channel = LocalChannel()
        await channel.mkdir(str(tmp_path / "x" / "y"))

        with pytest.raises(OSError):
            await channel.rmdir(str(tmp_path / "x"))
        await channel.rmdir(str(tmp_path / "x" / "y"))
        await channel.rmdir(str(tmp_path / "x"))
        assert await channel.stat(str(tmp_path / "x")) is None

    @pytest.mark.asyncio
    async def test_missing_file_raises(self, tmp_path: Path) -> None:
        """Test that reads of missing files raise OSError."""
        channel = LocalChannel()
        with pytest.raises(FileNotFoundError):
            await channel.read_file(str(tmp_path / "missing"))
