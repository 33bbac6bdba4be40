"""Tests for the storage backends."""

from __future__ import annotations

from pathlib import Path

import pytest

from vfs import (
    NODE_DIR,
    ROOT_INDEX,
    FileSystem,
    RealLocalFileSystem,
    VirtualFileSystem,
    split_path,
)


@pytest.fixture(params=["virtual", "real"])
def fs(request: pytest.FixtureRequest, tmp_path: Path) -> FileSystem:
    if request.param == "virtual":
        return VirtualFileSystem()
    return RealLocalFileSystem(str(tmp_path))


class TestSplitPath:
    def test_ignores_empty_segments(self) -> None:
        assert split_path("/a//b/") == ["a", "b"]
        assert split_path("") == []

    @pytest.mark.parametrize("path", ["..", "a/../b", "./a"])
    def test_rejects_relative_segments(self, path: str) -> None:
        with pytest.raises(PermissionError):
            split_path(path)

    def test_rejects_nul_bytes(self) -> None:
        with pytest.raises(OSError, match="NUL byte"):
            split_path("a\x00b")


class TestFileSystemContract:
    """Behaviour both backends must share."""

    def test_write_is_visible_to_reader(self, fs: FileSystem) -> None:
        writer = fs.create_stream("f")
        assert writer.write(b"xy") == 2
        reader = fs.open_stream("f")
        assert reader.read(1) == b"x"
        assert reader.read(5) == b"y"
        assert reader.read(1) == b""
        writer.close()
        reader.close()

    def test_create_makes_parent_directories(self, fs: FileSystem) -> None:
        fs.create_stream("a/b/c.txt").close()
        assert fs.ls("") == ["a"]
        assert fs.ls("a") == ["b"]
        assert fs.ls("/a/b") == ["c.txt"]

    def test_create_truncates_existing_file(self, fs: FileSystem) -> None:
        writer = fs.create_stream("f")
        writer.write(b"abc")
        writer.close()
        fs.create_stream("f").close()
        reader = fs.open_stream("f")
        assert reader.read(1) == b""
        reader.close()

    def test_create_without_name_fails(self, fs: FileSystem) -> None:
        with pytest.raises(IsADirectoryError):
            fs.create_stream("")

    def test_create_below_a_file_fails(self, fs: FileSystem) -> None:
        fs.create_stream("f").close()
        with pytest.raises(OSError):
            fs.create_stream("f/g")

    def test_create_over_directory_fails(self, fs: FileSystem) -> None:
        fs.create_stream("d/f").close()
        with pytest.raises(IsADirectoryError):
            fs.create_stream("d")

    def test_open_missing_fails(self, fs: FileSystem) -> None:
        with pytest.raises(FileNotFoundError):
            fs.open_stream("missing")

    def test_open_directory_fails(self, fs: FileSystem) -> None:
        fs.create_stream("d/f").close()
        with pytest.raises(IsADirectoryError):
            fs.open_stream("d")

    def test_ls_errors(self, fs: FileSystem) -> None:
        fs.create_stream("f").close()
        with pytest.raises(FileNotFoundError):
            fs.ls("missing")
        with pytest.raises(NotADirectoryError):
            fs.ls("f")

    def test_remove(self, fs: FileSystem) -> None:
        fs.create_stream("d/f").close()
        fs.remove("d/f")
        assert fs.ls("d") == []
        with pytest.raises(FileNotFoundError):
            fs.remove("d/f")
        with pytest.raises(IsADirectoryError):
            fs.remove("d")

    def test_relative_segments_rejected(self, fs: FileSystem) -> None:
        with pytest.raises(PermissionError):
            fs.create_stream("../escape")

    def test_nul_byte_rejected(self, fs: FileSystem) -> None:
        with pytest.raises(OSError):
            fs.create_stream("a\x00")
        with pytest.raises(OSError):
            fs.open_stream("a\x00")


class TestVirtualFileSystem:
    def test_read_from_write_stream_is_denied(self) -> None:
        fs = VirtualFileSystem()
        with pytest.raises(PermissionError):
            fs.create_stream("f").read(1)

    def test_write_to_read_stream_is_denied(self) -> None:
        fs = VirtualFileSystem()
        fs.create_stream("f").close()
        with pytest.raises(PermissionError):
            fs.open_stream("f").write(b"x")

    def test_closed_stream_rejects_io(self) -> None:
        fs = VirtualFileSystem()
        stream = fs.create_stream("f")
        stream.close()
        with pytest.raises(ValueError):
            stream.write(b"x")

    def test_ls_keeps_insertion_order(self) -> None:
        fs = VirtualFileSystem()
        for name in ("zeta", "alpha", "mid"):
            fs.create_stream(name).close()
        assert fs.ls("") == ["zeta", "alpha", "mid"]

    def test_nodes_link_by_arena_index(self) -> None:
        fs = VirtualFileSystem()
        fs.create_stream("a/b").close()
        root = fs._nodes[ROOT_INDEX]
        assert root is not None and root.parent is None
        a_index = root.children[0]
        a_node = fs._nodes[a_index]
        assert a_node is not None and a_node.kind == NODE_DIR and a_node.parent == ROOT_INDEX
        b_node = fs._nodes[a_node.children[0]]
        assert b_node is not None and b_node.parent == a_index

    def test_removed_slots_are_reused(self) -> None:
        fs = VirtualFileSystem()
        fs.create_stream("one").close()
        size = len(fs._nodes)
        fs.remove("one")
        fs.create_stream("two").close()
        assert len(fs._nodes) == size
        assert fs.ls("") == ["two"]

    def test_stream_survives_removal(self) -> None:
        fs = VirtualFileSystem()
        writer = fs.create_stream("f")
        writer.write(b"ab")
        reader = fs.open_stream("f")
        fs.remove("f")
        assert reader.read(2) == b"ab"
        assert not fs.exists("f")

    def test_read_bytes(self) -> None:
        fs = VirtualFileSystem()
        fs.create_stream("f").write(b"data")
        assert fs.read_bytes("f") == b"data"
        with pytest.raises(FileNotFoundError):
            fs.read_bytes("missing")


class TestRealLocalFileSystem:
    def test_paths_are_rooted(self, tmp_path: Path) -> None:
        fs = RealLocalFileSystem(str(tmp_path))
        stream = fs.create_stream("/sub/out.bin")
        stream.write(b"\x00\xff")
        stream.close()
        assert (tmp_path / "sub" / "out.bin").read_bytes() == b"\x00\xff"

    def test_ls_is_sorted(self, tmp_path: Path) -> None:
        for name in ("b", "a", "c"):
            (tmp_path / name).write_bytes(b"")
        assert RealLocalFileSystem(str(tmp_path)).ls("") == ["a", "b", "c"]

    def test_read_from_write_stream_fails(self, tmp_path: Path) -> None:
        stream = RealLocalFileSystem(str(tmp_path)).create_stream("f")
        with pytest.raises(OSError):
            stream.read(1)
        stream.close()
