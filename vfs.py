"""Storage backends the interpreter performs file I/O through.

The interpreter only ever talks to a ``FileSystem``; it never touches the
host filesystem directly. Two backends are provided:

- ``RealLocalFileSystem`` maps every path under a root directory on disk.
- ``VirtualFileSystem`` keeps a directory tree in memory. Nodes live in a
  flat arena and refer to their parent and children by arena index.

Failures are reported with the builtin ``OSError`` subclasses
(``FileNotFoundError``, ``IsADirectoryError``, ...). The interpreter turns
any ``OSError`` into an in-band failure value for the running program.
"""

from __future__ import annotations
import errno
import os
from dataclasses import dataclass, field
from typing import List, Optional


PATH_SEPARATOR = "/"


def split_path(path: str) -> List[str]:
    """Split a '/'-delimited path into its non-empty segments."""
    if "\x00" in path:
        raise OSError(errno.EINVAL, "Path contains a NUL byte", path)
    segments = [segment for segment in path.split(PATH_SEPARATOR) if segment]
    for segment in segments:
        if segment in (".", ".."):
            raise PermissionError(errno.EACCES, "Relative path segments are not allowed", path)
    return segments


class FileStream:
    """A readable or writable byte channel returned by a FileSystem."""

    def read(self, size: int = 1) -> bytes:
        """Read up to ``size`` bytes; ``b""`` means end of stream."""
        raise NotImplementedError

    def write(self, data: bytes) -> int:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


class FileSystem:
    def ls(self, path: str) -> List[str]:
        """List the names of the children of the directory at ``path``."""
        raise NotImplementedError

    def create_stream(self, path: str) -> FileStream:
        """Create (or truncate) the file at ``path`` and return a write stream."""
        raise NotImplementedError

    def open_stream(self, path: str) -> FileStream:
        """Open the existing file at ``path`` and return a read stream."""
        raise NotImplementedError

    def remove(self, path: str) -> None:
        raise NotImplementedError


# Real local file system


class RealLocalFileStream(FileStream):
    def __init__(self, handle) -> None:
        # Unbuffered, so a write is visible to readers of the same file at once.
        self._handle = handle

    def read(self, size: int = 1) -> bytes:
        return self._handle.read(size) or b""

    def write(self, data: bytes) -> int:
        return self._handle.write(data)

    def close(self) -> None:
        self._handle.close()


class RealLocalFileSystem(FileSystem):
    """Performs every operation relative to ``root`` on the host disk."""

    def __init__(self, root: str) -> None:
        self.root = os.path.abspath(root)

    def _resolve(self, path: str) -> str:
        return os.path.join(self.root, *split_path(path))

    def ls(self, path: str) -> List[str]:
        return sorted(os.listdir(self._resolve(path)))

    def create_stream(self, path: str) -> FileStream:
        segments = split_path(path)
        if not segments:
            raise IsADirectoryError(errno.EISDIR, "Cannot create a file without a name", path)
        target = os.path.join(self.root, *segments)
        os.makedirs(os.path.dirname(target), exist_ok=True)
        return RealLocalFileStream(open(target, "wb", buffering=0))

    def open_stream(self, path: str) -> FileStream:
        return RealLocalFileStream(open(self._resolve(path), "rb", buffering=0))

    def remove(self, path: str) -> None:
        target = self._resolve(path)
        if os.path.isdir(target):
            raise IsADirectoryError(errno.EISDIR, "Only files can be removed", path)
        os.remove(target)


# Virtual file system

NODE_DIR = "DIR"
NODE_FILE = "FILE"
ROOT_INDEX = 0

MODE_READ = "r"
MODE_WRITE = "w"


@dataclass
class VirtualNode:
    name: str
    kind: str
    parent: Optional[int]
    children: List[int] = field(default_factory=list)
    data: bytearray = field(default_factory=bytearray)

    @property
    def is_dir(self) -> bool:
        return self.kind == NODE_DIR


class VirtualFileStream(FileStream):
    def __init__(self, data: bytearray, mode: str) -> None:
        # Shares the file's buffer; a removed file leaves the buffer detached.
        self._data = data
        self.mode = mode
        self.position = 0
        self.closed = False

    def _check_open(self) -> None:
        if self.closed:
            raise ValueError("I/O operation on closed stream")

    def read(self, size: int = 1) -> bytes:
        self._check_open()
        if self.mode != MODE_READ:
            raise PermissionError(errno.EBADF, "Tried reading from a write-only stream")
        chunk = bytes(self._data[self.position : self.position + size])
        self.position += len(chunk)
        return chunk

    def write(self, data: bytes) -> int:
        self._check_open()
        if self.mode != MODE_WRITE:
            raise PermissionError(errno.EBADF, "Tried writing to a read-only stream")
        self._data.extend(data)
        self.position = len(self._data)
        return len(data)

    def close(self) -> None:
        self.closed = True


class VirtualFileSystem(FileSystem):
    def __init__(self) -> None:
        self._nodes: List[Optional[VirtualNode]] = [VirtualNode(name="root", kind=NODE_DIR, parent=None)]
        self._free: List[int] = []

    def _node(self, index: int) -> VirtualNode:
        node = self._nodes[index]
        assert node is not None, f"dangling arena index {index}"
        return node

    def _allocate(self, node: VirtualNode) -> int:
        if self._free:
            index = self._free.pop()
            self._nodes[index] = node
        else:
            index = len(self._nodes)
            self._nodes.append(node)
        if node.parent is not None:
            self._node(node.parent).children.append(index)
        return index

    def _child(self, parent: int, name: str) -> Optional[int]:
        for index in self._node(parent).children:
            if self._node(index).name == name:
                return index
        return None

    def _lookup(self, segments: List[str]) -> Optional[int]:
        head = ROOT_INDEX
        for segment in segments:
            if not self._node(head).is_dir:
                return None
            child = self._child(head, segment)
            if child is None:
                return None
            head = child
        return head

    def ls(self, path: str) -> List[str]:
        index = self._lookup(split_path(path))
        if index is None:
            raise FileNotFoundError(errno.ENOENT, "Directory not found", path)
        node = self._node(index)
        if not node.is_dir:
            raise NotADirectoryError(errno.ENOTDIR, "Expected a directory path, found a file path", path)
        return [self._node(child).name for child in node.children]

    def create_stream(self, path: str) -> FileStream:
        segments = split_path(path)
        if not segments:
            raise IsADirectoryError(errno.EISDIR, "Cannot create a file without a name", path)

        # All but the last segment are directories, created on demand.
        head = ROOT_INDEX
        for segment in segments[:-1]:
            child = self._child(head, segment)
            if child is None:
                child = self._allocate(VirtualNode(name=segment, kind=NODE_DIR, parent=head))
            elif not self._node(child).is_dir:
                raise NotADirectoryError(errno.ENOTDIR, f"'{segment}' in the path is a file", path)
            head = child

        existing = self._child(head, segments[-1])
        if existing is None:
            existing = self._allocate(VirtualNode(name=segments[-1], kind=NODE_FILE, parent=head))
        node = self._node(existing)
        if node.is_dir:
            raise IsADirectoryError(errno.EISDIR, "Expected a file path, found a directory path", path)
        # Truncate in place so open readers observe the new content.
        del node.data[:]
        return VirtualFileStream(node.data, MODE_WRITE)

    def open_stream(self, path: str) -> FileStream:
        index = self._lookup(split_path(path))
        if index is None:
            raise FileNotFoundError(errno.ENOENT, "File not found", path)
        node = self._node(index)
        if node.is_dir:
            raise IsADirectoryError(errno.EISDIR, "Expected a file path, found a directory path", path)
        return VirtualFileStream(node.data, MODE_READ)

    def remove(self, path: str) -> None:
        index = self._lookup(split_path(path))
        if index is None:
            raise FileNotFoundError(errno.ENOENT, "File not found", path)
        node = self._node(index)
        if node.is_dir:
            raise IsADirectoryError(errno.EISDIR, "Only files can be removed", path)
        assert node.parent is not None
        self._node(node.parent).children.remove(index)
        self._nodes[index] = None
        self._free.append(index)

    # Inspection helpers for callers holding the backend; not part of FileSystem.

    def read_bytes(self, path: str) -> bytes:
        """Return a copy of a file's content without opening a stream."""
        index = self._lookup(split_path(path))
        if index is None:
            raise FileNotFoundError(errno.ENOENT, "File not found", path)
        node = self._node(index)
        if node.is_dir:
            raise IsADirectoryError(errno.EISDIR, "Expected a file path, found a directory path", path)
        return bytes(node.data)

    def exists(self, path: str) -> bool:
        return self._lookup(split_path(path)) is not None
