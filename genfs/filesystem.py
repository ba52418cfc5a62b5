"""Commands that create, list and remove files and directories inside an image."""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Union

from genfs.blocks import Disk
from genfs.inodes import (
    alloc_inode,
    copy_data,
    free_inode,
    init_root_dir,
    iter_dir_entries,
    resolve,
)
from genfs.layout import FileType, FsError, Inode, SuperBlock
from genfs.paths import split_parent, strip_trailing_slash

StrPath = Union[str, "os.PathLike[str]"]


@contextmanager
def _open_disk(driver: StrPath, mode: str) -> Iterator[Disk]:
    """Open the image at ``driver`` and load its group header."""
    try:
        file = open(driver, mode)
    except OSError as exc:
        raise FsError(f"Failed to open driver: {exc}") from exc
    with file:
        yield Disk(file).load()


def _parent_of(disk: Disk, path: str) -> tuple[Inode, int, str]:
    """The directory that is to hold the last component of ``path``, with that name."""
    parent_path, name = split_parent(path)
    try:
        parent, offset = resolve(disk, parent_path)
    except FsError as exc:
        raise FsError(f"Failed to read father inode: {exc}") from exc
    if parent.file_type != FileType.DIRECTORY:
        raise FsError(f"Failed to read father inode: {parent_path} is not a directory")
    return parent, offset, name


def _create(driver: StrPath, path: str, file_type: FileType) -> SuperBlock:
    with _open_disk(driver, "r+b") as disk:
        parent, parent_offset, name = _parent_of(disk, path)
        try:
            alloc_inode(disk, parent, parent_offset, name, file_type)
        except FsError as exc:
            raise FsError(f"Failed to allocate inode: {exc}") from exc
        return disk.super_block


def _remove(driver: StrPath, path: str, file_type: FileType) -> SuperBlock:
    with _open_disk(driver, "r+b") as disk:
        parent, parent_offset, name = _parent_of(disk, path)
        try:
            free_inode(disk, parent, parent_offset, name, file_type)
        except FsError as exc:
            raise FsError(f"Failed to free inode and its block: {exc}") from exc
        return disk.super_block


def _lookup(disk: Disk, path: str) -> Inode:
    try:
        inode, _ = resolve(disk, path)
    except FsError as exc:
        raise FsError(f"Failed to read inode: {exc}") from exc
    return inode


def format_image(driver: StrPath, sector_num: int, sectors_per_block: int) -> SuperBlock:
    """Create a fresh image at ``driver`` holding only an empty root directory."""
    try:
        file = open(driver, "w+b")
    except OSError as exc:
        raise FsError(f"Failed to open driver: {exc}") from exc
    with file:
        try:
            disk = Disk.create(file, sector_num, sectors_per_block)
            init_root_dir(disk)
        except FsError as exc:
            raise FsError(f"Failed to format: {exc}") from exc
        return disk.super_block


def mkdir(driver: StrPath, path: str) -> SuperBlock:
    """Create the directory ``path``; a trailing '/' is allowed."""
    return _create(driver, strip_trailing_slash(path), FileType.DIRECTORY)


def rmdir(driver: StrPath, path: str) -> SuperBlock:
    """Remove the empty directory ``path``; a trailing '/' is allowed."""
    return _remove(driver, strip_trailing_slash(path), FileType.DIRECTORY)


def cp(driver: StrPath, src_path: StrPath, dest_path: str) -> SuperBlock:
    """Copy the host file ``src_path`` into the image as the regular file ``dest_path``."""
    with _open_disk(driver, "r+b") as disk:
        try:
            src = open(src_path, "rb")
        except OSError as exc:
            raise FsError(f"Failed to open srcFilePath: {exc}") from exc
        with src:
            parent, parent_offset, name = _parent_of(disk, dest_path)
            try:
                inode, offset = alloc_inode(disk, parent, parent_offset, name, FileType.REGULAR)
            except FsError as exc:
                raise FsError(f"Failed to allocate inode: {exc}") from exc
            try:
                copy_data(disk, src, inode, offset)
            except FsError as exc:
                raise FsError(f"Failed to copy data: {exc}") from exc
        return disk.super_block


def rm(driver: StrPath, path: str) -> SuperBlock:
    """Remove the regular file ``path``."""
    return _remove(driver, path, FileType.REGULAR)


def ls(driver: StrPath, path: str) -> tuple[Inode, list[tuple[str, Inode]]]:
    """The inode at ``path`` and, unless it is a regular file, its named children."""
    with _open_disk(driver, "rb") as disk:
        inode = _lookup(disk, path)
        if inode.file_type == FileType.REGULAR:
            return inode, []
        children = [
            (entry.name, disk.read_inode_at(entry.inode))
            for entry in iter_dir_entries(disk, inode)
        ]
        return inode, children


def cat(driver: StrPath, path: str) -> bytes:
    """Content of the file at ``path``."""
    with _open_disk(driver, "rb") as disk:
        inode = _lookup(disk, path)
        if inode.file_type == FileType.DIRECTORY:
            raise FsError(f"cat {path}: is a directory.")
        data = b"".join(disk.read_block(inode, index) for index in range(inode.block_count))
        return data[: inode.size]


def touch(driver: StrPath, path: str) -> SuperBlock:
    """Create the empty regular file ``path``."""
    return _create(driver, path, FileType.REGULAR)