"""Inode allocation, directory entries and path lookup inside an image."""

from __future__ import annotations

from collections.abc import Iterator
from typing import BinaryIO

from genfs.blocks import Disk
from genfs.layout import (
    DIRENTRY_SIZE,
    INODE_SIZE,
    NAME_LENGTH,
    SECTOR_SIZE,
    DirEntry,
    FileType,
    FsError,
    Inode,
    calc_inodes_per_group,
)
from genfs.paths import name_matches, truncate_name


def _read_bitmap(disk: Disk, sector: int) -> bytearray:
    disk.file.seek(sector * SECTOR_SIZE)
    raw = disk.file.read(disk.block_size)
    return bytearray(raw.ljust(disk.block_size, b"\x00"))


def _write_bitmap(disk: Disk, sector: int, bitmap: bytes) -> None:
    disk.file.seek(sector * SECTOR_SIZE)
    disk.file.write(bytes(bitmap))


def _slots(disk: Disk, inode: Inode) -> Iterator[tuple[int, int, bytes, DirEntry]]:
    """Every directory slot of ``inode``: block index, slot index, block data and entry."""
    per_block = disk.block_size // DIRENTRY_SIZE
    for block_index in range(inode.block_count):
        data = disk.read_block(inode, block_index)
        for slot in range(per_block):
            start = slot * DIRENTRY_SIZE
            yield block_index, slot, data, DirEntry.unpack(data[start : start + DIRENTRY_SIZE])


def iter_dir_entries(disk: Disk, inode: Inode) -> Iterator[DirEntry]:
    """Occupied entries of the directory ``inode``, in on-disk order."""
    for _, _, _, entry in _slots(disk, inode):
        if entry.inode != 0:
            yield entry


def dir_entry(disk: Disk, inode: Inode, index: int) -> DirEntry:
    """The ``index``-th occupied entry of the directory ``inode``."""
    if index >= 0:
        for position, entry in enumerate(iter_dir_entries(disk, inode)):
            if position == index:
                return entry
    raise FsError(f"directory has no entry number {index}")


def resolve(disk: Disk, path: str) -> tuple[Inode, int]:
    """Find the inode named by an absolute ``path``; returns it with its byte offset."""
    if not path:
        raise FsError("empty path")
    if not path.startswith("/"):
        raise FsError(f"{path}: path must start with '/'")
    offset = disk.groups[0].inode_table * SECTOR_SIZE
    inode = disk.read_inode_at(offset)
    rest = path[1:]
    while rest:
        cut = rest.find("/")
        if cut == 0:
            raise FsError(f"{path}: empty path component")
        last = cut == -1
        size = len(rest) if last else cut
        if not last and inode.file_type == FileType.REGULAR:
            raise FsError(f"{path}: not a directory")
        for entry in iter_dir_entries(disk, inode):
            if name_matches(entry.name, rest, size):
                offset = entry.inode
                inode = disk.read_inode_at(offset)
                break
        else:
            raise FsError(f"{path}: no such file or directory")
        if last:
            break
        rest = rest[size + 1 :]
    return inode, offset


def get_avail_inode(disk: Disk) -> int:
    """Mark the first free inode as used and return its byte offset."""
    if disk.super_block.avail_inode_num == 0:
        raise FsError("no inode available")
    for index, group in enumerate(disk.groups):
        if group.avail_inode_num >= 1:
            break
    else:
        raise FsError("no inode available")

    bitmap = _read_bitmap(disk, group.inode_bitmap)
    limit = min(
        calc_inodes_per_group(disk.super_block.sector_num, disk.sectors_per_block, disk.group_num, index),
        len(bitmap) * 8,
    )
    bit = next((b for b in range(limit) if not bitmap[b >> 3] & (0x80 >> (b & 7))), None)
    if bit is None:
        raise FsError("inode bitmap is full although inodes are reported free")
    bitmap[bit >> 3] |= 0x80 >> (bit & 7)

    disk.super_block.avail_inode_num -= 1
    group.avail_inode_num -= 1
    disk.save_header()
    _write_bitmap(disk, group.inode_bitmap, bitmap)
    return group.inode_table * SECTOR_SIZE + bit * INODE_SIZE


def release_inode(disk: Disk, offset: int) -> None:
    """Mark the inode at byte ``offset`` as free again."""
    index = offset // SECTOR_SIZE // disk.group_size if offset >= 0 else -1
    if not 0 <= index < disk.group_num:
        raise FsError(f"inode offset {offset} lies outside the image")
    group = disk.groups[index]
    bit = (offset - group.inode_table * SECTOR_SIZE) // INODE_SIZE
    if not 0 <= bit < disk.block_size * 8:
        raise FsError(f"offset {offset} is not in an inode table")
    bitmap = _read_bitmap(disk, group.inode_bitmap)
    mask = 0x80 >> (bit & 7)
    if not bitmap[bit >> 3] & mask:
        raise FsError(f"inode at offset {offset} is not allocated")
    bitmap[bit >> 3] ^= mask

    disk.super_block.avail_inode_num += 1
    group.avail_inode_num += 1
    disk.save_header()
    _write_bitmap(disk, group.inode_bitmap, bitmap)


def alloc_inode(
    disk: Disk, parent: Inode, parent_offset: int, name: str, file_type: int
) -> tuple[Inode, int]:
    """Create an empty file called ``name`` in the directory ``parent``.

    Returns the new inode and its byte offset.
    """
    if not name:
        raise FsError("empty file name")
    if disk.super_block.avail_inode_num == 0:
        raise FsError("no inode available")

    target: tuple[int, int, bytearray] | None = None
    for block_index, slot, data, entry in _slots(disk, parent):
        if entry.inode == 0:
            target = (block_index, slot, bytearray(data))
            break
        if name_matches(entry.name, name, len(name)):
            raise FsError(f"{name}: file exists")

    if target is None:
        disk.alloc_block(parent, parent_offset)
        parent.size = parent.block_count * disk.block_size
        target = (parent.block_count - 1, 0, bytearray(disk.block_size))
    block_index, slot, buffer = target

    offset = get_avail_inode(disk)
    start = slot * DIRENTRY_SIZE
    buffer[start : start + DIRENTRY_SIZE] = DirEntry(offset, truncate_name(name, NAME_LENGTH)).pack()
    disk.write_block(parent, block_index, bytes(buffer))
    disk.write_inode_at(parent_offset, parent)

    inode = Inode(file_type=file_type, link_count=1, block_count=0, size=0)
    disk.write_inode_at(offset, inode)
    return inode, offset


def free_inode(
    disk: Disk, parent: Inode, parent_offset: int, name: str, file_type: int
) -> tuple[Inode, int]:
    """Remove ``name`` of the given type from the directory ``parent``.

    The inode and its blocks are released once no link remains.
    Returns the removed inode and its byte offset.
    """
    if not name:
        raise FsError("empty file name")

    for block_index, slot, data, entry in _slots(disk, parent):
        if entry.inode != 0 and name_matches(entry.name, name, len(name)):
            break
    else:
        raise FsError(f"{name}: no such file or directory")

    offset = entry.inode
    inode = disk.read_inode_at(offset)
    if inode.file_type != file_type:
        raise FsError(f"{name}: wrong file type")
    if file_type == FileType.DIRECTORY and next(iter_dir_entries(disk, inode), None) is not None:
        raise FsError(f"{name}: directory not empty")

    inode.link_count -= 1
    if inode.link_count == 0:
        disk.free_blocks(inode, offset)
        release_inode(disk, offset)
    else:
        disk.write_inode_at(offset, inode)

    buffer = bytearray(data)
    start = slot * DIRENTRY_SIZE
    buffer[start : start + 4] = bytes(4)
    disk.write_block(parent, block_index, bytes(buffer))
    return inode, offset


def init_root_dir(disk: Disk) -> int:
    """Create the root directory in the first inode slot; returns its byte offset."""
    if disk.super_block.avail_inode_num == 0:
        raise FsError("No enough inodes or data blocks.")
    group = disk.groups[0]
    disk.super_block.avail_inode_num -= 1
    group.avail_inode_num -= 1
    disk.save_header()

    disk.file.seek(group.inode_bitmap * SECTOR_SIZE)
    disk.file.write(b"\x80")

    offset = group.inode_table * SECTOR_SIZE
    disk.write_inode_at(offset, Inode(file_type=FileType.DIRECTORY, link_count=1))
    return offset


def copy_data(disk: Disk, src: BinaryIO, inode: Inode, inode_offset: int) -> None:
    """Append the whole content of ``src`` to ``inode``, block by block."""
    src.seek(0)
    for index, chunk in enumerate(iter(lambda: src.read(disk.block_size), b"")):
        if index == inode.block_count:
            disk.alloc_block(inode, inode_offset)
        disk.write_block(inode, index, chunk)
        inode.size += len(chunk)
    disk.write_inode_at(inode_offset, inode)