"""On-disk layout of the image: constants, record codecs and group geometry."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum

SECTOR_NUM = 8196
SECTOR_SIZE = 512
SECTORS_PER_BLOCK = 2
POINTER_NUM = 12
NAME_LENGTH = 64

BLOCK_SIZE = SECTOR_SIZE * SECTORS_PER_BLOCK
MAX_GROUP_NUM = SECTOR_NUM // SECTOR_SIZE // SECTORS_PER_BLOCK // 8 // SECTORS_PER_BLOCK + 1

SUPER_BLOCK_SIZE = 1024
GROUP_DESC_SIZE = 32
INODE_BITMAP_SIZE = BLOCK_SIZE
BLOCK_BITMAP_SIZE = BLOCK_SIZE
INODE_SIZE = 128
DIRENTRY_SIZE = 128

# Sectors taken by the super block at the head of every group.
SUPER_BLOCK_SECTORS = SUPER_BLOCK_SIZE // SECTOR_SIZE

_SUPER_BLOCK_FORMAT = struct.Struct("<8i")
_GROUP_DESC_FORMAT = struct.Struct("<5i")
_INODE_FORMAT = struct.Struct(f"<hhii{POINTER_NUM}iiii")
_DIR_ENTRY_FORMAT = struct.Struct(f"<i{NAME_LENGTH}s")

_NAME_ENCODING = "utf-8"
_NAME_ERRORS = "surrogateescape"


class FsError(Exception):
    """Raised when an image operation cannot be carried out."""


class FileType(IntEnum):
    """Kinds of file an inode can describe."""

    UNKNOWN = 0
    REGULAR = 1
    DIRECTORY = 2
    CHARACTER = 3
    BLOCK = 4
    FIFO = 5
    SOCKET = 6
    SYMBOLIC = 7


def _pack(fmt: struct.Struct, size: int, *values) -> bytes:
    try:
        raw = fmt.pack(*values)
    except struct.error as exc:
        raise FsError(f"value out of range: {exc}") from exc
    return raw.ljust(size, b"\x00")


def _unpack(fmt: struct.Struct, data: bytes, what: str) -> tuple:
    if len(data) < fmt.size:
        raise FsError(f"{what} needs {fmt.size} bytes, got {len(data)}")
    return fmt.unpack_from(data)


@dataclass
class SuperBlock:
    """Filesystem-wide counters, repeated at the head of each group."""

    sector_num: int = 0
    inode_num: int = 0
    block_num: int = 0
    avail_inode_num: int = 0
    avail_block_num: int = 0
    block_size: int = 0
    inodes_per_group: int = 0
    blocks_per_group: int = 0

    def pack(self) -> bytes:
        return _pack(
            _SUPER_BLOCK_FORMAT,
            SUPER_BLOCK_SIZE,
            self.sector_num,
            self.inode_num,
            self.block_num,
            self.avail_inode_num,
            self.avail_block_num,
            self.block_size,
            self.inodes_per_group,
            self.blocks_per_group,
        )

    @classmethod
    def unpack(cls, data: bytes) -> SuperBlock:
        return cls(*_unpack(_SUPER_BLOCK_FORMAT, data, "super block"))


@dataclass
class GroupDesc:
    """Location of a group's bitmaps and inode table, in sectors."""

    inode_bitmap: int = 0
    block_bitmap: int = 0
    inode_table: int = 0
    avail_inode_num: int = 0
    avail_block_num: int = 0

    def pack(self) -> bytes:
        return _pack(
            _GROUP_DESC_FORMAT,
            GROUP_DESC_SIZE,
            self.inode_bitmap,
            self.block_bitmap,
            self.inode_table,
            self.avail_inode_num,
            self.avail_block_num,
        )

    @classmethod
    def unpack(cls, data: bytes) -> GroupDesc:
        return cls(*_unpack(_GROUP_DESC_FORMAT, data, "group descriptor"))


@dataclass
class Inode:
    """A file's metadata and its direct and indirect block pointers."""

    file_type: int = FileType.UNKNOWN
    link_count: int = 0
    block_count: int = 0
    size: int = 0
    pointer: list[int] = field(default_factory=lambda: [0] * POINTER_NUM)
    singly_pointer: int = 0
    doubly_pointer: int = 0
    triply_pointer: int = 0

    def pack(self) -> bytes:
        if len(self.pointer) != POINTER_NUM:
            raise FsError(f"an inode holds exactly {POINTER_NUM} direct pointers")
        return _pack(
            _INODE_FORMAT,
            INODE_SIZE,
            int(self.file_type),
            self.link_count,
            self.block_count,
            self.size,
            *self.pointer,
            self.singly_pointer,
            self.doubly_pointer,
            self.triply_pointer,
        )

    @classmethod
    def unpack(cls, data: bytes) -> Inode:
        values = _unpack(_INODE_FORMAT, data, "inode")
        raw_type, link_count, block_count, size = values[:4]
        pointers = list(values[4 : 4 + POINTER_NUM])
        singly, doubly, triply = values[4 + POINTER_NUM :]
        try:
            file_type: int = FileType(raw_type)
        except ValueError:
            file_type = raw_type
        return cls(file_type, link_count, block_count, size, pointers, singly, doubly, triply)


@dataclass
class DirEntry:
    """A name in a directory and the byte offset of its inode; 0 marks a free slot."""

    inode: int = 0
    name: str = ""

    def pack(self) -> bytes:
        encoded = self.name.encode(_NAME_ENCODING, _NAME_ERRORS)[:NAME_LENGTH]
        return _pack(_DIR_ENTRY_FORMAT, DIRENTRY_SIZE, self.inode, encoded)

    @classmethod
    def unpack(cls, data: bytes) -> DirEntry:
        inode, raw_name = _unpack(_DIR_ENTRY_FORMAT, data, "directory entry")
        name = raw_name.split(b"\x00", 1)[0].decode(_NAME_ENCODING, _NAME_ERRORS)
        return cls(inode, name)


def _check_geometry(sector_num: int, sectors_per_block: int) -> None:
    if sectors_per_block <= 0:
        raise FsError("sectors per block must be positive")
    if sector_num < 0:
        raise FsError("sector count must not be negative")


def _group_parts(sector_num: int, sectors_per_block: int, group_num: int) -> tuple[int, int, int]:
    """Header sectors, body sectors and the sectors left for the last group."""
    block_bytes = SECTOR_SIZE * sectors_per_block
    desc_blocks = (group_num * GROUP_DESC_SIZE + block_bytes - 1) // block_bytes
    header = SUPER_BLOCK_SECTORS + (desc_blocks + 1 + 1) * sectors_per_block
    body = INODE_SIZE * 8 * sectors_per_block + block_bytes * 8 * sectors_per_block
    return header, body, sector_num % (header + body)


def calc_group_num(sector_num: int, sectors_per_block: int) -> int:
    """Number of block groups that fit in ``sector_num`` sectors."""
    _check_geometry(sector_num, sectors_per_block)
    desc_blocks = 1
    while True:
        full_group = (
            SUPER_BLOCK_SECTORS
            + desc_blocks * sectors_per_block
            + (1 + 1 + INODE_SIZE * 8) * sectors_per_block
            + SECTOR_SIZE * sectors_per_block * 8 * sectors_per_block
        )
        quotient, remainder = divmod(sector_num, full_group)
        header = SUPER_BLOCK_SECTORS + (desc_blocks + 1 + 1) * sectors_per_block
        capacity = SECTOR_SIZE // GROUP_DESC_SIZE * desc_blocks * sectors_per_block
        fits_header = remainder >= header
        if quotient == 0:
            return 1 if fits_header else 0
        if quotient <= capacity and not fits_header:
            return quotient
        if quotient < capacity and fits_header:
            return quotient + 1
        desc_blocks += 1


def calc_group_size(sector_num: int, sectors_per_block: int, group_num: int, index: int) -> int:
    """Size in sectors of group ``index``; 0 for an index outside the groups."""
    _check_geometry(sector_num, sectors_per_block)
    header, body, remainder = _group_parts(sector_num, sectors_per_block, group_num)
    if index < 0 or index >= group_num:
        return 0
    if index + 1 < group_num or remainder < header:
        return header + body
    return remainder


def calc_inodes_per_group(sector_num: int, sectors_per_block: int, group_num: int, index: int) -> int:
    """Number of inodes in group ``index``; 0 for an index outside the groups."""
    _check_geometry(sector_num, sectors_per_block)
    header, _, remainder = _group_parts(sector_num, sectors_per_block, group_num)
    full = SECTOR_SIZE * sectors_per_block * 8
    if index < 0 or index >= group_num:
        return 0
    if index + 1 < group_num or remainder < header:
        return full
    spare = remainder - header
    if spare >= INODE_SIZE * 8 * sectors_per_block:
        return full
    return spare // sectors_per_block * sectors_per_block * SECTOR_SIZE // INODE_SIZE


def calc_blocks_per_group(sector_num: int, sectors_per_block: int, group_num: int, index: int) -> int:
    """Number of data blocks in group ``index``; 0 for an index outside the groups."""
    _check_geometry(sector_num, sectors_per_block)
    header, _, remainder = _group_parts(sector_num, sectors_per_block, group_num)
    full = SECTOR_SIZE * sectors_per_block * 8
    if index < 0 or index >= group_num:
        return 0
    if index + 1 < group_num or remainder < header:
        return full
    spare = remainder - header
    table = INODE_SIZE * 8 * sectors_per_block
    if spare >= table:
        return (spare - table) // sectors_per_block
    return 0


def needed_pointer_blocks(block_size: int, block_count: int) -> int:
    """Pointer blocks that must be allocated as well when block ``block_count`` is added."""
    if block_size < 4:
        raise FsError("block size too small to hold pointers")
    per_block = block_size // 4
    per_doubly = per_block * per_block
    per_triply = per_doubly * per_block
    bound0 = POINTER_NUM
    bound1 = bound0 + per_block
    bound2 = bound1 + per_doubly
    bound3 = bound2 + per_triply

    if block_count >= bound3:
        raise FsError("file has reached its maximum number of blocks")
    if block_count == bound0:
        return 1
    if block_count == bound1:
        return 2
    if block_count < bound2 and (block_count - bound1) % per_block == 0 and block_count > bound1:
        return 1
    if block_count == bound2:
        return 3
    if block_count > bound2 and (block_count - bound2) % per_doubly == 0:
        return 2
    if block_count > bound2 and (block_count - bound2) % per_block == 0:
        return 1
    return 0