"""Block-level access to an image: group headers, bitmaps and inode block maps."""

from __future__ import annotations

import struct
from typing import BinaryIO

from genfs.layout import (
    GROUP_DESC_SIZE,
    INODE_SIZE,
    POINTER_NUM,
    SECTOR_SIZE,
    SUPER_BLOCK_SECTORS,
    SUPER_BLOCK_SIZE,
    FsError,
    GroupDesc,
    Inode,
    SuperBlock,
    calc_blocks_per_group,
    calc_group_num,
    calc_group_size,
    calc_inodes_per_group,
    needed_pointer_blocks,
)

_ROOT_POINTERS = (("singly_pointer", 1), ("doubly_pointer", 2), ("triply_pointer", 3))


class Disk:
    """An image file together with its super block and group descriptors.

    Data block offsets are counted in sectors, inode offsets in bytes.
    """

    def __init__(self, file: BinaryIO) -> None:
        self.file = file
        self.super_block = SuperBlock()
        self.groups: list[GroupDesc] = []

    @property
    def block_size(self) -> int:
        return self.super_block.block_size

    @property
    def sectors_per_block(self) -> int:
        return self.block_size // SECTOR_SIZE

    @property
    def group_num(self) -> int:
        return len(self.groups)

    @property
    def group_size(self) -> int:
        """Size in sectors of the first group, the stride between group headers."""
        return calc_group_size(
            self.super_block.sector_num, self.sectors_per_block, self.group_num, 0
        )

    # ------------------------------------------------------------------ raw I/O

    def _read_at(self, position: int, size: int) -> bytes:
        if position < 0:
            raise FsError(f"negative disk position {position}")
        self.file.seek(position)
        return self.file.read(size)

    def _write_at(self, position: int, data: bytes) -> None:
        if position < 0:
            raise FsError(f"negative disk position {position}")
        self.file.seek(position)
        self.file.write(data)

    def _read_sector_block(self, sector: int) -> bytes:
        return self._read_at(sector * SECTOR_SIZE, self.block_size).ljust(self.block_size, b"\x00")

    def _pointer_format(self) -> struct.Struct:
        return struct.Struct(f"<{self.block_size // 4}I")

    def _read_pointers(self, sector: int) -> list[int]:
        return list(self._pointer_format().unpack(self._read_sector_block(sector)))

    def _write_pointers(self, sector: int, pointers: list[int]) -> None:
        self._write_at(sector * SECTOR_SIZE, self._pointer_format().pack(*pointers))

    # ------------------------------------------------------------------ headers

    @classmethod
    def create(cls, file: BinaryIO, sector_num: int, sectors_per_block: int) -> Disk:
        """Zero ``sector_num`` sectors of ``file`` and lay out empty groups on them."""
        group_num = calc_group_num(sector_num, sectors_per_block)
        if group_num == 0:
            raise FsError("No enough sectors.")
        block_bytes = SECTOR_SIZE * sectors_per_block
        desc_blocks = (group_num * GROUP_DESC_SIZE + block_bytes - 1) // block_bytes
        inode_bitmap = SUPER_BLOCK_SECTORS + desc_blocks * sectors_per_block
        block_bitmap = inode_bitmap + sectors_per_block
        inode_table = block_bitmap + sectors_per_block
        group_size = calc_group_size(sector_num, sectors_per_block, group_num, 0)

        groups = []
        for index in range(group_num):
            base = index * group_size
            groups.append(
                GroupDesc(
                    inode_bitmap=base + inode_bitmap,
                    block_bitmap=base + block_bitmap,
                    inode_table=base + inode_table,
                    avail_inode_num=calc_inodes_per_group(sector_num, sectors_per_block, group_num, index),
                    avail_block_num=calc_blocks_per_group(sector_num, sectors_per_block, group_num, index),
                )
            )
        inode_num = sum(group.avail_inode_num for group in groups)
        block_num = sum(group.avail_block_num for group in groups)
        per_group = block_bytes * 8

        disk = cls(file)
        disk.super_block = SuperBlock(
            sector_num=sector_num,
            inode_num=inode_num,
            block_num=block_num,
            avail_inode_num=inode_num,
            avail_block_num=block_num,
            block_size=block_bytes,
            inodes_per_group=per_group,
            blocks_per_group=per_group,
        )
        disk.groups = groups

        file.seek(0)
        file.write(bytes(sector_num * SECTOR_SIZE))
        file.truncate()
        disk.save_header()
        return disk

    def load(self) -> Disk:
        """Read the super block and group descriptors from the head of the image."""
        raw_super = self._read_at(0, SUPER_BLOCK_SIZE)
        super_block = SuperBlock.unpack(raw_super)
        group_num = calc_group_num(super_block.sector_num, super_block.block_size // SECTOR_SIZE)
        if group_num == 0:
            raise FsError("Failed to load groupHeader.")
        raw_groups = self.file.read(group_num * GROUP_DESC_SIZE)
        if len(raw_groups) < group_num * GROUP_DESC_SIZE:
            raise FsError("Failed to load groupHeader.")
        self.super_block = super_block
        self.groups = [
            GroupDesc.unpack(raw_groups[start : start + GROUP_DESC_SIZE])
            for start in range(0, group_num * GROUP_DESC_SIZE, GROUP_DESC_SIZE)
        ]
        return self

    def save_header(self) -> None:
        """Write the super block and descriptor table at the head of every group."""
        header = self.super_block.pack() + b"".join(group.pack() for group in self.groups)
        group_size = self.group_size
        for index in range(self.group_num):
            self._write_at(index * group_size * SECTOR_SIZE, header)

    # ------------------------------------------------------------------ inodes

    def read_inode_at(self, offset: int) -> Inode:
        return Inode.unpack(self._read_at(offset, INODE_SIZE).ljust(INODE_SIZE, b"\x00"))

    def write_inode_at(self, offset: int, inode: Inode) -> None:
        self._write_at(offset, inode.pack())

    # ------------------------------------------------------------------ block map

    def _pointer_path(self, index: int) -> tuple[str, list[int]] | None:
        """Root pointer field and per-level table indices of block ``index``; None if direct."""
        if index < 0:
            raise FsError(f"negative block index {index}")
        if index < POINTER_NUM:
            return None
        per_block = self.block_size // 4
        relative = index - POINTER_NUM
        for attr, depth in _ROOT_POINTERS:
            span = per_block**depth
            if relative < span:
                digits = [relative // per_block**level % per_block for level in reversed(range(depth))]
                return attr, digits
            relative -= span
        raise FsError(f"block index {index} is beyond the largest file")

    def _locate(self, inode: Inode, index: int) -> int:
        path = self._pointer_path(index)
        if path is None:
            return inode.pointer[index]
        attr, digits = path
        sector = getattr(inode, attr)
        for digit in digits:
            sector = self._read_pointers(sector)[digit]
        return sector

    def read_block(self, inode: Inode, index: int) -> bytes:
        """Contents of the ``index``-th block of ``inode``."""
        return self._read_sector_block(self._locate(inode, index))

    def write_block(self, inode: Inode, index: int, data: bytes) -> None:
        """Overwrite the ``index``-th block of ``inode``, padding ``data`` with zeros."""
        if len(data) > self.block_size:
            raise FsError(f"data of {len(data)} bytes exceeds the block size {self.block_size}")
        sector = self._locate(inode, index)
        self._write_at(sector * SECTOR_SIZE, bytes(data).ljust(self.block_size, b"\x00"))

    # ------------------------------------------------------------------ allocation

    def get_avail_block(self) -> int:
        """Mark the first free data block as used and return its sector offset."""
        if self.super_block.avail_block_num == 0:
            raise FsError("no data block available")
        for index, group in enumerate(self.groups):
            if group.avail_block_num >= 1:
                break
        else:
            raise FsError("no data block available")

        spb = self.sectors_per_block
        bitmap = bytearray(self._read_sector_block(group.block_bitmap))
        limit = min(
            calc_blocks_per_group(self.super_block.sector_num, spb, self.group_num, index),
            len(bitmap) * 8,
        )
        bit = next(
            (b for b in range(limit) if not bitmap[b >> 3] & (0x80 >> (b & 7))),
            None,
        )
        if bit is None:
            raise FsError("block bitmap is full although blocks are reported free")
        bitmap[bit >> 3] |= 0x80 >> (bit & 7)

        self.super_block.avail_block_num -= 1
        group.avail_block_num -= 1
        self.save_header()
        self._write_at(group.block_bitmap * SECTOR_SIZE, bytes(bitmap))
        return group.inode_table + INODE_SIZE * 8 * spb + bit * spb

    def release_block(self, offset: int) -> None:
        """Mark the data block at sector ``offset`` as free again."""
        spb = self.sectors_per_block
        index = offset // self.group_size if offset >= 0 else -1
        if not 0 <= index < self.group_num:
            raise FsError(f"block offset {offset} lies outside the image")
        group = self.groups[index]
        bit = (offset - group.inode_table - INODE_SIZE * 8 * spb) // spb
        if not 0 <= bit < self.block_size * 8:
            raise FsError(f"sector {offset} is not a data block")
        bitmap = bytearray(self._read_sector_block(group.block_bitmap))
        mask = 0x80 >> (bit & 7)
        if not bitmap[bit >> 3] & mask:
            raise FsError(f"block at sector {offset} is not allocated")
        bitmap[bit >> 3] ^= mask

        self.super_block.avail_block_num += 1
        group.avail_block_num += 1
        self.save_header()
        self._write_at(group.block_bitmap * SECTOR_SIZE, bytes(bitmap))

    def append_block(self, inode: Inode, inode_offset: int, block_offset: int) -> None:
        """Attach the data block at ``block_offset`` as the next block of ``inode``.

        Pointer blocks that the new position needs are taken from the free blocks.
        """
        count = inode.block_count
        path = self._pointer_path(count)
        if path is None:
            inode.pointer[count] = block_offset
        else:
            attr, digits = path
            depth = len(digits)
            per_block = self.block_size // 4
            fresh = [all(d == 0 for d in digits[level:]) for level in range(depth)]
            new_sectors: dict[int, int] = {}
            for level in reversed(range(depth)):
                if fresh[level]:
                    new_sectors[level] = self.get_avail_block()

            sectors: list[int] = []
            tables: list[list[int]] = []
            dirty: set[int] = set()
            for level in range(depth):
                if fresh[level]:
                    sector = new_sectors[level]
                    table = [0] * per_block
                    dirty.add(level)
                    if level == 0:
                        setattr(inode, attr, sector)
                    else:
                        tables[level - 1][digits[level - 1]] = sector
                        dirty.add(level - 1)
                else:
                    sector = getattr(inode, attr) if level == 0 else tables[level - 1][digits[level - 1]]
                    table = self._read_pointers(sector)
                sectors.append(sector)
                tables.append(table)
            tables[-1][digits[-1]] = block_offset
            dirty.add(depth - 1)
            for level in sorted(dirty, reverse=True):
                self._write_pointers(sectors[level], tables[level])

        inode.block_count += 1
        self.write_inode_at(inode_offset, inode)

    def alloc_block(self, inode: Inode, inode_offset: int) -> int:
        """Grow ``inode`` by one data block and return that block's sector offset.

        Nothing is changed when there are not enough free blocks.
        """
        needed = needed_pointer_blocks(self.block_size, inode.block_count)
        if self.super_block.avail_block_num < needed + 1:
            raise FsError("not enough free blocks")
        block_offset = self.get_avail_block()
        self.append_block(inode, inode_offset, block_offset)
        return block_offset

    def free_last_block(self, inode: Inode, inode_offset: int) -> None:
        """Release the last data block of ``inode`` and any pointer blocks left empty."""
        if inode.block_count <= 0:
            raise FsError("inode has no blocks to free")
        count = inode.block_count - 1
        path = self._pointer_path(count)
        inode.block_count = count
        if path is None:
            self.release_block(inode.pointer[count])
        else:
            attr, digits = path
            depth = len(digits)
            sectors = []
            sector = getattr(inode, attr)
            for digit in digits:
                sectors.append(sector)
                sector = self._read_pointers(sector)[digit]
            self.release_block(sector)
            for level in reversed(range(depth)):
                if all(d == 0 for d in digits[level:]):
                    self.release_block(sectors[level])
        self.write_inode_at(inode_offset, inode)

    def free_blocks(self, inode: Inode, inode_offset: int) -> None:
        """Release every block of ``inode``."""
        while inode.block_count != 0:
            self.free_last_block(inode, inode_offset)