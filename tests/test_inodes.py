import io

import pytest

from genfs.blocks import Disk
from genfs.inodes import (
    alloc_inode,
    copy_data,
    dir_entry,
    free_inode,
    get_avail_inode,
    init_root_dir,
    iter_dir_entries,
    release_inode,
    resolve,
)
from genfs.layout import DIRENTRY_SIZE, INODE_SIZE, SECTOR_SIZE, FileType, FsError


@pytest.fixture
def disk():
    d = Disk.create(io.BytesIO(), 4096, 2)
    init_root_dir(d)
    return d


def _mk(disk, parent_path, name, file_type):
    parent, parent_offset = resolve(disk, parent_path)
    return alloc_inode(disk, parent, parent_offset, name, file_type)


def _rm(disk, parent_path, name, file_type):
    parent, parent_offset = resolve(disk, parent_path)
    return free_inode(disk, parent, parent_offset, name, file_type)


def _content(disk, inode):
    return b"".join(disk.read_block(inode, i) for i in range(inode.block_count))[: inode.size]


def test_root_dir_is_first_inode(disk):
    root, offset = resolve(disk, "/")
    assert root.file_type == FileType.DIRECTORY
    assert root.link_count == 1
    assert root.block_count == 0
    assert offset == disk.groups[0].inode_table * SECTOR_SIZE
    assert disk.super_block.avail_inode_num == disk.super_block.inode_num - 1


def test_get_avail_inode_after_root(disk):
    first = get_avail_inode(disk)
    second = get_avail_inode(disk)
    base = disk.groups[0].inode_table * SECTOR_SIZE
    assert first == base + INODE_SIZE
    assert second == first + INODE_SIZE


def test_release_inode_roundtrip(disk):
    before = disk.super_block.avail_inode_num
    offset = get_avail_inode(disk)
    release_inode(disk, offset)
    assert disk.super_block.avail_inode_num == before
    assert get_avail_inode(disk) == offset
    release_inode(disk, offset)
    with pytest.raises(FsError):
        release_inode(disk, offset)


@pytest.mark.parametrize("path", ["", "abc", "//", "/missing", "/a//b"])
def test_resolve_errors(disk, path):
    with pytest.raises(FsError):
        resolve(disk, path)


def test_alloc_and_resolve(disk):
    inode, offset = _mk(disk, "/", "boot", FileType.DIRECTORY)
    found, found_offset = resolve(disk, "/boot")
    assert found_offset == offset
    assert found == inode
    assert resolve(disk, "/boot/")[1] == offset
    root, _ = resolve(disk, "/")
    assert root.block_count == 1
    assert root.size == disk.block_size
    assert dir_entry(disk, root, 0).name == "boot"


def test_nested_paths(disk):
    _mk(disk, "/", "data", FileType.DIRECTORY)
    _mk(disk, "/data/", "dir1", FileType.DIRECTORY)
    _, offset = _mk(disk, "/data/dir1/", "test.txt", FileType.REGULAR)
    inode, found = resolve(disk, "/data/dir1/test.txt")
    assert found == offset
    assert inode.file_type == FileType.REGULAR


def test_path_through_regular_file_fails(disk):
    _mk(disk, "/", "f", FileType.REGULAR)
    with pytest.raises(FsError):
        resolve(disk, "/f/x/y")


def test_duplicate_name_rejected(disk):
    _mk(disk, "/", "abc", FileType.REGULAR)
    with pytest.raises(FsError):
        _mk(disk, "/", "abc", FileType.DIRECTORY)
    # names are compared over the length of the new name only
    with pytest.raises(FsError):
        _mk(disk, "/", "ab", FileType.REGULAR)


def test_empty_name_rejected(disk):
    with pytest.raises(FsError):
        _mk(disk, "/", "", FileType.REGULAR)


def test_entries_in_order_and_new_block(disk):
    per_block = disk.block_size // DIRENTRY_SIZE
    names = [f"n{i}" for i in range(per_block + 1)]
    for name in names:
        _mk(disk, "/", name, FileType.REGULAR)
    root, _ = resolve(disk, "/")
    assert root.block_count == 2
    assert [e.name for e in iter_dir_entries(disk, root)] == names
    assert dir_entry(disk, root, per_block).name == names[-1]
    with pytest.raises(FsError):
        dir_entry(disk, root, len(names))


def test_free_inode_restores_counts(disk):
    _mk(disk, "/", "keep", FileType.DIRECTORY)
    inodes = disk.super_block.avail_inode_num
    blocks = disk.super_block.avail_block_num
    _mk(disk, "/", "tmp", FileType.REGULAR)
    assert disk.super_block.avail_inode_num == inodes - 1
    _, offset = _rm(disk, "/", "tmp", FileType.REGULAR)
    assert disk.super_block.avail_inode_num == inodes
    assert disk.super_block.avail_block_num == blocks
    root, _ = resolve(disk, "/")
    assert [e.name for e in iter_dir_entries(disk, root)] == ["keep"]
    with pytest.raises(FsError):
        resolve(disk, "/tmp")
    assert get_avail_inode(disk) == offset


def test_free_inode_errors(disk):
    _mk(disk, "/", "d", FileType.DIRECTORY)
    _mk(disk, "/d/", "f", FileType.REGULAR)
    with pytest.raises(FsError):
        _rm(disk, "/", "d", FileType.DIRECTORY)
    with pytest.raises(FsError):
        _rm(disk, "/", "d", FileType.REGULAR)
    with pytest.raises(FsError):
        _rm(disk, "/", "nothing", FileType.REGULAR)
    with pytest.raises(FsError):
        _rm(disk, "/", "", FileType.REGULAR)
    _rm(disk, "/d/", "f", FileType.REGULAR)
    _rm(disk, "/", "d", FileType.DIRECTORY)
    root, _ = resolve(disk, "/")
    assert list(iter_dir_entries(disk, root)) == []


def test_copy_data_small(disk):
    inode, offset = _mk(disk, "/", "f", FileType.REGULAR)
    data = bytes(range(256)) * 11 + b"tail"
    copy_data(disk, io.BytesIO(data), inode, offset)
    stored, _ = resolve(disk, "/f")
    assert stored.size == len(data)
    assert stored.block_count == -(-len(data) // disk.block_size)
    assert _content(disk, stored) == data


def test_copy_data_indirect_and_free(disk):
    inode, offset = _mk(disk, "/", "big", FileType.REGULAR)
    blocks_before = disk.super_block.avail_block_num
    data = b"".join(bytes([i % 251]) * disk.block_size for i in range(20)) + b"xyz"
    copy_data(disk, io.BytesIO(data), inode, offset)
    stored, _ = resolve(disk, "/big")
    assert stored.block_count == 21
    assert _content(disk, stored) == data
    # 21 data blocks plus one singly-indirect pointer block
    assert disk.super_block.avail_block_num == blocks_before - 22
    _rm(disk, "/", "big", FileType.REGULAR)
    assert disk.super_block.avail_block_num == blocks_before


def test_state_survives_reload(disk):
    _, offset = _mk(disk, "/", "dev", FileType.DIRECTORY)
    _mk(disk, "/dev/", "stdin", FileType.REGULAR)
    reloaded = Disk(disk.file).load()
    assert reloaded.super_block == disk.super_block
    assert reloaded.groups == disk.groups
    assert resolve(reloaded, "/dev")[1] == offset
    assert resolve(reloaded, "/dev/stdin")[0].file_type == FileType.REGULAR