import pytest

from genfs.filesystem import cat, cp, format_image, ls, mkdir, rm, rmdir, touch
from genfs.layout import SECTOR_SIZE, FileType, FsError


@pytest.fixture
def image(tmp_path):
    path = tmp_path / "fs.bin"
    format_image(path, 4096, 2)
    return path


def names(image, path):
    return [name for name, _ in ls(image, path)[1]]


def test_format_leaves_only_root(tmp_path):
    path = tmp_path / "fs.bin"
    sb = format_image(path, 4096, 2)
    assert sb.avail_inode_num == sb.inode_num - 1
    assert sb.avail_block_num == sb.block_num
    assert sb.block_size == 2 * SECTOR_SIZE
    assert path.stat().st_size == 4096 * SECTOR_SIZE
    root, children = ls(path, "/")
    assert root.file_type == FileType.DIRECTORY
    assert children == []


def test_format_too_few_sectors(tmp_path):
    with pytest.raises(FsError):
        format_image(tmp_path / "fs.bin", 4, 2)


def test_image_without_data_blocks_cannot_hold_files(tmp_path):
    path = tmp_path / "fs.bin"
    sb = format_image(path, 1024, 2)
    assert sb.block_num == 0
    with pytest.raises(FsError):
        touch(path, "/a")


def test_missing_image(tmp_path):
    with pytest.raises(FsError):
        ls(tmp_path / "absent.bin", "/")


def test_mkdir_and_list(image):
    mkdir(image, "/boot")
    mkdir(image, "/data/")
    assert names(image, "/") == ["boot", "data"]
    _, children = ls(image, "/")
    assert all(inode.file_type == FileType.DIRECTORY for _, inode in children)
    assert all(inode.link_count == 1 for _, inode in children)


def test_mkdir_uses_inodes_and_first_directory_block(image):
    before = ls(image, "/")
    first = mkdir(image, "/a")
    inodes_after_first, blocks_after_first = first.avail_inode_num, first.avail_block_num
    second = mkdir(image, "/b")
    assert second.avail_inode_num == inodes_after_first - 1
    assert second.avail_block_num == blocks_after_first
    assert before[1] == []


def test_mkdir_errors(image):
    mkdir(image, "/x")
    with pytest.raises(FsError):
        mkdir(image, "/x")
    with pytest.raises(FsError):
        mkdir(image, "/")
    with pytest.raises(FsError):
        mkdir(image, "relative")
    with pytest.raises(FsError):
        mkdir(image, "/missing/child")


def test_rmdir_restores_inode(image):
    touch(image, "/keep")
    base = ls(image, "/")
    sb_before = mkdir(image, "/tmp").avail_inode_num
    sb = rmdir(image, "/tmp/")
    assert sb.avail_inode_num == sb_before + 1
    assert names(image, "/") == [name for name, _ in base[1]]


def test_rmdir_refuses_non_empty_and_files(image):
    mkdir(image, "/d")
    touch(image, "/d/f")
    with pytest.raises(FsError):
        rmdir(image, "/d")
    with pytest.raises(FsError):
        rmdir(image, "/d/f")
    assert names(image, "/d") == ["f"]


def test_cp_round_trip(image, tmp_path):
    content = b"hello image\n" * 250
    src = tmp_path / "src.txt"
    src.write_bytes(content)
    cp(image, src, "/file")
    assert cat(image, "/file") == content
    inode, children = ls(image, "/file")
    assert inode.file_type == FileType.REGULAR
    assert inode.size == len(content)
    assert children == []


def test_cp_beyond_direct_pointers_and_rm(image, tmp_path):
    content = bytes(range(256)) * 80
    src = tmp_path / "big.bin"
    src.write_bytes(content)
    touch(image, "/keep")
    start = ls(image, "/")[0]
    sb_start = touch(image, "/other")
    cp(image, src, "/big")
    inode, _ = ls(image, "/big")
    assert inode.block_count * 1024 == len(content)
    assert cat(image, "/big") == content
    sb = rm(image, "/big")
    assert sb.avail_block_num == sb_start.avail_block_num
    assert sb.avail_inode_num == sb_start.avail_inode_num
    assert names(image, "/") == ["keep", "other"]
    assert start.file_type == FileType.DIRECTORY


def test_cp_errors(image, tmp_path):
    src = tmp_path / "src.txt"
    src.write_bytes(b"data")
    mkdir(image, "/dir")
    with pytest.raises(FsError):
        cp(image, tmp_path / "absent.txt", "/dir/f")
    with pytest.raises(FsError):
        cp(image, src, "/dir/")
    with pytest.raises(FsError):
        cp(image, src, "nodir")
    assert names(image, "/dir") == []


def test_rm_errors(image):
    mkdir(image, "/d")
    with pytest.raises(FsError):
        rm(image, "/nothing")
    with pytest.raises(FsError):
        rm(image, "/d")
    assert names(image, "/") == ["d"]


def test_touch_creates_empty_file(image):
    touch(image, "/empty")
    inode, _ = ls(image, "/empty")
    assert (inode.size, inode.block_count) == (0, 0)
    assert cat(image, "/empty") == b""


def test_cat_directory_fails(image):
    mkdir(image, "/d")
    with pytest.raises(FsError):
        cat(image, "/d")


def test_nested_paths(image):
    mkdir(image, "/a")
    mkdir(image, "/a/b")
    touch(image, "/a/b/f")
    assert names(image, "/a/b") == ["f"]
    assert names(image, "/a/b/") == ["f"]
    with pytest.raises(FsError):
        ls(image, "/a/b/f/x")
    with pytest.raises(FsError):
        ls(image, "/a//b")
    with pytest.raises(FsError):
        touch(image, "/a/b/f/g")


def test_directory_grows_past_one_block(image):
    mkdir(image, "/many")
    created = [f"f{i}" for i in range(9)]
    for name in created:
        touch(image, f"/many/{name}")
    inode, children = ls(image, "/many")
    assert [name for name, _ in children] == created
    assert inode.block_count == 2