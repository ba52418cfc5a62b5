# genfs

`genfs` creates and edits disk images in a small ext2-like filesystem
format. The image is split into block groups. Each group holds a super
block, a group descriptor table, an inode bitmap, a block bitmap, an inode
table and data blocks. A file reaches its blocks through twelve direct
pointers and through singly, doubly and triply indirect pointers.

## Installing

```
pip install .
```

For the tests:

```
pip install .[test]
pytest
```

## Building a boot image

```
genfs path/to/initrd
```

This writes `fs.bin` to the current directory. To write somewhere else,
use `-o`/`--output`:

```
genfs path/to/initrd -o disk.img
```

The image has 8196 sectors of 512 bytes, with two sectors per block. It
contains:

- `/boot/initrd`, a copy of the file you name
- `/dev/stdin` and `/dev/stdout`, empty files
- `/usr`, an empty directory
- `/data/test.txt`
- `/data/dir1/dir11/test.txt`
- `/data/dir2/test.txt`

After each step that succeeds, the tool prints the step and the number of
free inodes and free data blocks left. When a step fails, it prints the
error and moves on to the next step. The exit status is 0 in both cases.

## Using the library

The operations in `genfs.filesystem` each take the path of the image file
first:

```python
from genfs.filesystem import format_image, mkdir, touch, cp, ls, cat, rm, rmdir

format_image("disk.img", 8196, 2)
mkdir("disk.img", "/docs")
cp("disk.img", "notes.txt", "/docs/notes.txt")
touch("disk.img", "/docs/empty")

inode, children = ls("disk.img", "/docs")
for name, child in children:
    print(name, child.file_type, child.size)

print(cat("disk.img", "/docs/notes.txt"))
rm("disk.img", "/docs/empty")
```

- `format_image`, `mkdir`, `rmdir`, `cp`, `rm` and `touch` return the
  updated `SuperBlock`. Its `avail_inode_num` and `avail_block_num` fields
  give the free inodes and blocks left.
- `ls` returns the inode found at the path together with a list of
  `(name, inode)` pairs for a directory's entries. For a regular file the
  list is empty.
- `cat` returns the file's bytes, cut to its recorded size. Asking it for
  a directory is an error.

Paths inside the image must be absolute and must not contain `//`.
`mkdir` and `rmdir` accept a trailing `/`. `rmdir` removes only empty
directories, and `rm` removes only regular files. An operation that fails
raises `genfs.layout.FsError`.

Lower-level work is available too:

- `genfs.layout` holds the on-disk record types (`SuperBlock`,
  `GroupDesc`, `Inode`, `DirEntry`, each with `pack` and `unpack`), the
  `FileType` enum and the group geometry calculations.
- `genfs.blocks.Disk` loads an image's header, allocates and frees data
  blocks, and reads and writes a file's blocks by index.
- `genfs.inodes` allocates and frees inodes, resolves paths and lists
  directory entries.
- `genfs.paths` splits paths and compares entry names.

## What it does not do

- A file can only be written whole, by copying it in with `cp`. There is
  no writing at an offset, no appending to an existing file and no
  truncating.
- There is no renaming or moving of files, and no way to create links or
  symbolic links.
- Names are stored in at most 64 bytes. Longer names are cut short.
- `genfs` reads and writes image files only. It cannot mount an image.