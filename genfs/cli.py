"""Command that builds the default boot image with its directory tree."""

from __future__ import annotations

import argparse
import os
from functools import partial

from genfs.filesystem import cp, format_image, mkdir, touch
from genfs.layout import SECTOR_NUM, SECTORS_PER_BLOCK, FsError

DEFAULT_DRIVER = "fs.bin"


def build_image(driver, initrd) -> int:
    """Format ``driver`` and fill it with the standard tree; returns the failed step count."""
    driver = os.fspath(driver)
    initrd = os.fspath(initrd)
    steps = [
        ("FORMAT", f"format {driver} -s {SECTOR_NUM} -b {SECTORS_PER_BLOCK}",
         partial(format_image, driver, SECTOR_NUM, SECTORS_PER_BLOCK)),
        ("MKDIR", "mkdir /boot", partial(mkdir, driver, "/boot")),
        ("CP", f"cp {initrd} /boot/initrd", partial(cp, driver, initrd, "/boot/initrd")),
        ("MKDIR", "mkdir /dev", partial(mkdir, driver, "/dev")),
        ("TOUCH", "touch /dev/stdin", partial(touch, driver, "/dev/stdin")),
        ("TOUCH", "touch /dev/stdout", partial(touch, driver, "/dev/stdout")),
        ("MKDIR", "mkdir /usr", partial(mkdir, driver, "/usr")),
        ("MKDIR", "mkdir /data/", partial(mkdir, driver, "/data/")),
        ("TOUCH", "touch /data/test.txt", partial(touch, driver, "/data/test.txt")),
        ("MKDIR", "mkdir /data/dir1", partial(mkdir, driver, "/data/dir1")),
        ("MKDIR", "mkdir /data/dir1/dir11", partial(mkdir, driver, "/data/dir1/dir11")),
        ("TOUCH", "touch /data/dir1/dir11/test.txt",
         partial(touch, driver, "/data/dir1/dir11/test.txt")),
        ("MKDIR", "mkdir /data/dir2", partial(mkdir, driver, "/data/dir2")),
        ("TOUCH", "touch /data/dir2/test.txt", partial(touch, driver, "/data/dir2/test.txt")),
    ]
    failures = 0
    for label, description, action in steps:
        try:
            super_block = action()
        except FsError as exc:
            print(exc)
            failures += 1
            continue
        print(description)
        print(f"{label} success.")
        print(
            f"{super_block.avail_inode_num} inodes and "
            f"{super_block.avail_block_num} data blocks available."
        )
    return failures


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="genfs", description="Build a filesystem image holding an initrd."
    )
    parser.add_argument("initrd", help="file copied into the image as /boot/initrd")
    parser.add_argument(
        "-o", "--output", default=DEFAULT_DRIVER, help="image file to write (default: %(default)s)"
    )
    args = parser.parse_args(argv)
    build_image(args.output, args.initrd)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())