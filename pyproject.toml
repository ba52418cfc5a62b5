[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "genfs"
version = "0.1.0"
description = "Build and edit small ext2-style block-group filesystem images"
requires-python = ">=3.10"
dependencies = []
keywords = ["filesystem", "disk image", "inode", "ext2", "block group"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
genfs = "genfs.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["genfs"]

[tool.pytest.ini_options]
addopts = "-ra"
