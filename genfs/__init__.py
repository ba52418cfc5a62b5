"""Create, list, read and edit block-group filesystem images."""

__version__ = "0.1.0"