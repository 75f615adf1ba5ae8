"""Run fenced shell and python blocks from markdown documents."""

__version__ = "0.1.0"
