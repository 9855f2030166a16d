# File: varflow/__init__.py
# Location: varflow/varflow/__init__.py

"""
varflow Package.

This package coordinates a variant-calling pipeline (read preparation,
alignment, window-partitioned calling and filtering) on top of a small
dataflow engine that schedules external tools with bounded concurrency.
"""

from .version import __version__
