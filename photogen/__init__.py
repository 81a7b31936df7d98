"""Photogrammetry Generator.

A command-line wrapper that hands a folder of photographs to a reconstruction
engine, watches its progress events and writes the resulting mesh to disk.
"""

from __future__ import annotations

__version__ = "1.0.0"
