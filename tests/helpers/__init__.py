"""Shared helper utilities for the trend cache test-suite."""

from .data import NOW, build_frame, build_rows
from .fs import ensure_directory, write_settings
from .mocks import FakeHttpResponse, FakeSession, GatedFetcher, StaticFetcher

__all__ = [
    "NOW",
    "build_frame",
    "build_rows",
    "ensure_directory",
    "write_settings",
    "FakeHttpResponse",
    "FakeSession",
    "GatedFetcher",
    "StaticFetcher",
]
