"""Mock implementations used by the pytest suite."""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, List, Optional, Union

import pandas as pd
import requests

from trends.config import SeriesConfig
from trends.core import empty_frame

__all__ = [
    "FakeHttpResponse",
    "FakeSession",
    "GatedFetcher",
    "StaticFetcher",
]


class FakeHttpResponse:
    """Minimal response object for mocked HTTP calls."""

    def __init__(self, payload: Any, status_code: int = 200) -> None:
        self._payload = payload
        self.status_code = status_code
        self.text = ""

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self) -> Any:
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


Reply = Union[FakeHttpResponse, Exception, Callable[[str, Dict[str, Any]], FakeHttpResponse]]


class FakeSession:
    """Records POST calls and answers them from a queue of replies."""

    def __init__(self, *replies: Reply) -> None:
        self.replies: List[Reply] = list(replies)
        self.calls: List[Dict[str, Any]] = []

    def queue(self, *replies: Reply) -> None:
        self.replies.extend(replies)

    def post(self, url: str, json: Optional[Dict[str, Any]] = None, **kwargs: Any) -> FakeHttpResponse:
        self.calls.append({"url": url, "json": json, **kwargs})
        if not self.replies:
            raise requests.ConnectionError("no reply queued")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if callable(reply) and not isinstance(reply, FakeHttpResponse):
            return reply(url, json or {})
        return reply


class StaticFetcher:
    """Fetcher returning prepared frames (or raising prepared errors) in order."""

    def __init__(self, *results: Union[pd.DataFrame, Exception]) -> None:
        self.results: List[Union[pd.DataFrame, Exception]] = list(results)
        self.calls: List[SeriesConfig] = []

    def fetch_frame(self, config: SeriesConfig, start: Any, end: Any, *, now: Any = None) -> pd.DataFrame:
        self.calls.append(config)
        result = self.results.pop(0) if self.results else empty_frame()
        if isinstance(result, Exception):
            raise result
        return result


class GatedFetcher:
    """Fetcher that blocks inside the executor until ``release`` is called."""

    def __init__(self, frame: Optional[pd.DataFrame] = None, timeout: float = 5.0) -> None:
        self.frame = frame if frame is not None else empty_frame()
        self.timeout = timeout
        self.calls = 0
        self.entered = threading.Event()
        self._gate = threading.Event()

    def release(self) -> None:
        self._gate.set()

    def fetch_frame(self, config: SeriesConfig, start: Any, end: Any, *, now: Any = None) -> pd.DataFrame:
        self.calls += 1
        self.entered.set()
        self._gate.wait(self.timeout)
        return self.frame
