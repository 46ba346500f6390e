"""
Output sinks for wire records: in-memory batch, JSON lines, HTTP ingestion.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, List, Optional, TextIO

import requests

from .errors import SinkError

logger = logging.getLogger(__name__)


def dumps(record: Dict[str, Any]) -> str:
    return json.dumps(record, ensure_ascii=False, separators=(",", ":"))


class Sink:
    def write(self, record: Dict[str, Any]) -> None:
        raise NotImplementedError

    def write_many(self, records: Iterable[Dict[str, Any]]) -> int:
        n = 0
        for record in records:
            self.write(record)
            n += 1
        return n

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class BatchSink(Sink):
    """Collects records for consumption as one JSON array."""

    def __init__(self):
        self.records: List[Dict[str, Any]] = []

    def write(self, record: Dict[str, Any]) -> None:
        self.records.append(record)

    def to_json(self, indent: Optional[int] = None) -> str:
        return json.dumps(self.records, ensure_ascii=False, indent=indent)


class JsonlSink(Sink):
    """One record per line on a text stream."""

    def __init__(self, stream: TextIO, close_stream: bool = False):
        self.stream = stream
        self.close_stream = close_stream
        self.count = 0

    @classmethod
    def open(cls, path: str) -> "JsonlSink":
        return cls(open(path, "w", encoding="utf-8"), close_stream=True)

    def write(self, record: Dict[str, Any]) -> None:
        self.stream.write(dumps(record) + "\n")
        self.count += 1

    def close(self) -> None:
        self.stream.flush()
        if self.close_stream:
            self.stream.close()


class HttpSink(Sink):
    """POSTs JSON arrays of records to an ingestion endpoint in fixed-size batches."""

    def __init__(
        self,
        url: str,
        batch_size: int = 500,
        timeout: float = 10.0,
        headers: Optional[Dict[str, str]] = None,
        session: Optional[requests.Session] = None,
    ):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.url = url
        self.batch_size = batch_size
        self.timeout = timeout
        self.headers = dict(headers or {})
        self.session = session or requests.Session()
        self._buffer: List[Dict[str, Any]] = []
        self.batches_sent = 0
        self.records_sent = 0

    def write(self, record: Dict[str, Any]) -> None:
        self._buffer.append(record)
        if len(self._buffer) >= self.batch_size:
            self.flush()

    def flush(self) -> None:
        if not self._buffer:
            return
        batch = self._buffer
        try:
            response = self.session.post(self.url, json=batch, headers=self.headers, timeout=self.timeout)
        except requests.RequestException as exc:
            raise SinkError(f"POST {self.url} failed: {exc}") from exc
        if not response.ok:
            raise SinkError(f"POST {self.url} returned {response.status_code}: {response.text[:200]}")
        self._buffer = []
        self.batches_sent += 1
        self.records_sent += len(batch)
        logger.debug("sent batch of %d records to %s", len(batch), self.url)

    def close(self) -> None:
        self.flush()
        logger.info("ingestion sink closed: %d records in %d batches", self.records_sent, self.batches_sent)
