from __future__ import annotations

import json
import re
import sys
import threading
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pytest
import requests

_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from gribslicer.assemble import ArrayTransform
from gribslicer.config import Config, RunConfig
from gribslicer.exceptions import MergeError


RANGE_RE = re.compile(r"^bytes=(\d+)-(\d+)$")


class FakeResponse:
    def __init__(self, status_code: int = 200, body: bytes = b"", headers: Optional[dict] = None):
        self.status_code = status_code
        self._body = body
        self.headers = headers or {"Content-Length": str(len(body))}
        self.closed = False

    @property
    def text(self) -> str:
        return self._body.decode()

    def iter_content(self, chunk_size: int = 1):
        for start in range(0, len(self._body), chunk_size):
            yield self._body[start:start + chunk_size]

    def close(self) -> None:
        self.closed = True


class FakeHTTP:
    """requests-compatible stand-in serving index text and GRIB blobs."""

    def __init__(self):
        self.resources: Dict[str, bytes] = {}
        self.errors: Dict[str, Exception] = {}
        self.truncate: Dict[str, int] = {}
        self.ignore_range: set = set()
        self.calls: List[Tuple[str, dict]] = []
        self._lock = threading.Lock()

    def get(self, url, headers=None, stream=False, timeout=None, allow_redirects=True):
        headers = dict(headers or {})
        with self._lock:
            self.calls.append((url, headers))
        if url in self.errors:
            raise self.errors[url]
        if url not in self.resources:
            return FakeResponse(404, b"not found")
        body = self.resources[url]
        range_header = headers.get("Range")
        if range_header and url not in self.ignore_range:
            match = RANGE_RE.match(range_header)
            start, end = int(match.group(1)), int(match.group(2))
            part = body[start:end + 1]
            declared = len(part)
            if url in self.truncate:
                part = part[:self.truncate[url]]
            return FakeResponse(206, part, {"Content-Length": str(declared)})
        return FakeResponse(200, body)

    def urls_called(self, suffix: str) -> List[str]:
        return [url for url, _ in self.calls if url.endswith(suffix)]


def slice_bytes(variable: str, member: Optional[int], lead_time: int, length: int) -> bytes:
    token = f"{variable}:{member if member is not None else 'cf'}:{lead_time};".encode()
    return (token * (length // len(token) + 1))[:length]


def publish_run(
    http: FakeHTTP,
    run: RunConfig,
    variables: Sequence[str] = ("tp",),
    members: Sequence[Optional[int]] = (None, 1, 2),
    lead_times: Optional[Sequence[int]] = None,
    length: int = 64,
) -> None:
    """Register index + blob resources for each lead time of ``run``."""
    from gribslicer.data.index import grib_url, index_url

    for lead_time in (lead_times if lead_times is not None else run.lead_times):
        blob = b""
        lines = []
        for member in members:
            for variable in variables:
                record = {
                    "domain": "g",
                    "date": run.date,
                    "time": f"{run.cycle:02d}00",
                    "step": str(lead_time),
                    "param": variable,
                    "_offset": len(blob),
                    "_length": length,
                }
                if member is not None:
                    record["number"] = str(member)
                lines.append(json.dumps(record))
                blob += slice_bytes(variable, member, lead_time, length)
        http.resources[index_url(run, lead_time)] = ("\n".join(lines) + "\n").encode()
        http.resources[grib_url(run, lead_time)] = blob


class FakeTransform(ArrayTransform):
    """Byte-level transform that records the order of its inputs."""

    def __init__(self):
        self.merges: Dict[Tuple[str, str], List[str]] = {}
        self.combines: Dict[str, List[str]] = {}
        self.crops: List[str] = []
        self.fail_merge: set = set()
        self.fail_crop = False
        self._lock = threading.Lock()

    def merge_time(self, inputs, output):
        variable = output.name.split(".")[1]
        if variable in self.fail_merge:
            raise MergeError(f"cannot merge {variable}")
        with self._lock:
            self.merges[(output.parent.name, variable)] = [Path(p).name for p in inputs]
        output.write_bytes(b"".join(b"<" + Path(p).read_bytes() + b">" for p in inputs))

    def combine(self, inputs, output):
        with self._lock:
            self.combines[output.name] = [Path(p).name for p in inputs]
        output.write_bytes(b"|".join(Path(p).read_bytes() for p in inputs))

    def crop(self, source, output, bbox):
        if self.fail_crop:
            raise MergeError("crop failed")
        with self._lock:
            self.crops.append(output.name)
        output.write_bytes(f"CROP{tuple(bbox)}".encode() + Path(source).read_bytes())


@pytest.fixture
def fake_http() -> FakeHTTP:
    return FakeHTTP()


@pytest.fixture
def fake_transform() -> FakeTransform:
    return FakeTransform()


@pytest.fixture
def make_run(tmp_path: Path):
    def _make(
        variables=("tp",),
        product: str = "ens",
        member: Optional[int] = None,
        **settings,
    ) -> RunConfig:
        settings.setdefault("data_dir", tmp_path / "data")
        settings.setdefault("workers", 4)
        settings.setdefault("max_retries", 2)
        settings.setdefault("retry_backoff", 0.0)
        settings.setdefault("timeout", 5.0)
        settings.setdefault("show_progress", False)
        return RunConfig.create(
            date="20251012",
            cycle="00z",
            variables=variables,
            product=product,
            member=member,
            config=Config(**settings),
        )

    return _make


@pytest.fixture
def connection_error() -> Exception:
    return requests.ConnectionError("connection reset")
