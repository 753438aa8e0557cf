# Copyright The Volcano Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
Reader for container log files written by CRI runtimes.

Two line formats are accepted and each line is classified on its own, since
a rotated file can hold output of runtimes that write different formats:

- Docker JSON lines: {"log": "hi\\n", "stream": "stdout", "time": "<RFC3339Nano>"}
- CRI plaintext lines: <RFC3339Nano> <stream> <message tokens...>

Records keep the order of the lines in the file; timestamps are not checked
for monotonicity.
"""
import json
import os
import re
from datetime import datetime, timedelta, timezone
from typing import Iterator, List, Tuple, Union

from crivalidate.exceptions import MalformedLogError
from crivalidate.models import LogRecord, PodSandboxConfig, StreamType
from crivalidate.utils.log import get_logger

logger = get_logger(__name__)

_RFC3339_NANO = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})[Tt](\d{2}):(\d{2}):(\d{2})"
    r"(?:\.(\d{1,9}))?"
    r"([Zz]|[+-]\d{2}:\d{2})$"
)

_STREAMS = {s.value: s for s in StreamType}


def parse_rfc3339_nano(text: str) -> Tuple[datetime, int]:
    """
    Parse an RFC3339 timestamp with up to nine fractional digits

    Returns:
        An aware datetime truncated to microseconds and the full
        nanosecond part of the second

    Raises:
        ValueError: If text is not a valid timestamp
    """
    match = _RFC3339_NANO.match(text)
    if not match:
        raise ValueError(f"invalid RFC3339 timestamp: {text!r}")
    year, month, day, hour, minute, second = (int(g) for g in match.groups()[:6])
    fraction = (match.group(7) or "").ljust(9, "0")
    nanosecond = int(fraction)
    offset = match.group(8)
    if offset in ("Z", "z"):
        tz = timezone.utc
    else:
        sign = 1 if offset[0] == "+" else -1
        tz = timezone(sign * timedelta(hours=int(offset[1:3]), minutes=int(offset[4:6])))
    ts = datetime(year, month, day, hour, minute, second, nanosecond // 1000, tzinfo=tz)
    return ts, nanosecond


def _stream(tag, line: str) -> StreamType:
    stream = _STREAMS.get(tag) if isinstance(tag, str) else None
    if stream is None:
        raise MalformedLogError(f"unknown stream {tag!r}", line=line)
    return stream


def _timestamp(text, line: str) -> Tuple[datetime, int]:
    if not isinstance(text, str):
        raise MalformedLogError(f"invalid timestamp {text!r}", line=line)
    try:
        return parse_rfc3339_nano(text)
    except ValueError as e:
        raise MalformedLogError(str(e), line=line) from e


def _parse_json(line: str) -> LogRecord:
    try:
        entry = json.loads(line)
    except ValueError as e:
        raise MalformedLogError(f"invalid JSON log line: {e}", line=line) from e
    if not isinstance(entry, dict):
        raise MalformedLogError("JSON log line is not an object", line=line)
    for key in ("log", "stream", "time"):
        if key not in entry:
            raise MalformedLogError(f"JSON log line has no {key!r} field", line=line)
    if not isinstance(entry["log"], str):
        raise MalformedLogError("JSON log field is not a string", line=line)

    ts, nanosecond = _timestamp(entry["time"], line)
    return LogRecord(
        timestamp=ts,
        stream=_stream(entry["stream"], line),
        log=entry["log"].encode("utf-8"),
        nanosecond=nanosecond,
    )


def _parse_plaintext(line: str) -> LogRecord:
    fields = line.split()
    if len(fields) < 3:
        raise MalformedLogError(f"plaintext log line has {len(fields)} fields, want at least 3", line=line)
    ts, nanosecond = _timestamp(fields[0], line)
    return LogRecord(
        timestamp=ts,
        stream=_stream(fields[1], line),
        log=(" ".join(fields[2:]) + "\n").encode("utf-8"),
        nanosecond=nanosecond,
    )


def parse_line(raw: Union[str, bytes]) -> LogRecord:
    """
    Parse one log line in either supported format

    Raises:
        MalformedLogError: If the line fits neither format
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedLogError(f"log line is not valid UTF-8: {e}") from e
    line = raw[:-1] if raw.endswith("\n") else raw
    if line.endswith("\r"):
        line = line[:-1]

    if line.startswith("{"):
        return _parse_json(line)
    return _parse_plaintext(line)


def iter_file(path: str) -> Iterator[LogRecord]:
    """
    Yield the records of a log file in line order

    Each call reopens the file, so iteration can be restarted.

    Raises:
        MalformedLogError: On the first bad line, with its 1-based number
    """
    with open(path, "rb") as f:
        for lineno, raw in enumerate(f, start=1):
            try:
                yield parse_line(raw)
            except MalformedLogError as e:
                raise MalformedLogError(f"{path}:{lineno}: {e.message}", line=e.line, lineno=lineno) from e


def parse_file(path: str) -> List[LogRecord]:
    return list(iter_file(path))


def parse_container_log(pod_config: PodSandboxConfig, log_path: str) -> List[LogRecord]:
    """Parse a container log given relative to the sandbox log directory"""
    path = os.path.join(pod_config.log_directory, log_path)
    logger.info("Parse container log", {"path": path})
    return parse_file(path)


def verify_log_contents(records: List[LogRecord], expected_log: Union[str, bytes],
                        expected_stream: StreamType) -> None:
    """Assert every record carries expected_log on expected_stream"""
    if isinstance(expected_log, str):
        expected_log = expected_log.encode("utf-8")
    assert records, "container log is empty"
    for record in records:
        assert record.stream == expected_stream, (
            f"log stream is {record.stream.value}, want {expected_stream.value}")
        assert record.log == expected_log, f"log content is {record.log!r}, want {expected_log!r}"
