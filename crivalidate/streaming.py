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
Exec and attach bridge between local stdio and a runtime streaming endpoint.

The runtime answers Exec and Attach with a URL served by its streaming
server. The bridge resolves that URL, upgrades it to a websocket speaking one
of the Kubernetes channel sub-protocols and relays frames until the remote
side closes the connection.
"""
import contextlib
import json
import shutil
import sys
import threading
from typing import BinaryIO, Optional
from urllib.parse import urlparse, urlunparse

import websocket
from kubernetes.stream.ws_client import (
    ERROR_CHANNEL,
    RESIZE_CHANNEL,
    STDERR_CHANNEL,
    STDIN_CHANNEL,
    STDOUT_CHANNEL,
)

from crivalidate.clients.base import RuntimeService
from crivalidate.exceptions import (
    InvalidLocationError,
    RuntimeCallError,
    UnsupportedProtocolError,
)
from crivalidate.models import ExecSession, ExecSyncResult
from crivalidate.utils.log import get_logger

if sys.platform != "win32":
    import termios
    import tty as _tty

logger = get_logger(__name__)

V5_PROTOCOL = "v5.channel.k8s.io"
V4_PROTOCOL = "v4.channel.k8s.io"

# Offered in order of preference; the server picks one.
SUPPORTED_PROTOCOLS = [
    V5_PROTOCOL,
    V4_PROTOCOL,
    "v3.channel.k8s.io",
    "v2.channel.k8s.io",
    "channel.k8s.io",
]

# v5 close signal: channel 255 carrying the id of the channel being closed
CLOSE_CHANNEL = 255

_STATUS_PROTOCOLS = (V5_PROTOCOL, V4_PROTOCOL)

STDIN_CHUNK_SIZE = 32 * 1024


def resolve_url(url: str, base: str) -> str:
    """
    Turn a streaming URL returned by the runtime into a websocket URL

    Args:
        url: Absolute URL, or a path relative to base
        base: http(s) address of the streaming server

    Returns:
        The ws:// or wss:// form of the resolved URL

    Raises:
        InvalidLocationError: If the result is not an http(s) URL with a host
    """
    if not url:
        raise InvalidLocationError("streaming URL is empty")
    parsed = urlparse(url)
    if not parsed.scheme:
        if not base:
            raise InvalidLocationError(f"relative streaming URL {url!r} with no base address")
        # keep any path prefix of the base
        parsed = urlparse(base.rstrip("/") + "/" + url.lstrip("/"))
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidLocationError(f"invalid streaming URL {url!r}", {"url": url, "base": base})
    scheme = "wss" if parsed.scheme == "https" else "ws"
    return urlunparse(parsed._replace(scheme=scheme))


def exit_code_from_status(payload: bytes, protocol: Optional[str]) -> int:
    """
    Read the remote command's exit code from the error channel

    v4 and newer protocols carry a metav1.Status object. Older ones carry
    plain error text, where any text means failure.
    """
    if protocol not in _STATUS_PROTOCOLS:
        if payload:
            raise RuntimeCallError(f"error executing remote command: {payload.decode('utf-8', 'replace')}")
        return 0
    if not payload:
        return 0
    try:
        status = json.loads(payload)
    except ValueError as e:
        raise RuntimeCallError(f"malformed status on error channel: {payload!r}") from e

    if status.get("status") == "Success":
        return 0
    if status.get("reason") == "NonZeroExitCode":
        for cause in (status.get("details") or {}).get("causes") or []:
            if cause.get("reason") == "ExitCode":
                try:
                    return int(cause.get("message"))
                except (TypeError, ValueError) as e:
                    raise RuntimeCallError(f"invalid exit code {cause.get('message')!r}") from e
        raise RuntimeCallError("non-zero exit code without an ExitCode cause", {"status": status})
    raise RuntimeCallError(
        f"error executing remote command: {status.get('message', '')}",
        status=status.get("reason"),
        details=status.get("message"),
    )


@contextlib.contextmanager
def _raw_terminal(stream, enabled: bool):
    """Put stream's terminal in raw mode for the duration of the block"""
    fd = None
    if enabled and sys.platform != "win32":
        try:
            if stream.isatty():
                fd = stream.fileno()
        except (AttributeError, ValueError, OSError):
            fd = None
    if fd is None:
        yield
        return

    saved = termios.tcgetattr(fd)
    try:
        _tty.setraw(fd)
        yield
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, saved)


class StreamingBridge:
    """
    Runs exec, exec-sync and attach sessions against a runtime

    One bridge may serve several sessions one after another; it is not meant
    to run sessions concurrently on the same stdio.
    """

    def __init__(
        self,
        runtime: RuntimeService,
        base_url: str,
        stdin: Optional[BinaryIO] = None,
        stdout: Optional[BinaryIO] = None,
        stderr: Optional[BinaryIO] = None,
        connect_timeout: float = 30.0,
        sslopt: Optional[dict] = None,
    ):
        self.runtime = runtime
        self.base_url = base_url
        self._stdin = stdin
        self._stdout = stdout
        self._stderr = stderr
        self.connect_timeout = connect_timeout
        self.sslopt = sslopt

    # process stdio is looked up on use so a bridge can be built without a console
    @property
    def stdin(self) -> BinaryIO:
        return self._stdin if self._stdin is not None else sys.stdin.buffer

    @property
    def stdout(self) -> BinaryIO:
        return self._stdout if self._stdout is not None else sys.stdout.buffer

    @property
    def stderr(self) -> BinaryIO:
        return self._stderr if self._stderr is not None else sys.stderr.buffer

    def exec_sync(self, session: ExecSession) -> ExecSyncResult:
        """Run a command to completion within session.timeout seconds"""
        logger.debug("ExecSync", {"container_id": session.container_id, "cmd": session.cmd})
        result = self.runtime.exec_sync(session.container_id, session.cmd, session.timeout)
        logger.debug("ExecSync finished", {"container_id": session.container_id, "exit_code": result.exit_code})
        return result

    def exec(self, session: ExecSession) -> int:
        """Run an interactive command and return its exit code"""
        url = self.runtime.exec(session.container_id, session.cmd, session.tty, session.stdin)
        logger.debug("Exec URL", {"container_id": session.container_id, "url": url})
        session.url = resolve_url(url, self.base_url)
        return self._run(session)

    def attach(self, session: ExecSession) -> int:
        """Attach to the container's main process until it closes the stream"""
        url = self.runtime.attach(session.container_id, session.tty, session.stdin)
        logger.debug("Attach URL", {"container_id": session.container_id, "url": url})
        session.url = resolve_url(url, self.base_url)
        return self._run(session)

    def _run(self, session: ExecSession) -> int:
        ws = self.connect(session)
        try:
            return self.stream(ws, session)
        finally:
            ws.close()

    def connect(self, session: ExecSession) -> websocket.WebSocket:
        """
        Open the websocket for a resolved session and negotiate a sub-protocol

        Raises:
            UnsupportedProtocolError: If the server picked none of SUPPORTED_PROTOCOLS
            RuntimeCallError: If the connection could not be established
        """
        header = [f"Sec-WebSocket-Protocol: {', '.join(SUPPORTED_PROTOCOLS)}"]
        try:
            ws = websocket.create_connection(
                session.url,
                timeout=self.connect_timeout,
                header=header,
                sslopt=self.sslopt,
                enable_multithread=True,
            )
        except websocket.WebSocketBadStatusException as e:
            raise RuntimeCallError(f"streaming upgrade rejected: {e}", {"url": session.url},
                                   status=str(e.status_code)) from e
        except (websocket.WebSocketException, OSError) as e:
            raise RuntimeCallError(f"failed to connect to streaming server: {e}", {"url": session.url}) from e

        protocol = (ws.getheaders() or {}).get("sec-websocket-protocol", "")
        if protocol not in SUPPORTED_PROTOCOLS:
            ws.close()
            raise UnsupportedProtocolError(
                f"streaming server selected unsupported protocol {protocol!r}",
                {"url": session.url, "offered": SUPPORTED_PROTOCOLS},
            )
        session.protocol = protocol
        # connect timeout must not bound the session itself
        ws.settimeout(None)
        logger.debug("Streaming session established", {"url": session.url, "protocol": protocol})
        return ws

    def stream(self, ws: websocket.WebSocket, session: ExecSession) -> int:
        """Relay frames until the remote side closes; returns the exit code"""
        error = bytearray()
        with _raw_terminal(self.stdin, session.tty and session.stdin):
            try:
                if session.tty:
                    self._send_resize(ws)
                if session.stdin:
                    threading.Thread(
                        target=self._pump_stdin, args=(ws, session.protocol),
                        name="cri-stdin", daemon=True,
                    ).start()

                while True:
                    opcode, data = ws.recv_data()
                    if opcode == websocket.ABNF.OPCODE_CLOSE:
                        break
                    if opcode == websocket.ABNF.OPCODE_TEXT:
                        data = data.encode("utf-8") if isinstance(data, str) else data
                    elif opcode != websocket.ABNF.OPCODE_BINARY:
                        continue
                    if len(data) < 1:
                        continue
                    channel, payload = data[0], data[1:]
                    if channel == STDOUT_CHANNEL:
                        self._write(self.stdout, payload)
                    elif channel == STDERR_CHANNEL:
                        # a tty merges stderr into stdout
                        self._write(self.stdout if session.tty else self.stderr, payload)
                    elif channel == ERROR_CHANNEL:
                        error.extend(payload)
            except websocket.WebSocketConnectionClosedException:
                # the server may drop the connection without a close frame
                logger.debug("Streaming connection closed", {"url": session.url})
            except (websocket.WebSocketException, OSError) as e:
                raise RuntimeCallError(f"streaming session failed: {e}", {"url": session.url}) from e

        return exit_code_from_status(bytes(error), session.protocol)

    def _send_resize(self, ws: websocket.WebSocket):
        size = shutil.get_terminal_size()
        message = json.dumps({"Width": size.columns, "Height": size.lines}).encode("utf-8")
        ws.send_binary(bytes([RESIZE_CHANNEL]) + message)

    def _pump_stdin(self, ws: websocket.WebSocket, protocol: Optional[str]):
        read = getattr(self.stdin, "read1", self.stdin.read)
        try:
            while True:
                data = read(STDIN_CHUNK_SIZE)
                if not data:
                    break
                ws.send_binary(bytes([STDIN_CHANNEL]) + data)
            if protocol == V5_PROTOCOL:
                ws.send_binary(bytes([CLOSE_CHANNEL, STDIN_CHANNEL]))
        except (websocket.WebSocketException, OSError) as e:
            # the receive loop reports the failure of the session
            logger.debug(f"stdin pump stopped: {e}")

    @staticmethod
    def _write(stream: BinaryIO, data: bytes):
        if data:
            stream.write(data)
            stream.flush()
