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
In-memory runtime and image services for exercising the harness without a
container runtime. State transitions can be delayed to mimic runtimes that
converge asynchronously after a start or stop call returns.
"""
import hashlib
import os
import threading
import time
from collections import defaultdict
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from crivalidate.clients.base import ImageService, RuntimeService
from crivalidate.exceptions import ConfigError, OperationTimeoutError, RuntimeCallError
from crivalidate.identifiers import UniqueIdGenerator
from crivalidate.models import (
    Container,
    ContainerConfig,
    ContainerFilter,
    ContainerState,
    ContainerStatus,
    ExecSyncResult,
    Image,
    PodSandbox,
    PodSandboxConfig,
    PodSandboxState,
    VersionInfo,
)
from crivalidate.utils.utils import normalize_image_ref

ExecHandler = Callable[[List[str]], ExecSyncResult]


def echo_exec_handler(cmd: List[str]) -> ExecSyncResult:
    """Interpret 'echo [-n] args...'; anything else is not found"""
    if cmd and cmd[0] == "echo":
        args = cmd[1:]
        newline = True
        if args and args[0] == "-n":
            newline = False
            args = args[1:]
        out = " ".join(args) + ("\n" if newline else "")
        return ExecSyncResult(stdout=out.encode("utf-8"), stderr=b"", exit_code=0)
    name = cmd[0] if cmd else ""
    return ExecSyncResult(stdout=b"", stderr=f"{name}: not found\n".encode("utf-8"), exit_code=127)


def _now_ns() -> int:
    return time.time_ns()


def _not_found(kind: str, ident: str, method: str) -> RuntimeCallError:
    details = f"{kind} {ident!r} not found"
    return RuntimeCallError(f"{method} failed: {details}", {"method": method},
                            status="NOT_FOUND", details=details)


class _FakeContainer:
    def __init__(self, container: Container, config: ContainerConfig, pod_config: PodSandboxConfig):
        self.container = container
        self.config = config
        self.pod_config = pod_config
        self.started_at = 0
        self.finished_at = 0
        self.exit_code = 0
        self.reason = ""
        # (target state, monotonic time at which it becomes visible)
        self.pending: Optional[Tuple[ContainerState, float]] = None

    def settle(self):
        if self.pending is not None and time.monotonic() >= self.pending[1]:
            self.container.state = self.pending[0]
            if self.container.state == ContainerState.RUNNING:
                self.started_at = _now_ns()
            elif self.container.state == ContainerState.EXITED:
                self.finished_at = _now_ns()
            self.pending = None


class FakeRuntimeService(RuntimeService):
    """Thread-safe in-memory RuntimeService"""

    def __init__(
        self,
        image_service: Optional[ImageService] = None,
        start_delay: float = 0,
        stop_delay: float = 0,
        stop_call_duration: float = 0,
        honor_cancel: bool = True,
        exec_handler: Optional[ExecHandler] = None,
        exec_duration: float = 0,
        streaming_url: Optional[str] = None,
        generator: Optional[UniqueIdGenerator] = None,
    ):
        """
        Args:
            image_service: When given, creating a container requires its image
            start_delay: Seconds before a started container reports RUNNING
            stop_delay: Seconds before a stopped container reports EXITED
            stop_call_duration: Seconds the StopContainer call blocks
            honor_cancel: Whether a blocked stop call returns early on cancel
            exec_handler: Produces ExecSync results, echo_exec_handler by default
            exec_duration: Seconds an ExecSync call takes
            streaming_url: URL returned by exec and attach
            generator: Source of sandbox and container ids
        """
        self.image_service = image_service
        self.start_delay = start_delay
        self.stop_delay = stop_delay
        self.stop_call_duration = stop_call_duration
        self.honor_cancel = honor_cancel
        self.exec_handler = exec_handler or echo_exec_handler
        self.exec_duration = exec_duration
        self.streaming_url = streaming_url
        self.calls: List[Tuple[str, tuple]] = []

        self._ids = generator or UniqueIdGenerator()
        self._lock = threading.RLock()
        self._sandboxes: Dict[str, Tuple[PodSandbox, PodSandboxConfig]] = {}
        self._containers: Dict[str, _FakeContainer] = {}
        self._failures: Dict[str, List[Exception]] = defaultdict(list)

    def fail_next(self, method: str, error: Exception) -> None:
        """Make the next call of method raise error"""
        with self._lock:
            self._failures[method].append(error)

    def _record(self, method: str, *args):
        with self._lock:
            self.calls.append((method, args))
            if self._failures[method]:
                raise self._failures[method].pop(0)

    def _get(self, container_id: str, method: str) -> _FakeContainer:
        entry = self._containers.get(container_id)
        if entry is None:
            raise _not_found("container", container_id, method)
        entry.settle()
        return entry

    def version(self, api_version: str) -> VersionInfo:
        self._record("version", api_version)
        return VersionInfo(
            version="0.1.0",
            runtime_name="fake-runtime",
            runtime_version="0.1.0",
            runtime_api_version=api_version,
        )

    def run_pod_sandbox(self, config: PodSandboxConfig) -> str:
        self._record("run_pod_sandbox", config)
        if config.metadata is None or not config.metadata.name:
            raise ConfigError("RunPodSandbox failed: sandbox metadata name is required")
        pod_id = self._ids.generate()
        with self._lock:
            self._sandboxes[pod_id] = (
                PodSandbox(
                    id=pod_id,
                    metadata=config.metadata,
                    created_at=_now_ns(),
                    labels=dict(config.labels),
                ),
                config,
            )
        return pod_id

    def stop_pod_sandbox(self, pod_id: str) -> None:
        self._record("stop_pod_sandbox", pod_id)
        with self._lock:
            if pod_id not in self._sandboxes:
                raise _not_found("sandbox", pod_id, "StopPodSandbox")
            self._sandboxes[pod_id][0].state = PodSandboxState.NOTREADY
            for entry in self._containers.values():
                if entry.container.pod_sandbox_id == pod_id:
                    entry.pending = None
                    entry.container.state = ContainerState.EXITED
                    entry.finished_at = _now_ns()

    def remove_pod_sandbox(self, pod_id: str) -> None:
        self._record("remove_pod_sandbox", pod_id)
        with self._lock:
            # removing an already removed sandbox is not an error
            self._sandboxes.pop(pod_id, None)
            for container_id in [c for c, e in self._containers.items()
                                 if e.container.pod_sandbox_id == pod_id]:
                del self._containers[container_id]

    def list_pod_sandbox(self, pod_id: Optional[str] = None) -> List[PodSandbox]:
        self._record("list_pod_sandbox", pod_id)
        with self._lock:
            return [replace(s, labels=dict(s.labels))
                    for s, _ in self._sandboxes.values() if not pod_id or s.id == pod_id]

    def create_container(self, pod_id: str, config: ContainerConfig, pod_config: PodSandboxConfig) -> str:
        self._record("create_container", pod_id, config, pod_config)
        if config.metadata is None or not config.metadata.name:
            raise ConfigError("CreateContainer failed: container metadata name is required")
        if not config.image:
            raise ConfigError("CreateContainer failed: container image is required")
        if self.image_service is not None and self.image_service.image_status(
                normalize_image_ref(config.image)) is None:
            raise _not_found("image", config.image, "CreateContainer")
        with self._lock:
            if pod_id not in self._sandboxes:
                raise _not_found("sandbox", pod_id, "CreateContainer")
            container_id = self._ids.generate()
            self._containers[container_id] = _FakeContainer(
                Container(
                    id=container_id,
                    pod_sandbox_id=pod_id,
                    metadata=config.metadata,
                    image=config.image,
                    image_ref=normalize_image_ref(config.image),
                    state=ContainerState.CREATED,
                    created_at=_now_ns(),
                    labels=dict(config.labels),
                ),
                config,
                pod_config,
            )
        return container_id

    def start_container(self, container_id: str) -> None:
        self._record("start_container", container_id)
        with self._lock:
            entry = self._get(container_id, "StartContainer")
            if entry.container.state != ContainerState.CREATED:
                raise RuntimeCallError(
                    f"StartContainer failed: container {container_id!r} is {entry.container.state.name}",
                    {"method": "StartContainer"}, status="FAILED_PRECONDITION")
            entry.pending = (ContainerState.RUNNING, time.monotonic() + self.start_delay)
            entry.settle()
            self._write_log(entry)

    def stop_container(self, container_id: str, timeout: int,
                       cancel: Optional[threading.Event] = None) -> None:
        self._record("stop_container", container_id, timeout)
        with self._lock:
            self._get(container_id, "StopContainer")

        if self.stop_call_duration > 0:
            if cancel is not None and self.honor_cancel:
                if cancel.wait(self.stop_call_duration):
                    raise OperationTimeoutError(f"StopContainer abandoned for container {container_id}")
            else:
                time.sleep(self.stop_call_duration)

        with self._lock:
            entry = self._containers.get(container_id)
            # the container may have been removed while the call was blocked
            if entry is None:
                return
            entry.settle()
            if entry.container.state in (ContainerState.RUNNING, ContainerState.CREATED) or entry.pending:
                entry.pending = (ContainerState.EXITED, time.monotonic() + self.stop_delay)
                entry.settle()

    def remove_container(self, container_id: str) -> None:
        self._record("remove_container", container_id)
        with self._lock:
            if container_id not in self._containers:
                raise _not_found("container", container_id, "RemoveContainer")
            del self._containers[container_id]

    def list_containers(self, filter: Optional[ContainerFilter] = None) -> List[Container]:
        self._record("list_containers", filter)
        with self._lock:
            result = []
            for entry in self._containers.values():
                entry.settle()
                if filter is None or filter.matches(entry.container):
                    result.append(replace(entry.container, labels=dict(entry.container.labels)))
            return result

    def container_status(self, container_id: str) -> ContainerStatus:
        self._record("container_status", container_id)
        with self._lock:
            entry = self._get(container_id, "ContainerStatus")
            c = entry.container
            return ContainerStatus(
                id=c.id,
                state=c.state,
                metadata=c.metadata,
                created_at=c.created_at,
                started_at=entry.started_at,
                finished_at=entry.finished_at,
                exit_code=entry.exit_code,
                image=c.image,
                image_ref=c.image_ref,
                reason=entry.reason,
                mounts=list(entry.config.mounts),
                log_path=entry.config.log_path,
            )

    def exec_sync(self, container_id: str, cmd: List[str], timeout: float) -> ExecSyncResult:
        self._record("exec_sync", container_id, list(cmd), timeout)
        with self._lock:
            entry = self._get(container_id, "ExecSync")
            if entry.container.state != ContainerState.RUNNING:
                raise RuntimeCallError(
                    f"ExecSync failed: container {container_id!r} is not running",
                    {"method": "ExecSync"}, status="FAILED_PRECONDITION")
        if timeout and self.exec_duration > timeout:
            time.sleep(timeout)
            raise OperationTimeoutError(
                f"ExecSync failed: command {cmd} timed out after {timeout}s",
                {"container_id": container_id})
        if self.exec_duration:
            time.sleep(self.exec_duration)
        return self.exec_handler(list(cmd))

    def exec(self, container_id: str, cmd: List[str], tty: bool, stdin: bool) -> str:
        self._record("exec", container_id, list(cmd), tty, stdin)
        with self._lock:
            self._get(container_id, "Exec")
        return self.streaming_url or f"/exec/{self._ids.generate()}"

    def attach(self, container_id: str, tty: bool, stdin: bool) -> str:
        self._record("attach", container_id, tty, stdin)
        with self._lock:
            self._get(container_id, "Attach")
        return self.streaming_url or f"/attach/{self._ids.generate()}"

    def _write_log(self, entry: _FakeContainer):
        """Write what an echo command prints in CRI log format"""
        config = entry.config
        if not config.log_path or not entry.pod_config.log_directory:
            return
        if not config.command or config.command[0] != "echo":
            return
        result = echo_exec_handler(config.command + config.args)
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f") + "000Z"
        path = os.path.join(entry.pod_config.log_directory, config.log_path)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            for line in result.stdout.decode("utf-8").splitlines():
                f.write(f"{timestamp} stdout {line}\n")


class FakeImageService(ImageService):
    """Thread-safe in-memory ImageService keyed by repo tag"""

    def __init__(self, images: Optional[List[str]] = None):
        self.calls: List[Tuple[str, tuple]] = []
        self._lock = threading.Lock()
        self._images: Dict[str, Image] = {}
        self._failures: Dict[str, List[Exception]] = defaultdict(list)
        for image in images or []:
            self._add(image)

    def fail_next(self, method: str, error: Exception) -> None:
        with self._lock:
            self._failures[method].append(error)

    def _record(self, method: str, *args):
        with self._lock:
            self.calls.append((method, args))
            if self._failures[method]:
                raise self._failures[method].pop(0)

    def _add(self, image: str) -> Image:
        digest = hashlib.sha256(image.encode("utf-8")).hexdigest()
        entry = Image(id=f"sha256:{digest}", repo_tags=[image], size=len(image))
        self._images[image] = entry
        return entry

    def list_images(self, image: Optional[str] = None) -> List[Image]:
        self._record("list_images", image)
        with self._lock:
            return [replace(i) for tag, i in self._images.items() if not image or tag == image]

    def image_status(self, image: str) -> Optional[Image]:
        self._record("image_status", image)
        with self._lock:
            found = self._images.get(image)
            return replace(found) if found is not None else None

    def pull_image(self, image: str) -> str:
        self._record("pull_image", image)
        with self._lock:
            return self._add(image).id

    def remove_image(self, image: str) -> None:
        self._record("remove_image", image)
        with self._lock:
            self._images.pop(image, None)
