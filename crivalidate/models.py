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
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional


class ContainerState(Enum):
    """Container lifecycle state as reported by the runtime"""
    CREATED = "CONTAINER_CREATED"
    RUNNING = "CONTAINER_RUNNING"
    EXITED = "CONTAINER_EXITED"
    UNKNOWN = "CONTAINER_UNKNOWN"

    @classmethod
    def from_wire(cls, value: int) -> "ContainerState":
        """Map the runtime.v1 ContainerState enum number"""
        return _CONTAINER_STATE_WIRE.get(value, cls.UNKNOWN)

    def to_wire(self) -> int:
        return _CONTAINER_STATE_WIRE_REVERSE[self]


_CONTAINER_STATE_WIRE = {
    0: ContainerState.CREATED,
    1: ContainerState.RUNNING,
    2: ContainerState.EXITED,
    3: ContainerState.UNKNOWN,
}
_CONTAINER_STATE_WIRE_REVERSE = {v: k for k, v in _CONTAINER_STATE_WIRE.items()}


class PodSandboxState(Enum):
    READY = "SANDBOX_READY"
    NOTREADY = "SANDBOX_NOTREADY"

    @classmethod
    def from_wire(cls, value: int) -> "PodSandboxState":
        return cls.READY if value == 0 else cls.NOTREADY


class StreamType(Enum):
    STDOUT = "stdout"
    STDERR = "stderr"


@dataclass
class PodSandboxMetadata:
    name: str
    uid: str
    namespace: str
    attempt: int = 0


@dataclass
class PodSandboxConfig:
    metadata: PodSandboxMetadata
    hostname: str = ""
    log_directory: str = ""
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    cgroup_parent: str = ""


@dataclass
class ContainerMetadata:
    name: str
    attempt: int = 0


@dataclass
class Mount:
    container_path: str
    host_path: str
    readonly: bool = False


@dataclass
class ContainerConfig:
    metadata: ContainerMetadata
    image: str
    command: List[str] = field(default_factory=list)
    args: List[str] = field(default_factory=list)
    working_dir: str = ""
    envs: Dict[str, str] = field(default_factory=dict)
    mounts: List[Mount] = field(default_factory=list)
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    log_path: str = ""
    stdin: bool = False
    stdin_once: bool = False
    tty: bool = False


@dataclass
class PodSandbox:
    id: str
    metadata: Optional[PodSandboxMetadata] = None
    state: PodSandboxState = PodSandboxState.READY
    created_at: int = 0
    labels: Dict[str, str] = field(default_factory=dict)


@dataclass
class Container:
    id: str
    pod_sandbox_id: str
    metadata: Optional[ContainerMetadata] = None
    image: str = ""
    image_ref: str = ""
    state: ContainerState = ContainerState.UNKNOWN
    created_at: int = 0
    labels: Dict[str, str] = field(default_factory=dict)


@dataclass
class ContainerStatus:
    id: str
    state: ContainerState
    metadata: Optional[ContainerMetadata] = None
    created_at: int = 0
    started_at: int = 0
    finished_at: int = 0
    exit_code: int = 0
    image: str = ""
    image_ref: str = ""
    reason: str = ""
    message: str = ""
    mounts: List[Mount] = field(default_factory=list)
    log_path: str = ""


@dataclass
class ContainerFilter:
    id: str = ""
    state: Optional[ContainerState] = None
    pod_sandbox_id: str = ""
    label_selector: Dict[str, str] = field(default_factory=dict)

    def matches(self, container: Container) -> bool:
        if self.id and container.id != self.id:
            return False
        if self.state is not None and container.state != self.state:
            return False
        if self.pod_sandbox_id and container.pod_sandbox_id != self.pod_sandbox_id:
            return False
        for key, value in self.label_selector.items():
            if container.labels.get(key) != value:
                return False
        return True


@dataclass
class Image:
    id: str
    repo_tags: List[str] = field(default_factory=list)
    repo_digests: List[str] = field(default_factory=list)
    size: int = 0


@dataclass
class VersionInfo:
    version: str
    runtime_name: str
    runtime_version: str
    runtime_api_version: str


@dataclass
class ExecSyncResult:
    stdout: bytes
    stderr: bytes
    exit_code: int


@dataclass
class ExecSession:
    """An exec or attach request.

    url and protocol are filled in by the streaming bridge once the
    endpoint is resolved and a sub-protocol negotiated.
    """
    container_id: str
    cmd: List[str] = field(default_factory=list)
    tty: bool = False
    stdin: bool = False
    timeout: float = 0
    url: Optional[str] = None
    protocol: Optional[str] = None


@dataclass
class LogRecord:
    timestamp: datetime
    stream: StreamType
    log: bytes
    # full sub-second precision; datetime only keeps microseconds
    nanosecond: int = 0
