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
import threading
from abc import ABC, abstractmethod
from typing import List, Optional

from crivalidate.models import (
    Container,
    ContainerConfig,
    ContainerFilter,
    ContainerStatus,
    ExecSyncResult,
    Image,
    PodSandbox,
    PodSandboxConfig,
    VersionInfo,
)


class RuntimeService(ABC):
    """Runtime lifecycle capabilities consumed by the harness.

    Implementations block the calling thread for the duration of each call and
    raise crivalidate.exceptions errors; they never retry.
    """

    @abstractmethod
    def version(self, api_version: str) -> VersionInfo:
        ...

    @abstractmethod
    def run_pod_sandbox(self, config: PodSandboxConfig) -> str:
        ...

    @abstractmethod
    def stop_pod_sandbox(self, pod_id: str) -> None:
        ...

    @abstractmethod
    def remove_pod_sandbox(self, pod_id: str) -> None:
        ...

    @abstractmethod
    def list_pod_sandbox(self, pod_id: Optional[str] = None) -> List[PodSandbox]:
        ...

    @abstractmethod
    def create_container(self, pod_id: str, config: ContainerConfig, pod_config: PodSandboxConfig) -> str:
        ...

    @abstractmethod
    def start_container(self, container_id: str) -> None:
        ...

    @abstractmethod
    def stop_container(self, container_id: str, timeout: int,
                       cancel: Optional[threading.Event] = None) -> None:
        """Stop a container, giving it timeout seconds before it is killed

        Args:
            container_id: Container to stop
            timeout: Grace period passed to the runtime
            cancel: When set by another thread, the implementation abandons
                the in-flight call as soon as its transport allows it
        """

    @abstractmethod
    def remove_container(self, container_id: str) -> None:
        ...

    @abstractmethod
    def list_containers(self, filter: Optional[ContainerFilter] = None) -> List[Container]:
        ...

    @abstractmethod
    def container_status(self, container_id: str) -> ContainerStatus:
        ...

    @abstractmethod
    def exec_sync(self, container_id: str, cmd: List[str], timeout: float) -> ExecSyncResult:
        ...

    @abstractmethod
    def exec(self, container_id: str, cmd: List[str], tty: bool, stdin: bool) -> str:
        """Request a streaming exec session and return its URL"""

    @abstractmethod
    def attach(self, container_id: str, tty: bool, stdin: bool) -> str:
        """Request a streaming attach session and return its URL"""

    def close(self) -> None:
        pass


class ImageService(ABC):
    """Image management capabilities consumed by the harness"""

    @abstractmethod
    def list_images(self, image: Optional[str] = None) -> List[Image]:
        ...

    @abstractmethod
    def image_status(self, image: str) -> Optional[Image]:
        """Return the image, or None when the runtime does not have it"""

    @abstractmethod
    def pull_image(self, image: str) -> str:
        ...

    @abstractmethod
    def remove_image(self, image: str) -> None:
        ...

    def close(self) -> None:
        pass
