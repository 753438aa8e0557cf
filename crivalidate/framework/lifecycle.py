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
import time
from concurrent import futures
from typing import Callable, List, Optional, Tuple

import crivalidate.constants as constants
from crivalidate.clients.base import ImageService, RuntimeService
from crivalidate.config import TestContext
from crivalidate.exceptions import OperationTimeoutError
from crivalidate.framework.client import load_cri_client
from crivalidate.identifiers import UniqueIdGenerator, default_generator
from crivalidate.models import (
    Container,
    ContainerConfig,
    ContainerFilter,
    ContainerMetadata,
    ContainerState,
    ContainerStatus,
    Image,
    PodSandboxConfig,
    PodSandboxMetadata,
    VersionInfo,
)
from crivalidate.utils.log import get_logger
from crivalidate.utils.utils import normalize_image_ref


def container_found(containers: List[Container], container_id: str) -> bool:
    """Whether container_id is among containers"""
    return any(c.id == container_id for c in containers)


class LifecycleOrchestrator:
    """
    Drives pod sandboxes and containers through their lifecycle against a
    runtime, with bounded waits for asynchronous state changes.

    Every method blocks the calling thread; one orchestrator may be shared by
    concurrently running scenarios.
    """

    def __init__(
        self,
        runtime: RuntimeService,
        images: ImageService,
        context: Optional[TestContext] = None,
        generator: Optional[UniqueIdGenerator] = None,
    ):
        self._logger = get_logger(f"{__name__}.LifecycleOrchestrator")
        self.runtime = runtime
        self.images = images
        self.context = context or TestContext()
        self._ids = generator or default_generator()

    @classmethod
    def from_context(cls, context: Optional[TestContext] = None) -> "LifecycleOrchestrator":
        """Orchestrator over the remote services named by the context"""
        context = context or TestContext.from_env()
        runtime, images = load_cri_client(context)
        return cls(runtime, images, context)

    def new_uuid(self) -> str:
        return self._ids.generate()

    def build_pod_sandbox_metadata(self, name: str) -> PodSandboxMetadata:
        return PodSandboxMetadata(
            name=name,
            uid=f"{constants.DEFAULT_UID_PREFIX}-{self.new_uuid()}",
            namespace=f"{constants.DEFAULT_NAMESPACE_PREFIX}-{self.new_uuid()}",
            attempt=constants.DEFAULT_ATTEMPT,
        )

    def build_container_metadata(self, name: str) -> ContainerMetadata:
        return ContainerMetadata(name=name, attempt=constants.DEFAULT_ATTEMPT)

    # Pod sandboxes

    def create_pod_sandbox(self, config: PodSandboxConfig) -> str:
        self._logger.info("Create a PodSandbox", {"name": config.metadata.name})
        pod_id = self.runtime.run_pod_sandbox(config)
        self._logger.info("Created PodSandbox", {"pod_id": pod_id})
        return pod_id

    def run_default_pod_sandbox(self, prefix: str, log_directory: str = "") -> str:
        """Run a sandbox named prefix plus a fresh uuid"""
        name = f"{prefix}{self.new_uuid()}"
        config = PodSandboxConfig(
            metadata=self.build_pod_sandbox_metadata(name),
            log_directory=log_directory,
        )
        return self.create_pod_sandbox(config)

    def create_pod_sandbox_for_container(self, log_directory: str = "") -> Tuple[str, PodSandboxConfig]:
        """Run a sandbox that containers can be created in

        Returns:
            The sandbox id and the config containers must be created with
        """
        name = f"create-PodSandbox-for-container-{self.new_uuid()}"
        config = PodSandboxConfig(
            metadata=self.build_pod_sandbox_metadata(name),
            log_directory=log_directory,
        )
        return self.create_pod_sandbox(config), config

    def teardown_pod_sandbox(self, pod_id: str) -> bool:
        """Stop then remove a sandbox; failures are logged, never raised"""
        ok = True
        try:
            self._logger.info("Stop PodSandbox", {"pod_id": pod_id})
            self.runtime.stop_pod_sandbox(pod_id)
        except Exception as e:
            ok = False
            self._logger.error(f"Failed to stop PodSandbox: {e}", {"pod_id": pod_id})
        try:
            self._logger.info("Remove PodSandbox", {"pod_id": pod_id})
            self.runtime.remove_pod_sandbox(pod_id)
        except Exception as e:
            ok = False
            self._logger.error(f"Failed to remove PodSandbox: {e}", {"pod_id": pod_id})
        return ok

    # Images

    def normalize_image_ref(self, image: str) -> str:
        return normalize_image_ref(image)

    def image_status(self, image: str) -> Optional[Image]:
        return self.images.image_status(normalize_image_ref(image))

    def pull_public_image(self, image: str) -> str:
        ref = normalize_image_ref(image)
        self._logger.info("Pull image", {"image": ref})
        image_id = self.images.pull_image(ref)
        if not image_id:
            self._logger.warning("PullImage returned an empty image ref", {"image": ref})
        return image_id

    def list_images(self, image: Optional[str] = None) -> List[Image]:
        return self.images.list_images(normalize_image_ref(image) if image else None)

    # Containers

    def create_container(self, config: ContainerConfig, pod_id: str, pod_config: PodSandboxConfig) -> str:
        """Create a container, pulling its image first when the runtime lacks it"""
        ref = normalize_image_ref(config.image)
        if self.images.image_status(ref) is None:
            self.pull_public_image(ref)
        self._logger.info("Create container", {"name": config.metadata.name, "pod_id": pod_id})
        container_id = self.runtime.create_container(pod_id, config, pod_config)
        self._logger.info("Created container", {"container_id": container_id})
        return container_id

    def create_default_container(self, pod_id: str, pod_config: PodSandboxConfig, prefix: str) -> str:
        """Create a container running the pause command on the default image"""
        config = ContainerConfig(
            metadata=self.build_container_metadata(f"{prefix}{self.new_uuid()}"),
            image=constants.DEFAULT_CONTAINER_IMAGE,
            command=list(constants.PAUSE_CMD),
        )
        return self.create_container(config, pod_id, pod_config)

    def start(self, container_id: str) -> None:
        self._logger.info("Start container", {"container_id": container_id})
        self.runtime.start_container(container_id)

    def stop(self, container_id: str, timeout: Optional[float] = None) -> None:
        """
        Stop a container within timeout seconds

        The runtime receives the same value as its grace period. When the call
        has not returned by then the in-flight call is signalled to cancel and
        OperationTimeoutError is raised; the runtime may still finish stopping
        the container afterwards.

        Raises:
            OperationTimeoutError: If the call did not complete in time
        """
        if timeout is None:
            timeout = self.context.stop_container_timeout
        self._logger.info("Stop container", {"container_id": container_id, "timeout": timeout})
        cancel = threading.Event()
        future = self._start_stop_call(container_id, int(timeout), cancel)
        done, _ = futures.wait([future], timeout=timeout)
        if not done:
            future.cancel()
            cancel.set()
            self._logger.warning("StopContainer did not return in time",
                                 {"container_id": container_id, "timeout": timeout})
            raise OperationTimeoutError(
                f"Stop container {container_id} did not complete within {timeout}s",
                {"container_id": container_id},
            )
        future.result()

    def _start_stop_call(self, container_id: str, timeout: int, cancel: threading.Event) -> futures.Future:
        # one thread per call so the timer never covers time spent queued
        future = futures.Future()

        def run():
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(self.runtime.stop_container(container_id, timeout, cancel))
            except Exception as e:
                future.set_exception(e)

        threading.Thread(target=run, name=f"cri-stop-{container_id[:12]}", daemon=True).start()
        return future

    def remove(self, container_id: str) -> None:
        self._logger.info("Remove container", {"container_id": container_id})
        self.runtime.remove_container(container_id)

    def stop_and_remove_container(self, container_id: str) -> bool:
        """Stop then remove a container; failures are logged, never raised"""
        ok = True
        try:
            self.stop(container_id)
        except Exception as e:
            ok = False
            self._logger.error(f"Failed to stop container: {e}", {"container_id": container_id})
        try:
            self.remove(container_id)
        except Exception as e:
            ok = False
            self._logger.error(f"Failed to remove container: {e}", {"container_id": container_id})
        return ok

    def list(self, filter: Optional[ContainerFilter] = None) -> List[Container]:
        return self.runtime.list_containers(filter)

    def list_container_for_id(self, container_id: str) -> List[Container]:
        return self.list(ContainerFilter(id=container_id))

    def container_status(self, container_id: str) -> ContainerStatus:
        return self.runtime.container_status(container_id)

    def status(self, container_id: str) -> ContainerState:
        return self.container_status(container_id).state

    def await_condition(
        self,
        container_id: str,
        predicate: Callable[[ContainerStatus], bool],
        description: str,
        poll_interval: Optional[float] = None,
        deadline: Optional[float] = None,
    ) -> ContainerStatus:
        """
        Poll container status until predicate holds

        The status is read at least once even with a zero deadline. Errors from
        the status call are not retried.

        Returns:
            The status that satisfied predicate

        Raises:
            OperationTimeoutError: If deadline seconds pass first
        """
        poll_interval = poll_interval or self.context.poll_interval
        if deadline is None:
            deadline = self.context.state_deadline
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")

        end = time.monotonic() + deadline
        while True:
            status = self.container_status(container_id)
            if predicate(status):
                return status
            remaining = end - time.monotonic()
            if remaining <= 0:
                raise OperationTimeoutError(
                    f"Container {container_id} did not reach {description} within {deadline}s, "
                    f"last state {status.state.value}",
                    {"container_id": container_id, "state": status.state.value},
                )
            time.sleep(min(poll_interval, remaining))

    def await_state(
        self,
        container_id: str,
        want: ContainerState,
        poll_interval: Optional[float] = None,
        deadline: Optional[float] = None,
    ) -> ContainerStatus:
        """Poll until the container reports want"""
        self._logger.debug("Wait for container state", {"container_id": container_id, "want": want.value})
        return self.await_condition(
            container_id, lambda s: s.state == want, want.value, poll_interval, deadline)

    def version(self, api_version: str = constants.DEFAULT_API_VERSION) -> VersionInfo:
        return self.runtime.version(api_version)

    def close(self) -> None:
        self.runtime.close()
        self.images.close()
