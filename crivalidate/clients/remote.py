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
from typing import List, Optional, Tuple

import grpc

from crivalidate.clients.base import ImageService, RuntimeService
from crivalidate.exceptions import ConfigError, OperationTimeoutError, RuntimeCallError
from crivalidate.models import (
    Container,
    ContainerConfig,
    ContainerFilter,
    ContainerMetadata,
    ContainerState,
    ContainerStatus,
    ExecSyncResult,
    Image,
    Mount,
    PodSandbox,
    PodSandboxConfig,
    PodSandboxMetadata,
    PodSandboxState,
    VersionInfo,
)
from crivalidate.utils.log import get_logger

PROTO_PATH = "crivalidate/api/runtime/v1/api.proto"

# Extra deadline on top of the runtime-side exec timeout so the runtime can
# report its own timeout before the client gives up.
EXEC_SYNC_GRACE = 2.0  # seconds
CANCEL_POLL_INTERVAL = 0.05  # seconds

_protos_lock = threading.Lock()
_protos = None


def load_protos() -> Tuple[object, object]:
    """Load the runtime.v1 message and service modules once per process"""
    global _protos
    with _protos_lock:
        if _protos is None:
            _protos = grpc.protos_and_services(PROTO_PATH)
        return _protos


def normalize_target(endpoint: str) -> str:
    """
    Accepts either:
      - '/run/containerd/containerd.sock' (plain path)
      - 'unix:///run/containerd/containerd.sock' (already normalized)
      - 'unix://run/containerd/containerd.sock' (missing leading slash)
      - 'tcp://host:port' or 'host:port'
    and returns a valid gRPC target
    """
    if not endpoint:
        raise ValueError("runtime endpoint is empty")

    if endpoint.startswith("unix://"):
        after = endpoint[len("unix://"):]
        if after.startswith("/"):
            return endpoint
        return "unix:///" + after
    if endpoint.startswith("tcp://"):
        return endpoint[len("tcp://"):]
    if endpoint.startswith("/"):
        return "unix://" + endpoint
    return endpoint


def translate_rpc_error(error: grpc.RpcError, method: str, context: Optional[dict] = None) -> Exception:
    """Map a gRPC failure to the harness error taxonomy"""
    code = error.code() if hasattr(error, "code") else None
    details = error.details() if hasattr(error, "details") else str(error)
    context = dict(context or {})
    context["method"] = method
    status = code.name if code is not None else None
    message = f"{method} failed: {details}"

    if code == grpc.StatusCode.INVALID_ARGUMENT:
        return ConfigError(message, context)
    if code == grpc.StatusCode.DEADLINE_EXCEEDED:
        return OperationTimeoutError(message, context)
    return RuntimeCallError(message, context, status=status, details=details)


class _RemoteService:
    def __init__(self, endpoint: str, timeout: float, stub_name: str):
        self.endpoint = normalize_target(endpoint)
        self.timeout = timeout
        self.logger = get_logger(f"{__name__}.{type(self).__name__}")

        self._pb, services = load_protos()
        self._channel = grpc.insecure_channel(self.endpoint)
        self._stub = getattr(services, stub_name)(self._channel)

    def _call(self, method: str, request, timeout: Optional[float] = None, **context):
        rpc = getattr(self._stub, method)
        self.logger.debug(f"{method}Request: {request}")
        try:
            response = rpc(request, timeout=timeout or self.timeout)
        except grpc.RpcError as e:
            raise translate_rpc_error(e, method, context) from e
        self.logger.debug(f"{method}Response: {response}")
        return response

    def close(self) -> None:
        self._channel.close()


class RemoteRuntimeService(_RemoteService, RuntimeService):
    """RuntimeService backed by a CRI runtime.v1 gRPC endpoint"""

    def __init__(self, endpoint: str, timeout: float = 120.0):
        super().__init__(endpoint, timeout, "RuntimeServiceStub")

    def version(self, api_version: str) -> VersionInfo:
        r = self._call("Version", self._pb.VersionRequest(version=api_version))
        return VersionInfo(
            version=r.version,
            runtime_name=r.runtime_name,
            runtime_version=r.runtime_version,
            runtime_api_version=r.runtime_api_version,
        )

    def run_pod_sandbox(self, config: PodSandboxConfig) -> str:
        request = self._pb.RunPodSandboxRequest(config=self._pod_config_pb(config))
        return self._call("RunPodSandbox", request, pod=config.metadata.name).pod_sandbox_id

    def stop_pod_sandbox(self, pod_id: str) -> None:
        self._call("StopPodSandbox", self._pb.StopPodSandboxRequest(pod_sandbox_id=pod_id), pod_id=pod_id)

    def remove_pod_sandbox(self, pod_id: str) -> None:
        self._call("RemovePodSandbox", self._pb.RemovePodSandboxRequest(pod_sandbox_id=pod_id), pod_id=pod_id)

    def list_pod_sandbox(self, pod_id: Optional[str] = None) -> List[PodSandbox]:
        request = self._pb.ListPodSandboxRequest()
        if pod_id:
            request.filter.id = pod_id
        response = self._call("ListPodSandbox", request)
        return [
            PodSandbox(
                id=item.id,
                metadata=PodSandboxMetadata(
                    name=item.metadata.name,
                    uid=item.metadata.uid,
                    namespace=item.metadata.namespace,
                    attempt=item.metadata.attempt,
                ),
                state=PodSandboxState.from_wire(item.state),
                created_at=item.created_at,
                labels=dict(item.labels),
            )
            for item in response.items
        ]

    def create_container(self, pod_id: str, config: ContainerConfig, pod_config: PodSandboxConfig) -> str:
        request = self._pb.CreateContainerRequest(
            pod_sandbox_id=pod_id,
            config=self._container_config_pb(config),
            sandbox_config=self._pod_config_pb(pod_config),
        )
        response = self._call("CreateContainer", request, pod_id=pod_id, container=config.metadata.name)
        return response.container_id

    def start_container(self, container_id: str) -> None:
        self._call("StartContainer", self._pb.StartContainerRequest(container_id=container_id),
                   container_id=container_id)

    def stop_container(self, container_id: str, timeout: int,
                       cancel: Optional[threading.Event] = None) -> None:
        request = self._pb.StopContainerRequest(container_id=container_id, timeout=int(timeout))
        self.logger.debug(f"StopContainerRequest: {request}")
        future = self._stub.StopContainer.future(request, timeout=self.timeout + timeout)
        if cancel is not None:
            while not future.done():
                if cancel.wait(CANCEL_POLL_INTERVAL):
                    future.cancel()
                    raise OperationTimeoutError(
                        f"StopContainer abandoned for container {container_id}",
                        {"container_id": container_id},
                    )
        try:
            future.result()
        except grpc.FutureCancelledError:
            raise OperationTimeoutError(
                f"StopContainer cancelled for container {container_id}",
                {"container_id": container_id},
            ) from None
        except grpc.RpcError as e:
            raise translate_rpc_error(e, "StopContainer", {"container_id": container_id}) from e

    def remove_container(self, container_id: str) -> None:
        self._call("RemoveContainer", self._pb.RemoveContainerRequest(container_id=container_id),
                   container_id=container_id)

    def list_containers(self, filter: Optional[ContainerFilter] = None) -> List[Container]:
        request = self._pb.ListContainersRequest()
        if filter is not None:
            if filter.id:
                request.filter.id = filter.id
            if filter.state is not None:
                request.filter.state.state = filter.state.to_wire()
            if filter.pod_sandbox_id:
                request.filter.pod_sandbox_id = filter.pod_sandbox_id
            request.filter.label_selector.update(filter.label_selector)
        response = self._call("ListContainers", request)
        return [self._container_from_pb(c) for c in response.containers]

    def container_status(self, container_id: str) -> ContainerStatus:
        response = self._call("ContainerStatus", self._pb.ContainerStatusRequest(container_id=container_id),
                              container_id=container_id)
        s = response.status
        return ContainerStatus(
            id=s.id,
            state=ContainerState.from_wire(s.state),
            metadata=ContainerMetadata(name=s.metadata.name, attempt=s.metadata.attempt),
            created_at=s.created_at,
            started_at=s.started_at,
            finished_at=s.finished_at,
            exit_code=s.exit_code,
            image=s.image.image,
            image_ref=s.image_ref,
            reason=s.reason,
            message=s.message,
            mounts=[Mount(m.container_path, m.host_path, m.readonly) for m in s.mounts],
            log_path=s.log_path,
        )

    def exec_sync(self, container_id: str, cmd: List[str], timeout: float) -> ExecSyncResult:
        request = self._pb.ExecSyncRequest(container_id=container_id, cmd=cmd, timeout=int(timeout))
        deadline = timeout + EXEC_SYNC_GRACE if timeout else self.timeout
        r = self._call("ExecSync", request, timeout=deadline, container_id=container_id)
        return ExecSyncResult(stdout=r.stdout, stderr=r.stderr, exit_code=r.exit_code)

    def exec(self, container_id: str, cmd: List[str], tty: bool, stdin: bool) -> str:
        request = self._pb.ExecRequest(
            container_id=container_id,
            cmd=cmd,
            tty=tty,
            stdin=stdin,
            stdout=True,
            # a terminal merges stderr into stdout
            stderr=not tty,
        )
        return self._call("Exec", request, container_id=container_id).url

    def attach(self, container_id: str, tty: bool, stdin: bool) -> str:
        request = self._pb.AttachRequest(
            container_id=container_id,
            stdin=stdin,
            tty=tty,
            stdout=True,
            stderr=not tty,
        )
        return self._call("Attach", request, container_id=container_id).url

    def _pod_config_pb(self, config: PodSandboxConfig):
        pb = self._pb.PodSandboxConfig(
            metadata=self._pb.PodSandboxMetadata(
                name=config.metadata.name,
                uid=config.metadata.uid,
                namespace=config.metadata.namespace,
                attempt=config.metadata.attempt,
            ),
            hostname=config.hostname,
            log_directory=config.log_directory,
            labels=config.labels,
            annotations=config.annotations,
        )
        pb.linux.cgroup_parent = config.cgroup_parent
        pb.linux.security_context.SetInParent()
        return pb

    def _container_config_pb(self, config: ContainerConfig):
        pb = self._pb.ContainerConfig(
            metadata=self._pb.ContainerMetadata(name=config.metadata.name, attempt=config.metadata.attempt),
            image=self._pb.ImageSpec(image=config.image),
            command=config.command,
            args=config.args,
            working_dir=config.working_dir,
            envs=[self._pb.KeyValue(key=k, value=v) for k, v in config.envs.items()],
            mounts=[
                self._pb.Mount(container_path=m.container_path, host_path=m.host_path, readonly=m.readonly)
                for m in config.mounts
            ],
            labels=config.labels,
            annotations=config.annotations,
            log_path=config.log_path,
            stdin=config.stdin,
            stdin_once=config.stdin_once,
            tty=config.tty,
        )
        pb.linux.SetInParent()
        return pb

    @staticmethod
    def _container_from_pb(c) -> Container:
        return Container(
            id=c.id,
            pod_sandbox_id=c.pod_sandbox_id,
            metadata=ContainerMetadata(name=c.metadata.name, attempt=c.metadata.attempt),
            image=c.image.image,
            image_ref=c.image_ref,
            state=ContainerState.from_wire(c.state),
            created_at=c.created_at,
            labels=dict(c.labels),
        )


class RemoteImageService(_RemoteService, ImageService):
    """ImageService backed by a CRI runtime.v1 gRPC endpoint"""

    def __init__(self, endpoint: str, timeout: float = 300.0):
        super().__init__(endpoint, timeout, "ImageServiceStub")

    def list_images(self, image: Optional[str] = None) -> List[Image]:
        request = self._pb.ListImagesRequest()
        if image:
            request.filter.image.image = image
        response = self._call("ListImages", request)
        return [self._image_from_pb(i) for i in response.images]

    def image_status(self, image: str) -> Optional[Image]:
        request = self._pb.ImageStatusRequest(image=self._pb.ImageSpec(image=image))
        response = self._call("ImageStatus", request, image=image)
        if not response.HasField("image") or not response.image.id:
            return None
        return self._image_from_pb(response.image)

    def pull_image(self, image: str) -> str:
        request = self._pb.PullImageRequest(image=self._pb.ImageSpec(image=image))
        response = self._call("PullImage", request, image=image)
        self.logger.info("Pulled image", {"image": image, "image_ref": response.image_ref})
        return response.image_ref

    def remove_image(self, image: str) -> None:
        self._call("RemoveImage", self._pb.RemoveImageRequest(image=self._pb.ImageSpec(image=image)), image=image)

    @staticmethod
    def _image_from_pb(i) -> Image:
        return Image(
            id=i.id,
            repo_tags=list(i.repo_tags),
            repo_digests=list(i.repo_digests),
            size=i.size,
        )
