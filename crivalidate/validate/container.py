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
Conformance scenarios for basic container operations.

Each scenario receives a freshly created pod sandbox through its
ScenarioContext and fails by raising AssertionError.
"""
import os
from dataclasses import dataclass
from typing import Callable, Optional

import crivalidate.constants as constants
from crivalidate.framework.lifecycle import LifecycleOrchestrator, container_found
from crivalidate.logs import parse_container_log, verify_log_contents
from crivalidate.models import (
    ContainerConfig,
    ContainerState,
    ExecSession,
    Mount,
    PodSandboxConfig,
    StreamType,
)
from crivalidate.streaming import StreamingBridge
from crivalidate.utils.log import get_logger

logger = get_logger(__name__)

VOLUME_FLAG_FILE = "testVolume.file"


@dataclass
class ScenarioContext:
    orchestrator: LifecycleOrchestrator
    pod_id: str
    pod_config: PodSandboxConfig
    workdir: Optional[str] = None

    @property
    def bridge(self) -> StreamingBridge:
        return StreamingBridge(
            self.orchestrator.runtime,
            self.orchestrator.context.streaming_base_url,
        )


@dataclass
class Scenario:
    name: str
    func: Callable[[ScenarioContext], None]
    needs_log_directory: bool = False
    needs_workdir: bool = False


def _start_and_await_running(ctx: ScenarioContext, container_id: str):
    ctx.orchestrator.start(container_id)
    ctx.orchestrator.await_state(container_id, ContainerState.RUNNING)
    logger.info("Started container", {"container_id": container_id})


def _start_short_lived(ctx: ScenarioContext, container_id: str):
    # the command may finish before RUNNING is observed
    ctx.orchestrator.start(container_id)
    ctx.orchestrator.await_condition(
        container_id,
        lambda s: s.state in (ContainerState.RUNNING, ContainerState.EXITED),
        "started",
    )


def check_create_container(ctx: ScenarioContext):
    orch = ctx.orchestrator
    container_id = orch.create_default_container(ctx.pod_id, ctx.pod_config, "container-for-create-test-")
    orch.await_state(container_id, ContainerState.CREATED)

    containers = orch.list_container_for_id(container_id)
    assert container_found(containers, container_id), "Container should be created"


def check_start_container(ctx: ScenarioContext):
    container_id = ctx.orchestrator.create_default_container(
        ctx.pod_id, ctx.pod_config, "container-for-start-test-")
    _start_and_await_running(ctx, container_id)


def check_stop_container(ctx: ScenarioContext):
    orch = ctx.orchestrator
    container_id = orch.create_default_container(ctx.pod_id, ctx.pod_config, "container-for-stop-test-")
    orch.start(container_id)

    orch.stop(container_id, orch.context.stop_container_timeout)
    logger.info("Stopped container", {"container_id": container_id})
    orch.await_state(container_id, ContainerState.EXITED)


def check_remove_container(ctx: ScenarioContext):
    orch = ctx.orchestrator
    container_id = orch.create_default_container(ctx.pod_id, ctx.pod_config, "container-for-remove-test-")

    orch.remove(container_id)
    containers = orch.list_container_for_id(container_id)
    assert not container_found(containers, container_id), "Container should be removed"


def check_exec_sync(ctx: ScenarioContext):
    orch = ctx.orchestrator
    container_id = orch.create_default_container(ctx.pod_id, ctx.pod_config, "container-for-execSync-test-")
    _start_and_await_running(ctx, container_id)

    session = ExecSession(
        container_id=container_id,
        cmd=list(constants.ECHO_HELLO_CMD),
        timeout=orch.context.exec_sync_timeout,
    )
    result = ctx.bridge.exec_sync(session)
    assert result.exit_code == 0, f"execSync exit code is {result.exit_code}, want 0"
    assert not result.stderr, f"The stderr should be empty, got {result.stderr!r}"
    assert result.stdout.decode("utf-8") == constants.ECHO_HELLO_OUTPUT, (
        f"The stdout output of execSync should be {constants.ECHO_HELLO_OUTPUT!r}, got {result.stdout!r}")


def check_start_container_with_volume(ctx: ScenarioContext):
    orch = ctx.orchestrator
    host_path = os.path.join(ctx.workdir, f"volume-{ctx.pod_id}")
    os.makedirs(host_path)
    flag_file = os.path.join(host_path, VOLUME_FLAG_FILE)
    open(flag_file, "w").close()

    config = ContainerConfig(
        metadata=orch.build_container_metadata(f"container-with-volume-test-{orch.new_uuid()}"),
        image=constants.DEFAULT_CONTAINER_IMAGE,
        command=["sh", "-c", f"test -f {flag_file}"],
        mounts=[Mount(container_path=host_path, host_path=host_path)],
    )
    container_id = orch.create_container(config, ctx.pod_id, ctx.pod_config)
    _start_short_lived(ctx, container_id)

    orch.await_condition(container_id, lambda s: s.exit_code == 0, "exit code 0")


def check_container_log(ctx: ScenarioContext):
    orch = ctx.orchestrator
    name = f"container-with-log-test-{orch.new_uuid()}"
    log_path = f"{name}.log"
    config = ContainerConfig(
        metadata=orch.build_container_metadata(name),
        image=constants.DEFAULT_CONTAINER_IMAGE,
        command=list(constants.LOG_DEFAULT_CMD),
        log_path=log_path,
    )
    container_id = orch.create_container(config, ctx.pod_id, ctx.pod_config)
    _start_short_lived(ctx, container_id)

    records = parse_container_log(ctx.pod_config, log_path)
    verify_log_contents(records, constants.DEFAULT_LOG + "\n", StreamType.STDOUT)


CONTAINER_SCENARIOS = [
    Scenario("runtime should support creating container", check_create_container),
    Scenario("runtime should support starting container", check_start_container),
    Scenario("runtime should support stopping container", check_stop_container),
    Scenario("runtime should support removing container", check_remove_container),
    Scenario("runtime should support execSync", check_exec_sync),
    Scenario("runtime should support starting container with volume",
             check_start_container_with_volume, needs_workdir=True),
    Scenario("runtime should support starting container with log",
             check_container_log, needs_log_directory=True),
]
