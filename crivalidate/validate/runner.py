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
import os
import shutil
import tempfile
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional

from crivalidate.framework.lifecycle import LifecycleOrchestrator
from crivalidate.models import ContainerFilter
from crivalidate.utils.log import get_logger
from crivalidate.validate.container import CONTAINER_SCENARIOS, Scenario, ScenarioContext

PASSED = "passed"
FAILED = "failed"
ERROR = "error"


@dataclass
class ScenarioResult:
    name: str
    status: str
    message: str = ""
    duration: float = 0.0


@dataclass
class SuiteReport:
    results: List[ScenarioResult] = field(default_factory=list)

    @property
    def passed(self) -> List[ScenarioResult]:
        return [r for r in self.results if r.status == PASSED]

    @property
    def failed(self) -> List[ScenarioResult]:
        return [r for r in self.results if r.status == FAILED]

    @property
    def errors(self) -> List[ScenarioResult]:
        return [r for r in self.results if r.status == ERROR]

    @property
    def ok(self) -> bool:
        return bool(self.results) and len(self.passed) == len(self.results)

    def summary(self) -> str:
        return (f"{len(self.results)} scenarios: {len(self.passed)} passed, "
                f"{len(self.failed)} failed, {len(self.errors)} errors")


class SuiteRunner:
    """
    Runs scenarios concurrently, each in a pod sandbox of its own

    The pod and any temporary directory are torn down after every scenario
    whatever its outcome; teardown problems are logged and never change the
    scenario's result.
    """

    def __init__(self, orchestrator: LifecycleOrchestrator, workers: int = 4):
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self._logger = get_logger(f"{__name__}.SuiteRunner")
        self.orchestrator = orchestrator
        self.workers = workers

    def run(self, scenarios: Optional[List[Scenario]] = None) -> SuiteReport:
        scenarios = CONTAINER_SCENARIOS if scenarios is None else scenarios
        self._logger.info("Run suite", {"scenarios": len(scenarios), "workers": self.workers})
        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="cri-scenario") as pool:
            results = list(pool.map(self.run_scenario, scenarios))
        report = SuiteReport(results=results)
        self._logger.info(report.summary())
        return report

    def run_scenario(self, scenario: Scenario) -> ScenarioResult:
        start = time.monotonic()
        workdir = None
        pod_id = None
        try:
            if scenario.needs_workdir or scenario.needs_log_directory:
                workdir = tempfile.mkdtemp(prefix="crivalidate-")
            log_directory = ""
            if scenario.needs_log_directory:
                log_directory = os.path.join(workdir, "logs")
                os.makedirs(log_directory)

            pod_id, pod_config = self.orchestrator.create_pod_sandbox_for_container(log_directory)
            scenario.func(ScenarioContext(self.orchestrator, pod_id, pod_config, workdir))
            result = ScenarioResult(scenario.name, PASSED)
        except AssertionError as e:
            result = ScenarioResult(scenario.name, FAILED, str(e))
        except Exception as e:
            result = ScenarioResult(scenario.name, ERROR, f"{type(e).__name__}: {e}")
        finally:
            self._teardown(pod_id, workdir)

        result.duration = time.monotonic() - start
        log = self._logger.info if result.status == PASSED else self._logger.error
        log(f"Scenario {result.status}: {scenario.name}",
            {"duration": f"{result.duration:.2f}s", "message": result.message} if result.message
            else {"duration": f"{result.duration:.2f}s"})
        return result

    def _teardown(self, pod_id: Optional[str], workdir: Optional[str]):
        if pod_id is not None:
            try:
                containers = self.orchestrator.list(ContainerFilter(pod_sandbox_id=pod_id))
            except Exception as e:
                self._logger.error(f"Failed to list containers for cleanup: {e}", {"pod_id": pod_id})
                containers = []
            for container in containers:
                self.orchestrator.stop_and_remove_container(container.id)
            self.orchestrator.teardown_pod_sandbox(pod_id)
        if workdir is not None:
            shutil.rmtree(workdir, ignore_errors=True)
