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
import unittest

from crivalidate.clients.fake import FakeImageService, FakeRuntimeService
from crivalidate.config import TestContext
from crivalidate.exceptions import RuntimeCallError
from crivalidate.framework.lifecycle import LifecycleOrchestrator
from crivalidate.models import ExecSyncResult
from crivalidate.validate.container import CONTAINER_SCENARIOS, Scenario, check_exec_sync
from crivalidate.validate.runner import ERROR, FAILED, PASSED, ScenarioResult, SuiteReport, SuiteRunner


class _RunnerTestCase(unittest.TestCase):

    def setUp(self):
        self.images = FakeImageService()
        self.runtime = FakeRuntimeService(image_service=self.images)
        context = TestContext(poll_interval=0.01, state_deadline=1, stop_container_timeout=2)
        self.orch = LifecycleOrchestrator(self.runtime, self.images, context)
        self.addCleanup(self.orch.close)
        self.runner = SuiteRunner(self.orch, workers=4)


class TestContainerSuite(_RunnerTestCase):

    def test_all_container_scenarios_pass(self):
        report = self.runner.run()

        self.assertEqual(len(report.results), len(CONTAINER_SCENARIOS))
        self.assertTrue(report.ok, [(r.name, r.message) for r in report.results if r.status != PASSED])
        self.assertEqual(report.summary(), f"{len(CONTAINER_SCENARIOS)} scenarios: "
                                           f"{len(CONTAINER_SCENARIOS)} passed, 0 failed, 0 errors")
        # every scenario cleaned up its pod and containers
        self.assertEqual(self.runtime.list_pod_sandbox(), [])
        self.assertEqual(self.runtime.list_containers(), [])

    def test_exec_sync_scenario_detects_wrong_output(self):
        self.runtime.exec_handler = lambda cmd: ExecSyncResult(stdout=b"hello\n", stderr=b"", exit_code=0)
        result = self.runner.run_scenario(Scenario("execSync", check_exec_sync))
        self.assertEqual(result.status, FAILED)
        self.assertIn("stdout", result.message)

    def test_slow_runtime_is_an_error(self):
        self.runtime.start_delay = 5
        report = self.runner.run([s for s in CONTAINER_SCENARIOS if s.func.__name__ == "check_start_container"])
        self.assertEqual(report.results[0].status, ERROR)
        self.assertIn("OperationTimeoutError", report.results[0].message)


class TestSuiteRunner(_RunnerTestCase):

    def test_failed_scenario_still_tears_down(self):
        def check(ctx):
            self.orch.create_default_container(ctx.pod_id, ctx.pod_config, "c-")
            assert False, "expected failure"

        result = self.runner.run_scenario(Scenario("failing", check))

        self.assertEqual(result.status, FAILED)
        self.assertIn("expected failure", result.message)
        self.assertGreaterEqual(result.duration, 0)
        self.assertEqual(self.runtime.list_pod_sandbox(), [])
        self.assertEqual(self.runtime.list_containers(), [])

    def test_unexpected_exception_is_error(self):
        def check(ctx):
            raise RuntimeCallError("runtime unavailable")

        result = self.runner.run_scenario(Scenario("broken", check))
        self.assertEqual(result.status, ERROR)
        self.assertIn("runtime unavailable", result.message)

    def test_cleanup_error_does_not_mask_result(self):
        self.runtime.fail_next("stop_pod_sandbox", RuntimeCallError("stop failed"))
        result = self.runner.run_scenario(Scenario("ok", lambda ctx: None))
        self.assertEqual(result.status, PASSED)

    def test_pod_creation_failure_is_error(self):
        self.runtime.fail_next("run_pod_sandbox", RuntimeCallError("no sandbox"))
        result = self.runner.run_scenario(Scenario("ok", lambda ctx: None))
        self.assertEqual(result.status, ERROR)

    def test_log_directory_created_and_removed(self):
        seen = {}

        def check(ctx):
            seen["workdir"] = ctx.workdir
            seen["log_directory"] = ctx.pod_config.log_directory
            assert os.path.isdir(ctx.pod_config.log_directory)

        result = self.runner.run_scenario(Scenario("logs", check, needs_log_directory=True))

        self.assertEqual(result.status, PASSED)
        self.assertEqual(seen["log_directory"], os.path.join(seen["workdir"], "logs"))
        self.assertFalse(os.path.exists(seen["workdir"]))

    def test_invalid_workers(self):
        with self.assertRaises(ValueError):
            SuiteRunner(self.orch, workers=0)


class TestSuiteReport(unittest.TestCase):

    def test_summary(self):
        report = SuiteReport(results=[
            ScenarioResult("a", PASSED),
            ScenarioResult("b", FAILED, "boom"),
            ScenarioResult("c", ERROR, "bang"),
        ])
        self.assertFalse(report.ok)
        self.assertEqual(len(report.failed), 1)
        self.assertEqual(report.summary(), "3 scenarios: 1 passed, 1 failed, 1 errors")

    def test_empty_report_is_not_ok(self):
        self.assertFalse(SuiteReport().ok)


if __name__ == "__main__":
    unittest.main()
