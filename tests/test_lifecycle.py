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
Unit tests for LifecycleOrchestrator against the in-memory runtime.

Tests cover:
- Image tag defaulting before status and pull
- Bounded state waits
- Bounded stop with cancellation
- Best-effort teardown
"""

import time
import unittest
from unittest.mock import Mock, patch

from crivalidate.clients.fake import FakeImageService, FakeRuntimeService
from crivalidate.config import TestContext
from crivalidate.exceptions import OperationTimeoutError, RuntimeCallError
from crivalidate.framework.lifecycle import LifecycleOrchestrator, container_found
from crivalidate.models import Container, ContainerConfig, ContainerState


class _LifecycleTestCase(unittest.TestCase):

    def setUp(self):
        self.images = FakeImageService()
        self.runtime = FakeRuntimeService(image_service=self.images)
        self.context = TestContext(poll_interval=0.01, state_deadline=1, stop_container_timeout=2)
        self.orch = LifecycleOrchestrator(self.runtime, self.images, self.context)
        self.addCleanup(self.orch.close)
        self.pod_id, self.pod_config = self.orch.create_pod_sandbox_for_container()


class TestMetadata(_LifecycleTestCase):

    def test_pod_sandbox_metadata(self):
        md = self.orch.build_pod_sandbox_metadata("pod")
        self.assertEqual(md.name, "pod")
        self.assertTrue(md.uid.startswith("cri-test-uid-"))
        self.assertTrue(md.namespace.startswith("cri-test-namespace-"))
        self.assertEqual(md.attempt, 2)

    def test_run_default_pod_sandbox(self):
        pod_id = self.orch.run_default_pod_sandbox("PodSandbox-for-test-")
        sandboxes = self.runtime.list_pod_sandbox(pod_id)
        self.assertEqual(len(sandboxes), 1)
        self.assertTrue(sandboxes[0].metadata.name.startswith("PodSandbox-for-test-"))


class TestCreateContainer(_LifecycleTestCase):

    def test_untagged_image_is_normalized_before_status_and_pull(self):
        config = ContainerConfig(metadata=self.orch.build_container_metadata("c"), image="busybox")
        self.orch.create_container(config, self.pod_id, self.pod_config)

        image_calls = [c for c in self.images.calls if c[0] in ("image_status", "pull_image")]
        self.assertEqual(image_calls[0], ("image_status", ("busybox:latest",)))
        self.assertEqual(image_calls[1], ("pull_image", ("busybox:latest",)))
        for _, args in image_calls:
            self.assertEqual(args, ("busybox:latest",))

    def test_present_image_not_pulled(self):
        self.images.pull_image("busybox:1.26")
        self.images.calls.clear()

        self.orch.create_default_container(self.pod_id, self.pod_config, "container-")

        self.assertNotIn("pull_image", [c[0] for c in self.images.calls])

    def test_default_container_runs_pause_command(self):
        cid = self.orch.create_default_container(self.pod_id, self.pod_config, "container-for-test-")
        create_args = [c[1] for c in self.runtime.calls if c[0] == "create_container"][0]
        config = create_args[1]
        self.assertEqual(config.command, ["top"])
        self.assertEqual(config.image, "busybox:1.26")
        self.assertTrue(config.metadata.name.startswith("container-for-test-"))
        self.assertTrue(container_found(self.orch.list_container_for_id(cid), cid))


class TestAwaitState(_LifecycleTestCase):

    def test_waits_for_delayed_transition(self):
        self.runtime.start_delay = 0.05
        cid = self.orch.create_default_container(self.pod_id, self.pod_config, "c-")
        self.orch.start(cid)

        status = self.orch.await_state(cid, ContainerState.RUNNING)

        self.assertEqual(status.state, ContainerState.RUNNING)
        self.assertEqual(self.orch.status(cid), ContainerState.RUNNING)

    def test_times_out(self):
        cid = self.orch.create_default_container(self.pod_id, self.pod_config, "c-")
        start = time.monotonic()
        with self.assertRaises(OperationTimeoutError) as cm:
            self.orch.await_state(cid, ContainerState.RUNNING, poll_interval=0.01, deadline=0.1)
        self.assertLess(time.monotonic() - start, 1)
        self.assertEqual(cm.exception.context["state"], "CONTAINER_CREATED")

    def test_zero_deadline_checks_once(self):
        cid = self.orch.create_default_container(self.pod_id, self.pod_config, "c-")
        status = self.orch.await_state(cid, ContainerState.CREATED, deadline=0)
        self.assertEqual(status.id, cid)

    def test_status_error_propagates(self):
        with self.assertRaises(RuntimeCallError):
            self.orch.await_state("missing", ContainerState.RUNNING)


class TestStop(_LifecycleTestCase):

    def test_stop(self):
        cid = self.orch.create_default_container(self.pod_id, self.pod_config, "c-")
        self.orch.start(cid)
        self.orch.stop(cid, 5)
        self.assertEqual(self.orch.status(cid), ContainerState.EXITED)
        self.assertIn(("stop_container", (cid, 5)), self.runtime.calls)

    def test_stop_times_out_and_cancels(self):
        self.runtime.stop_call_duration = 5
        cid = self.orch.create_default_container(self.pod_id, self.pod_config, "c-")
        self.orch.start(cid)

        start = time.monotonic()
        with self.assertRaises(OperationTimeoutError):
            self.orch.stop(cid, 0.2)
        self.assertLess(time.monotonic() - start, 2)

    def test_abandoned_stop_does_not_delay_next_stop(self):
        self.runtime.stop_call_duration = 1
        self.runtime.honor_cancel = False
        first = self.orch.create_default_container(self.pod_id, self.pod_config, "a-")
        second = self.orch.create_default_container(self.pod_id, self.pod_config, "b-")
        self.orch.start(first)
        self.orch.start(second)

        with self.assertRaises(OperationTimeoutError):
            self.orch.stop(first, 0.1)
        start = time.monotonic()
        with self.assertRaises(OperationTimeoutError):
            self.orch.stop(second, 0.1)
        self.assertLess(time.monotonic() - start, 0.5)

        # the second call reached the runtime while the first was still blocked
        second_calls = [args for method, args in self.runtime.calls
                        if method == "stop_container" and args[0] == second]
        self.assertEqual(len(second_calls), 1)

    def test_stop_error_propagates(self):
        cid = self.orch.create_default_container(self.pod_id, self.pod_config, "c-")
        self.runtime.fail_next("stop_container", RuntimeCallError("stop failed"))
        with self.assertRaises(RuntimeCallError):
            self.orch.stop(cid, 5)


class TestTeardown(_LifecycleTestCase):

    def test_stop_failure_still_removes(self):
        cid = self.orch.create_default_container(self.pod_id, self.pod_config, "c-")
        self.runtime.fail_next("stop_container", RuntimeCallError("stop failed"))

        self.assertFalse(self.orch.stop_and_remove_container(cid))
        self.assertEqual(self.orch.list_container_for_id(cid), [])

    def test_stop_timeout_still_removes(self):
        self.context.stop_container_timeout = 0.1
        self.runtime.stop_call_duration = 1
        self.runtime.honor_cancel = False
        cid = self.orch.create_default_container(self.pod_id, self.pod_config, "c-")
        self.orch.start(cid)

        start = time.monotonic()
        self.assertFalse(self.orch.stop_and_remove_container(cid))
        self.assertLess(time.monotonic() - start, 0.9)
        self.assertEqual(self.orch.list_container_for_id(cid), [])
        self.assertIn(("remove_container", (cid,)), self.runtime.calls)

    def test_teardown_pod_sandbox_logs_errors(self):
        self.runtime.fail_next("stop_pod_sandbox", RuntimeCallError("stop failed"))
        self.assertFalse(self.orch.teardown_pod_sandbox(self.pod_id))
        self.assertEqual(self.runtime.list_pod_sandbox(), [])

    def test_teardown_success(self):
        self.assertTrue(self.orch.teardown_pod_sandbox(self.pod_id))


class TestListAndVersion(unittest.TestCase):

    def test_list_always_queries_runtime(self):
        runtime = Mock()
        runtime.list_containers.return_value = [Container(id="a", pod_sandbox_id="p")]
        orch = LifecycleOrchestrator(runtime, Mock(), TestContext())
        self.addCleanup(orch.close)

        orch.list()
        orch.list()

        self.assertEqual(runtime.list_containers.call_count, 2)

    @patch("crivalidate.framework.lifecycle.default_generator")
    def test_version_and_shared_generator(self, mock_default):
        mock_default.return_value.generate.return_value = "uuid-1"
        runtime = Mock()
        orch = LifecycleOrchestrator(runtime, Mock())
        self.addCleanup(orch.close)

        self.assertEqual(orch.new_uuid(), "uuid-1")
        orch.version()
        runtime.version.assert_called_once_with("v1")


if __name__ == "__main__":
    unittest.main()
