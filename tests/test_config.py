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
from unittest.mock import patch

import crivalidate.constants as constants
from crivalidate.config import TestContext
from crivalidate.utils.utils import normalize_image_ref


class TestTestContext(unittest.TestCase):

    @patch.dict(os.environ, {}, clear=True)
    def test_from_env_defaults(self):
        ctx = TestContext.from_env()
        self.assertEqual(ctx.runtime_endpoint, constants.DEFAULT_RUNTIME_ENDPOINT)
        self.assertEqual(ctx.image_endpoint, constants.DEFAULT_RUNTIME_ENDPOINT)
        self.assertEqual(ctx.poll_interval, constants.DEFAULT_POLL_INTERVAL)
        self.assertEqual(ctx.stop_container_timeout, constants.DEFAULT_STOP_CONTAINER_TIMEOUT)
        self.assertIsNone(ctx.log_file)

    @patch.dict(os.environ, {
        "CRI_RUNTIME_ENDPOINT": "unix:///run/crio/crio.sock",
        "CRI_IMAGE_ENDPOINT": "unix:///run/images.sock",
        "CRI_POLL_INTERVAL": "0.5",
        "CRI_STATE_DEADLINE": "10",
        "CRI_STREAMING_BASE_URL": "https://node:10250",
    }, clear=True)
    def test_from_env_overrides(self):
        ctx = TestContext.from_env()
        self.assertEqual(ctx.runtime_endpoint, "unix:///run/crio/crio.sock")
        self.assertEqual(ctx.image_endpoint, "unix:///run/images.sock")
        self.assertEqual(ctx.poll_interval, 0.5)
        self.assertEqual(ctx.state_deadline, 10.0)
        self.assertEqual(ctx.streaming_base_url, "https://node:10250")

    @patch.dict(os.environ, {"CRI_POLL_INTERVAL": "fast"}, clear=True)
    def test_from_env_rejects_non_numeric(self):
        with self.assertRaises(ValueError):
            TestContext.from_env()

    @patch.dict(os.environ, {"CRI_IMAGE_ENDPOINT": "   "}, clear=True)
    def test_blank_variable_is_unset(self):
        ctx = TestContext.from_env()
        self.assertEqual(ctx.image_endpoint, ctx.runtime_endpoint)

    def test_invalid_poll_interval(self):
        with self.assertRaises(ValueError):
            TestContext(poll_interval=0)
        with self.assertRaises(ValueError):
            TestContext(state_deadline=-1)


class TestNormalizeImageRef(unittest.TestCase):

    def test_appends_latest(self):
        self.assertEqual(normalize_image_ref("busybox"), "busybox:latest")
        self.assertEqual(normalize_image_ref("docker.io/library/busybox"), "docker.io/library/busybox:latest")

    def test_keeps_existing_tag(self):
        self.assertEqual(normalize_image_ref("busybox:1.26"), "busybox:1.26")

    def test_registry_port_is_not_a_tag(self):
        self.assertEqual(normalize_image_ref("localhost:5000/busybox"), "localhost:5000/busybox:latest")

    def test_digest_untouched(self):
        ref = "busybox@sha256:" + "a" * 64
        self.assertEqual(normalize_image_ref(ref), ref)

    def test_empty_rejected(self):
        with self.assertRaises(ValueError):
            normalize_image_ref("")


if __name__ == "__main__":
    unittest.main()
