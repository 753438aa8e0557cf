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

import logging
import os
import tempfile
import unittest
from logging.handlers import RotatingFileHandler
from unittest.mock import Mock, patch

from crivalidate.config import TestContext
from crivalidate.framework import LifecycleOrchestrator, load_cri_client
from crivalidate.utils.log import ROOT_LOGGER, configure_logging


class TestLoadCriClient(unittest.TestCase):

    @patch("crivalidate.framework.client.configure_logging")
    @patch("crivalidate.framework.client.RemoteImageService")
    @patch("crivalidate.framework.client.RemoteRuntimeService")
    def test_builds_both_services_from_context(self, mock_runtime, mock_images, mock_logging):
        context = TestContext(
            runtime_endpoint="unix:///run/crio/crio.sock",
            image_endpoint="unix:///run/images.sock",
            runtime_timeout=7,
            image_timeout=9,
            log_level="DEBUG",
            log_file="/tmp/cri.log",
        )

        runtime, images = load_cri_client(context)

        mock_runtime.assert_called_once_with("unix:///run/crio/crio.sock", 7)
        mock_images.assert_called_once_with("unix:///run/images.sock", 9)
        mock_logging.assert_called_once_with("DEBUG", "/tmp/cri.log")
        self.assertIs(runtime, mock_runtime.return_value)
        self.assertIs(images, mock_images.return_value)

    @patch("crivalidate.framework.client.configure_logging")
    @patch("crivalidate.framework.client.RemoteImageService")
    @patch("crivalidate.framework.client.RemoteRuntimeService")
    @patch.dict(os.environ, {"CRI_RUNTIME_ENDPOINT": "unix:///run/env.sock"}, clear=True)
    def test_defaults_to_environment(self, mock_runtime, mock_images, mock_logging):
        load_cri_client()

        self.assertEqual(mock_runtime.call_args[0][0], "unix:///run/env.sock")
        self.assertEqual(mock_images.call_args[0][0], "unix:///run/env.sock")

    @patch("crivalidate.framework.lifecycle.load_cri_client")
    def test_orchestrator_from_context(self, mock_load):
        runtime, images = Mock(), Mock()
        mock_load.return_value = (runtime, images)
        context = TestContext(stop_container_timeout=5)

        orch = LifecycleOrchestrator.from_context(context)

        mock_load.assert_called_once_with(context)
        self.assertIs(orch.runtime, runtime)
        self.assertIs(orch.images, images)
        self.assertIs(orch.context, context)


class TestConfigureLogging(unittest.TestCase):

    def setUp(self):
        self.root = logging.getLogger(ROOT_LOGGER)
        self.addCleanup(self.root.setLevel, self.root.level)
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)

    def _file_handlers(self, path):
        return [
            h for h in self.root.handlers
            if isinstance(h, RotatingFileHandler) and h.baseFilename == os.path.abspath(path)
        ]

    def _drop_file_handlers(self, path):
        for handler in self._file_handlers(path):
            self.root.removeHandler(handler)
            handler.close()

    def test_applies_level(self):
        configure_logging("DEBUG")
        self.assertEqual(self.root.level, logging.DEBUG)

        configure_logging("warning")
        self.assertEqual(self.root.level, logging.WARNING)

    def test_unknown_level_falls_back_to_info(self):
        configure_logging("chatty")
        self.assertEqual(self.root.level, logging.INFO)

    def test_adds_file_handler_once(self):
        path = os.path.join(self.tmpdir.name, "logs", "cri.log")
        self.addCleanup(self._drop_file_handlers, path)

        configure_logging("INFO", path)
        configure_logging("INFO", path)

        self.assertEqual(len(self._file_handlers(path)), 1)
        logging.getLogger(f"{ROOT_LOGGER}.tests").info("written to file")
        for handler in self._file_handlers(path):
            handler.flush()
        with open(path, encoding="utf-8") as f:
            self.assertIn("written to file", f.read())


if __name__ == "__main__":
    unittest.main()
