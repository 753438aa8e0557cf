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
Configuration module for the CRI validation harness
"""
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

import crivalidate.constants as constants
from crivalidate.utils.utils import get_env, get_float_env


# Load environment variables from .env file
load_dotenv()


@dataclass
class TestContext:
    """Settings shared by every scenario of a validation run"""
    __test__ = False  # not a pytest test class

    runtime_endpoint: str = constants.DEFAULT_RUNTIME_ENDPOINT
    image_endpoint: Optional[str] = None
    runtime_timeout: float = constants.DEFAULT_RUNTIME_TIMEOUT
    image_timeout: float = constants.DEFAULT_IMAGE_TIMEOUT
    streaming_base_url: str = constants.DEFAULT_STREAMING_BASE_URL
    poll_interval: float = constants.DEFAULT_POLL_INTERVAL
    state_deadline: float = constants.DEFAULT_STATE_DEADLINE
    stop_container_timeout: float = constants.DEFAULT_STOP_CONTAINER_TIMEOUT
    exec_sync_timeout: float = constants.DEFAULT_EXEC_SYNC_TIMEOUT
    log_level: str = "INFO"
    log_file: Optional[str] = None

    def __post_init__(self):
        # The image service shares the runtime socket unless told otherwise
        if not self.image_endpoint:
            self.image_endpoint = self.runtime_endpoint
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        if self.state_deadline < 0:
            raise ValueError("state_deadline must not be negative")

    @classmethod
    def from_env(cls) -> "TestContext":
        """
        Build the context from CRI_* environment variables

        Returns:
            TestContext with defaults for every unset variable
        """
        return cls(
            runtime_endpoint=get_env(constants.RUNTIME_ENDPOINT_ENV, constants.DEFAULT_RUNTIME_ENDPOINT),
            image_endpoint=get_env(constants.IMAGE_ENDPOINT_ENV),
            runtime_timeout=get_float_env(constants.RUNTIME_TIMEOUT_ENV, constants.DEFAULT_RUNTIME_TIMEOUT),
            image_timeout=get_float_env(constants.IMAGE_TIMEOUT_ENV, constants.DEFAULT_IMAGE_TIMEOUT),
            streaming_base_url=get_env(constants.STREAMING_BASE_URL_ENV, constants.DEFAULT_STREAMING_BASE_URL),
            poll_interval=get_float_env(constants.POLL_INTERVAL_ENV, constants.DEFAULT_POLL_INTERVAL),
            state_deadline=get_float_env(constants.STATE_DEADLINE_ENV, constants.DEFAULT_STATE_DEADLINE),
            stop_container_timeout=get_float_env(
                constants.STOP_TIMEOUT_ENV, constants.DEFAULT_STOP_CONTAINER_TIMEOUT),
            exec_sync_timeout=get_float_env(constants.EXEC_SYNC_TIMEOUT_ENV, constants.DEFAULT_EXEC_SYNC_TIMEOUT),
            log_level=get_env(constants.LOG_LEVEL_ENV, "INFO"),
            log_file=get_env(constants.LOG_FILE_ENV),
        )
