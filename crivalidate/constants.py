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
RUNTIME_ENDPOINT_ENV = "CRI_RUNTIME_ENDPOINT"
IMAGE_ENDPOINT_ENV = "CRI_IMAGE_ENDPOINT"
RUNTIME_TIMEOUT_ENV = "CRI_RUNTIME_TIMEOUT"
IMAGE_TIMEOUT_ENV = "CRI_IMAGE_TIMEOUT"
STREAMING_BASE_URL_ENV = "CRI_STREAMING_BASE_URL"
POLL_INTERVAL_ENV = "CRI_POLL_INTERVAL"
STATE_DEADLINE_ENV = "CRI_STATE_DEADLINE"
STOP_TIMEOUT_ENV = "CRI_STOP_CONTAINER_TIMEOUT"
EXEC_SYNC_TIMEOUT_ENV = "CRI_EXEC_SYNC_TIMEOUT"
LOG_LEVEL_ENV = "CRI_LOG_LEVEL"
LOG_FILE_ENV = "CRI_LOG_FILE"

DEFAULT_RUNTIME_ENDPOINT = "unix:///run/containerd/containerd.sock"
DEFAULT_RUNTIME_TIMEOUT = 120.0  # seconds
DEFAULT_IMAGE_TIMEOUT = 300.0  # seconds

# Kubelet streaming server; relative exec/attach URLs are resolved against it.
DEFAULT_STREAMING_BASE_URL = "http://127.0.0.1:10250"

DEFAULT_POLL_INTERVAL = 4.0  # seconds
DEFAULT_STATE_DEADLINE = 60.0  # seconds
DEFAULT_STOP_CONTAINER_TIMEOUT = 60  # seconds
DEFAULT_EXEC_SYNC_TIMEOUT = 5  # seconds

# PodSandbox / container naming
DEFAULT_UID_PREFIX = "cri-test-uid"
DEFAULT_NAMESPACE_PREFIX = "cri-test-namespace"
DEFAULT_ATTEMPT = 2

DEFAULT_CONTAINER_IMAGE = "busybox:1.26"
DEFAULT_IMAGE_TAG = "latest"
DEFAULT_API_VERSION = "v1"

DEFAULT_LOG = "hello World"

# Commands used by the container scenarios
PAUSE_CMD = ["top"]
ECHO_HELLO_CMD = ["echo", "-n", "hello"]
ECHO_HELLO_OUTPUT = "hello"
LOG_DEFAULT_CMD = ["echo", DEFAULT_LOG]
