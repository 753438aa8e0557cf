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
Remote CRI client construction from a TestContext
"""
from typing import Optional, Tuple

from crivalidate.clients.remote import RemoteImageService, RemoteRuntimeService
from crivalidate.config import TestContext
from crivalidate.utils.log import configure_logging, get_logger

logger = get_logger(__name__)


def load_cri_client(context: Optional[TestContext] = None) -> Tuple[RemoteRuntimeService, RemoteImageService]:
    """
    Connect to the runtime and image services named by the context

    Args:
        context: run settings, read from the environment when omitted

    Returns:
        (runtime service, image service)
    """
    context = context or TestContext.from_env()
    configure_logging(context.log_level, context.log_file)

    runtime = RemoteRuntimeService(context.runtime_endpoint, context.runtime_timeout)
    images = RemoteImageService(context.image_endpoint, context.image_timeout)
    logger.info("Connected CRI client", {
        "runtime_endpoint": context.runtime_endpoint,
        "image_endpoint": context.image_endpoint,
    })
    return runtime, images
