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
from typing import Optional

import crivalidate.constants as constants


def get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    """Read an environment variable, treating empty values as unset

    Args:
        name: Environment variable name
        default: Value returned when the variable is unset or empty

    Returns:
        The variable value or default
    """
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value


def get_float_env(name: str, default: float) -> float:
    value = get_env(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be a number, got {value!r}")


def normalize_image_ref(image: str) -> str:
    """Append the default tag to an image reference that has none

    Only the last path component is inspected so registry ports
    (localhost:5000/busybox) are not mistaken for a tag; digests are
    left untouched.

    Args:
        image: Image reference as supplied by the caller

    Returns:
        The reference with ':latest' appended when it lacked a tag
    """
    if not image:
        raise ValueError("image reference is empty")
    last = image.split("/")[-1]
    if "@" in last or ":" in last:
        return image
    return f"{image}:{constants.DEFAULT_IMAGE_TAG}"
