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
import threading
import uuid
from typing import Optional


class UniqueIdGenerator:
    """Issues time-based UUID strings that never repeat for one instance.

    uuid1 has 100ns resolution, so two rapid calls can observe the same clock
    value and produce identical UUIDs. The last issued value is kept behind a
    lock and a colliding candidate is regenerated until it differs.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._last: Optional[uuid.UUID] = None

    def generate(self) -> str:
        with self._lock:
            result = uuid.uuid1()
            while result == self._last:
                result = uuid.uuid1()
            self._last = result
            return str(result)


_default_lock = threading.Lock()
_default_generator: Optional[UniqueIdGenerator] = None


def default_generator() -> UniqueIdGenerator:
    """Return the process-wide generator, creating it on first use"""
    global _default_generator
    with _default_lock:
        if _default_generator is None:
            _default_generator = UniqueIdGenerator()
        return _default_generator
