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
class ValidationError(Exception):
    """Base exception for all harness errors"""
    code = 500

    def __init__(self, message: str, context: dict = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class ConfigError(ValidationError):
    """Raised when the runtime rejects a pod or container specification"""
    code = 400


class RuntimeCallError(ValidationError):
    """Raised when a runtime RPC fails; status and details are kept verbatim"""
    code = 502

    def __init__(self, message: str, context: dict = None, status: str = None, details: str = None):
        super().__init__(message, context)
        self.status = status
        self.details = details


class OperationTimeoutError(ValidationError, TimeoutError):
    """Raised when a state is not reached or a caller-side deadline elapses"""
    code = 504


class MalformedLogError(ValidationError):
    """Raised when a log line matches neither supported format"""
    code = 422

    def __init__(self, message: str, line: str = None, lineno: int = None):
        context = {}
        if lineno is not None:
            context["line"] = lineno
        super().__init__(message, context)
        self.line = line
        self.lineno = lineno


class InvalidLocationError(ValidationError):
    """Raised when a streaming URL cannot be resolved"""
    code = 400


class UnsupportedProtocolError(ValidationError):
    """Raised when no streaming sub-protocol could be negotiated"""
    code = 426
