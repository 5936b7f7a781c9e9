#  Copyright 2020 Cognite AS
#
#  Licensed under the Apache License, Version 2.0 (the "License");
#  you may not use this file except in compliance with the License.
#  You may obtain a copy of the License at
#
#      http://www.apache.org/licenses/LICENSE-2.0
#
#  Unless required by applicable law or agreed to in writing, software
#  distributed under the License is distributed on an "AS IS" BASIS,
#  WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#  See the License for the specific language governing permissions and
#  limitations under the License.

"""
A small scheduler firing a set of named tasks at a fixed interval.

Tasks run concurrently on their own threads each tick, failures are isolated per task and reported through logging,
and the scheduler stops cleanly on ``Cron.stop`` or on SIGINT/SIGTERM.
"""

__version__ = "1.0.0"

from .context import Context, NewContextFunc, background, identity_context
from .exceptions import CronIsRunningError, InvalidConfigError
from .logger import CronLogger, LogFunc
from .runner import TaskFunc
from .scheduler import Cron
from .shutdown import ShutdownEvent, ShutdownReason

__all__ = [
    "Context",
    "Cron",
    "CronIsRunningError",
    "CronLogger",
    "InvalidConfigError",
    "LogFunc",
    "NewContextFunc",
    "ShutdownEvent",
    "ShutdownReason",
    "TaskFunc",
    "background",
    "identity_context",
]
