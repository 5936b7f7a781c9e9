#  Copyright 2023 Cognite AS
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
Module containing tools for loading and verifying config files.

Configs are described as ``dataclass``\\es. ``CronConfig`` holds everything the scheduler itself needs: the tick
interval, logging and metrics. Embed it in your own config class, or use it directly:

.. code-block:: yaml

    interval: 10s
    logger:
        console:
            level: INFO
        file:
            path: logs/cron.log
            retention: 7
    metrics:
        server:
            port: 9000

You can then load a YAML file into this dataclass with the `load_yaml` function:

.. code-block:: python

    with open("config.yaml") as infile:
        config: CronConfig = load_yaml(infile, CronConfig)

    cron = Cron.from_config(config)

Values of the form ``${VAR}`` are substituted with the content of the environment variable ``VAR``.
"""

from intervalcron.exceptions import InvalidConfigError

from .elements import CronConfig, LoggingConfig, MetricsConfig, TimeIntervalConfig
from .loaders import load_yaml, load_yaml_dict

__all__ = [
    "CronConfig",
    "InvalidConfigError",
    "LoggingConfig",
    "MetricsConfig",
    "TimeIntervalConfig",
    "load_yaml",
    "load_yaml_dict",
]
