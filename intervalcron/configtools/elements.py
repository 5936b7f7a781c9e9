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
import logging
import math
import re
from dataclasses import dataclass
from pathlib import Path
from time import sleep
from typing import List, Optional, Tuple, Union
from wsgiref.simple_server import WSGIServer

import yaml
from prometheus_client import REGISTRY, start_http_server

from intervalcron.exceptions import InvalidConfigError
from intervalcron.logger import RobustFileHandler, _logging_formatter
from intervalcron.metrics import PrometheusPusher
from intervalcron.threading import CancellationToken

_logger = logging.getLogger(__name__)


_UNIT_SECONDS = {"ms": 0.001, "s": 1, "m": 60, "h": 60 * 60, "d": 60 * 60 * 24}


class TimeIntervalConfig(yaml.YAMLObject):
    """
    Configuration parameter for setting a time interval, such as ``500ms``, ``10s``, ``5m``, ``1h`` or ``2d``. A bare
    number is interpreted as seconds. The interval must be positive.
    """

    def __init__(self, expression: Union[str, int, float]) -> None:
        self._interval, self._expression = TimeIntervalConfig._parse_expression(expression)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TimeIntervalConfig):
            return NotImplemented
        return self._interval == other._interval

    def __hash__(self) -> int:
        return hash(self._interval)

    @classmethod
    def _parse_expression(cls, expression: Union[str, int, float]) -> Tuple[float, str]:
        try:
            seconds, text = float(expression), f"{expression}s"
        except ValueError:
            match = re.fullmatch(r"(\d+(?:\.\d+)?)(ms|s|m|h|d)", str(expression).strip())
            if not match:
                raise InvalidConfigError("Invalid interval pattern") from None

            number, unit = match.groups()
            seconds, text = float(number) * _UNIT_SECONDS[unit], str(expression)

        if not math.isfinite(seconds) or seconds <= 0:
            raise InvalidConfigError(f"Interval must be positive, got {expression}")
        return seconds, text

    @property
    def seconds(self) -> float:
        return self._interval

    def __str__(self) -> str:
        return self._expression

    def __repr__(self) -> str:
        return self._expression


@dataclass
class _ConsoleLoggingConfig:
    level: str = "INFO"


@dataclass
class _FileLoggingConfig:
    path: str
    level: str = "INFO"
    retention: int = 7


@dataclass
class LoggingConfig:
    """
    Logging settings, such as log levels and path to log file
    """

    console: Optional[_ConsoleLoggingConfig]
    file: Optional[_FileLoggingConfig]

    def setup_logging(self, suppress_console: bool = False) -> None:
        """
        Sets up the default logger in the logging package to be configured as defined in this config object

        Args:
            suppress_console: Don't log to console regardless of config. Useful when running as a Windows service
        """
        fmt = _logging_formatter()

        root = logging.getLogger()

        if self.console and not suppress_console and not root.hasHandlers():
            console_handler = logging.StreamHandler()
            console_handler.setLevel(self.console.level.upper())
            console_handler.setFormatter(fmt)

            root.addHandler(console_handler)

            if root.getEffectiveLevel() > console_handler.level:
                root.setLevel(console_handler.level)

        if self.file:
            try:
                file_handler = RobustFileHandler(
                    filename=Path(self.file.path),
                    when="midnight",
                    utc=True,
                    backupCount=self.file.retention,
                    create_dirs=True,
                )
            except (OSError, PermissionError) as e:
                _logger.warning(f"Could not create or write to log file {self.file.path}: {e}")
                return

            file_handler.setLevel(self.file.level.upper())
            file_handler.setFormatter(fmt)

            for handler in root.handlers:
                if hasattr(handler, "baseFilename") and handler.baseFilename == file_handler.baseFilename:
                    file_handler.close()
                    return

            root.addHandler(file_handler)

            if root.getEffectiveLevel() > file_handler.level:
                root.setLevel(file_handler.level)


@dataclass
class _PushGatewayConfig:
    host: str
    job_name: str
    username: Optional[str]
    password: Optional[str]

    clear_after: Optional[TimeIntervalConfig]
    push_interval: TimeIntervalConfig = TimeIntervalConfig("30s")


@dataclass
class _PromServerConfig:
    port: int = 9000
    host: str = "0.0.0.0"


@dataclass
class MetricsConfig:
    """
    Destinations for the scheduler metrics: any number of Prometheus push gateways, and a local Prometheus HTTP server
    to be scraped. ``Cron.from_config`` starts them when the scheduler starts running, and stops them when it returns.
    """

    push_gateways: Optional[List[_PushGatewayConfig]]
    server: Optional[_PromServerConfig]

    def __post_init__(self) -> None:
        self._pushers: List[Tuple[PrometheusPusher, _PushGatewayConfig]] = []
        self._http_server: Optional[WSGIServer] = None

    def start_pushers(self, cancellation_token: Optional[CancellationToken] = None) -> List[PrometheusPusher]:
        """
        Start one pusher per configured push gateway, and the HTTP server if one is configured.

        Args:
            cancellation_token: Token ending every push loop when cancelled.

        Returns:
            The started pushers.
        """
        for index, gateway in enumerate(self.push_gateways or []):
            pusher = PrometheusPusher(
                job_name=gateway.job_name,
                url=gateway.host,
                push_interval=gateway.push_interval.seconds,
                username=gateway.username,
                password=gateway.password,
                thread_name=f"MetricsPusher_{index}",
                cancellation_token=cancellation_token,
            )
            pusher.start()
            self._pushers.append((pusher, gateway))

        if self.server:
            self._http_server, _ = start_http_server(self.server.port, self.server.host, registry=REGISTRY)
            _logger.info("Serving metrics on %s:%d", self.server.host, self.server.port)

        return [pusher for pusher, _ in self._pushers]

    def stop_pushers(self) -> None:
        """
        Stop the pushers after a final push, and shut down the HTTP server. Gateways with ``clear-after`` set are
        cleared once the longest of those delays has passed.
        """
        pushers, self._pushers = self._pushers, []
        for pusher, _ in pushers:
            pusher.stop()

        if self._http_server is not None:
            self._http_server.shutdown()
            self._http_server.server_close()
            self._http_server = None

        to_clear = [(pusher, gateway.clear_after.seconds) for pusher, gateway in pushers if gateway.clear_after]
        if to_clear:
            wait_time = max(delay for _, delay in to_clear)
            _logger.debug("Waiting %s seconds before clearing gateways", wait_time)
            sleep(wait_time)
            for pusher, _ in to_clear:
                pusher.clear_gateway()


@dataclass
class CronConfig:
    """
    Configuration for a ``Cron`` scheduler: the tick interval, and optionally logging and metrics.
    """

    version: Optional[Union[str, int]] = None
    interval: TimeIntervalConfig = TimeIntervalConfig("500ms")
    logger: Optional[LoggingConfig] = None
    metrics: Optional[MetricsConfig] = None
