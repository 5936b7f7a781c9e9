"""
Module containing functions for loading configuration files.
"""
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

import os
import re
from enum import Enum
from pathlib import Path
from typing import Any, Dict, TextIO, Type, TypeVar, Union

import dacite
import yaml

from intervalcron.configtools._util import _to_snake_case
from intervalcron.configtools.elements import TimeIntervalConfig
from intervalcron.exceptions import InvalidConfigError

CustomConfigClass = TypeVar("CustomConfigClass")


class _EnvLoader(yaml.SafeLoader):
    pass


_BOOLEANS = {"true": True, "false": False}


def _env_constructor(_: yaml.SafeLoader, node: yaml.Node) -> Union[bool, str]:
    expanded = os.path.expandvars(node.value)
    return _BOOLEANS.get(expanded.lower(), expanded)


_EnvLoader.add_implicit_resolver("!env", re.compile(r"\$\{([^}^{]+)\}"), None)
_EnvLoader.add_constructor("!env", _env_constructor)


def _parse_yaml(source: Union[TextIO, str], expand_envvars: bool) -> Dict[str, Any]:
    try:
        document = yaml.load(source, Loader=_EnvLoader if expand_envvars else yaml.SafeLoader)  # noqa: S506
    except yaml.MarkedYAMLError as e:
        mark = e.problem_mark or e.context_mark
        where = f" at line {mark.line + 1}, column {mark.column + 1}" if mark is not None else ""
        raise InvalidConfigError(f"Invalid YAML{where}: {e.problem or e.context or ''}") from e

    if document is None:
        return {}
    if not isinstance(document, dict):
        raise InvalidConfigError("The root node of the YAML document must be an object")
    return document


def _type_names(type_: Any) -> str:
    members = getattr(type_, "__args__", None) or [type_]
    return ", ".join(getattr(t, "__name__", str(t)) for t in members)


def _config_error(error: dacite.DaciteError, case_style: str) -> InvalidConfigError:
    def field(path: str) -> str:
        return path.replace("_", "-") if case_style == "hyphen" else path

    if isinstance(error, dacite.UnexpectedDataError):
        unknowns = ", ".join(f'"{field(key)}"' for key in sorted(error.keys))
        plural = "s" if len(error.keys) > 1 else ""
        return InvalidConfigError(f"Unknown config parameter{plural} {unknowns}")

    path = field(error.field_path) if error.field_path else None
    value = getattr(error, "value", None)
    if isinstance(error, (dacite.WrongTypeError, dacite.UnionMatchError)) and value is not None:
        return InvalidConfigError(
            f'Wrong type for field "{path}" - got "{value}" of type {type(value).__name__} instead of '
            f"{_type_names(error.field_type)}"
        )
    return InvalidConfigError(f'Missing mandatory field "{path}"')


def load_yaml(
    source: Union[TextIO, str],
    config_type: Type[CustomConfigClass],
    case_style: str = "hyphen",
    expand_envvars: bool = True,
) -> CustomConfigClass:
    """
    Read a YAML file, and create a config object based on its contents.

    Args:
        source: Input stream (as returned by open(...)) or string containing YAML.
        config_type: Class of config type (i.e. ``CronConfig``, or a dataclass embedding it).
        case_style: Casing convention of config file. Valid options are 'snake', 'hyphen' or 'camel'. Should be
            'hyphen'.
        expand_envvars: Substitute values with the pattern ${VAR} with the content of the environment variable VAR

    Returns:
        An initialized config object.

    Raises:
        InvalidConfigError: If any config field is given as an invalid type, is missing or is unknown
    """
    config_dict = load_yaml_dict(source, case_style=case_style, expand_envvars=expand_envvars)

    try:
        return dacite.from_dict(
            data=config_dict,
            data_class=config_type,
            config=dacite.Config(strict=True, cast=[Enum, TimeIntervalConfig, Path]),
        )
    except dacite.ForwardReferenceError as e:
        raise ValueError(f"Invalid config class: {e!s}") from e
    except (dacite.UnexpectedDataError, dacite.WrongTypeError, dacite.MissingValueError, dacite.UnionMatchError) as e:
        raise _config_error(e, case_style) from e


def load_yaml_dict(
    source: Union[TextIO, str],
    case_style: str = "hyphen",
    expand_envvars: bool = True,
) -> Dict[str, Any]:
    """
    Read a YAML file and return a dictionary from its contents, with keys converted to snake case.

    Args:
        source: Input stream (as returned by open(...)) or string containing YAML.
        case_style: Casing convention of config file. Valid options are 'snake', 'hyphen' or 'camel'. Should be
            'hyphen'.
        expand_envvars: Substitute values with the pattern ${VAR} with the content of the environment variable VAR

    Returns:
        A raw dict with the contents of the config file.

    Raises:
        InvalidConfigError: If the YAML is malformed, or the root node is not an object
    """
    return _to_snake_case(_parse_yaml(source, expand_envvars), case_style)
