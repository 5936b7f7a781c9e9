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
from typing import Any, Callable, Dict

import humps

from intervalcron.exceptions import InvalidConfigError

_KEY_CONVERTERS: Dict[str, Callable[[Any], Any]] = {
    "hyphen": humps.dekebabize,
    "kebab": humps.dekebabize,
    "camel": humps.decamelize,
    "pascal": humps.decamelize,
}


def _to_snake_case(dictionary: Dict[str, Any], case_style: str) -> Dict[str, Any]:
    """
    Convert every key in a config dictionary to snake case, including keys of nested dictionaries and of dictionaries
    inside lists. Values are left untouched.

    Args:
        dictionary: Dictionary to convert.
        case_style: Casing convention of the keys. One of 'snake', 'hyphen' or 'camel'.

    Returns:
        A dictionary with snake case keys.
    """
    if case_style in ("snake", "underscore"):
        return dictionary
    if case_style not in _KEY_CONVERTERS:
        raise InvalidConfigError(f"Invalid case style: {case_style}")
    return _KEY_CONVERTERS[case_style](dictionary)
