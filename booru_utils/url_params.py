from __future__ import annotations

from typing import Any, Dict, Mapping, Optional


def obj_to_url_params(options: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    """Turn a filter bag into query parameters.

    Unset values (None, empty strings) are dropped instead of being sent as
    literal "None"; booleans use the lowercase spelling the APIs expect.
    """
    params: Dict[str, str] = {}
    if not options:
        return params
    for key, value in options.items():
        if value is None or value == "":
            continue
        if isinstance(value, bool):
            params[key] = "true" if value else "false"
        else:
            params[key] = str(value)
    return params
