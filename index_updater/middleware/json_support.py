import json
from typing import Any, Callable, Dict, List, Tuple

import yaml

from index_updater.models.utils import ExitCode


def support_json_return() -> Callable[[Tuple[ExitCode, Dict | List | str]], Tuple[ExitCode, str]]:
    def decorator(func: Callable[..., Tuple[ExitCode, Dict | List | str]]) \
            -> Callable[[Any], Tuple[ExitCode, str]]:
        def wrapper(*args, as_json=False, **kwargs) -> Tuple[ExitCode, str]:
            exitcode, result = func(*args, **kwargs)
            if isinstance(result, str):
                return exitcode, result
            if as_json:
                return exitcode, json.dumps(result)
            return exitcode, yaml.safe_dump(result, sort_keys=False)
        return wrapper
    return decorator
