from enum import Enum
from typing import Union


DEFAULT_CONFIG_FILE = "/config/index_updater.yaml"


class ExitCode(Enum):
    SUCCESS = 0
    FAILURE = 1


def parse_potential_percent(value: Union[str, int, float]) -> float:
    """Parse a fraction that may be written as a percentage.

    "5%" -> 0.05, "0.05" -> 0.05, 0.05 -> 0.05
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    text = str(value).strip()
    if text.endswith("%"):
        return float(text[:-1].strip()) / 100
    return float(text)
