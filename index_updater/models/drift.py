"""
Drift detection between live index configuration and the desired configuration.

Desired configuration is a tree: a dict whose values are scalars, lists, or nested dicts. Live settings are
read in the backend's flat form ({"index.analysis.analyzer.text.type": "custom", ...}) while live mappings are
nested trees like the desired ones.

Scalars are compared with one loose-equality rule, because the backend hands settings back as strings no matter
how they were written:
    - None only equals None
    - booleans equal their "true"/"false" text, case-insensitively
    - identical string forms are equal
    - two values that both read as plain decimals compare numerically ("5" == 5, "1.0" == 1)
    - anything else compares by its string form
Keys present on the live side but absent from the desired tree never count as drift.
"""
from enum import Enum
import logging
import re
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

Scalar = Union[str, int, float, bool, None]
ConfigTree = Dict[str, Any]

SHARDS_SETTING = "index.number_of_shards"
REPLICAS_SETTING = "index.number_of_replicas"
ANALYSIS_PREFIX = "index.analysis"
PLAIN_NUMBER = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")


class Section(Enum):
    SHARDS = "shards"
    REPLICAS = "replicas"
    ANALYZERS = "analyzers"
    MAPPING = "mapping"


class Verdict(Enum):
    MATCH = "match"
    DIFFERS = "differs"

    @classmethod
    def of(cls, matches: bool) -> "Verdict":
        return cls.MATCH if matches else cls.DIFFERS


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    # Only plain decimals; float() would also take "nan", "inf" and "1_000".
    if isinstance(value, str) and PLAIN_NUMBER.match(value.strip()):
        return float(value.strip())
    return None


def _bool_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value).strip().lower()


def loosely_equal(actual: Any, desired: Any) -> bool:
    if actual is None or desired is None:
        return actual is None and desired is None
    if isinstance(actual, bool) or isinstance(desired, bool):
        return _bool_text(actual) == _bool_text(desired)
    if str(actual) == str(desired):
        return True
    actual_number, desired_number = _as_number(actual), _as_number(desired)
    if actual_number is not None and desired_number is not None:
        return actual_number == desired_number
    return False


def _values_match(actual: Any, desired: Any) -> bool:
    if isinstance(desired, dict):
        return isinstance(actual, dict) and mapping_matches(actual, desired)
    if isinstance(desired, list):
        if not isinstance(actual, list) or len(actual) != len(desired):
            return False
        return all(_values_match(a, d) for a, d in zip(actual, desired))
    if isinstance(actual, (dict, list)):
        return False
    return loosely_equal(actual, desired)


def settings_match(prefix: str, live_settings: Dict[str, Any], desired: ConfigTree) -> bool:
    """Does every leaf of the desired tree, rooted at prefix, appear in the flat live settings?"""
    for key, value in desired.items():
        settings_key = f"{prefix}.{key}"
        if isinstance(value, dict):
            if not settings_match(settings_key, live_settings, value):
                return False
            continue
        if isinstance(value, list):
            if settings_key in live_settings:
                if not _values_match(live_settings[settings_key], value):
                    return False
                continue
            # Some versions flatten lists into indexed keys: key.0, key.1, ...
            if f"{settings_key}.{len(value)}" in live_settings:
                return False
            if not settings_match(settings_key, live_settings, {str(i): item for i, item in enumerate(value)}):
                return False
            continue
        if settings_key not in live_settings or not loosely_equal(live_settings[settings_key], value):
            return False
    return True


def mapping_matches(actual: ConfigTree, desired: ConfigTree) -> bool:
    """Does the actual mapping contain everything the desired mapping asks for?"""
    for key, value in desired.items():
        if key not in actual:
            return False
        if not _values_match(actual[key], value):
            return False
    return True


def shards_match(live_settings: Dict[str, Any], shards: int) -> bool:
    return loosely_equal(live_settings.get(SHARDS_SETTING), shards)


def replicas_match(live_settings: Dict[str, Any], replicas: int) -> bool:
    return loosely_equal(live_settings.get(REPLICAS_SETTING), replicas)


def analysis_matches(live_settings: Dict[str, Any], desired_analysis: ConfigTree) -> bool:
    return settings_match(ANALYSIS_PREFIX, live_settings, desired_analysis)


def detect_drift(live_settings: Dict[str, Any], live_mapping: ConfigTree, shards: int, replicas: int,
                 desired_analysis: ConfigTree, desired_mapping: ConfigTree) -> Dict[Section, Verdict]:
    verdicts = {
        Section.SHARDS: Verdict.of(shards_match(live_settings, shards)),
        Section.REPLICAS: Verdict.of(replicas_match(live_settings, replicas)),
        Section.ANALYZERS: Verdict.of(analysis_matches(live_settings, desired_analysis)),
        Section.MAPPING: Verdict.of(mapping_matches(live_mapping, desired_mapping)),
    }
    logger.debug(f"Drift verdicts: {verdicts}")
    return verdicts


def differing_sections(verdicts: Dict[Section, Verdict]) -> List[Section]:
    return [section for section, verdict in verdicts.items() if verdict == Verdict.DIFFERS]
