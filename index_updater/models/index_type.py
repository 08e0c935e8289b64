from dataclasses import dataclass, replace
import logging
from typing import Any, Dict

from cerberus import Validator

from index_updater.models.schema_tools import is_fraction
from index_updater.models.utils import parse_potential_percent

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_ACCEPTABLE_COUNT_DEVIATION = 0.05
DEFAULT_REINDEX_PROCESSES = 10

INDEX_TYPE_SCHEMA = {
    "index_type": {
        "type": "dict",
        "schema": {
            "shards": {"type": "integer", "required": True, "min": 1},
            "replicas": {"type": "integer", "required": True, "min": 0},
            "chunk_size": {"type": "integer", "required": False, "min": 1},
            "acceptable_count_deviation": {"type": ["string", "number"], "required": False,
                                           "check_with": is_fraction},
            "reindex_processes": {"type": "integer", "required": False, "min": 1},
        }
    }
}

# Command line overrides go through the same checks as the config file.
OVERRIDES_SCHEMA = {
    "index_type": {
        "type": "dict",
        "schema": {key: rule for key, rule in INDEX_TYPE_SCHEMA["index_type"]["schema"].items()
                   if key not in ("shards", "replicas")},
    }
}


@dataclass(frozen=True)
class IndexTypeSpec:
    """Target configuration for one logical index type, fixed for the life of the process."""
    name: str
    shards: int
    replicas: int
    chunk_size: int = DEFAULT_CHUNK_SIZE
    acceptable_count_deviation: float = DEFAULT_ACCEPTABLE_COUNT_DEVIATION
    reindex_processes: int = DEFAULT_REINDEX_PROCESSES

    @classmethod
    def from_config(cls, name: str, config: Dict[str, Any]) -> "IndexTypeSpec":
        v = Validator(INDEX_TYPE_SCHEMA)
        if not v.validate({"index_type": config}):
            raise ValueError(f"Invalid config for index type {name}", v.errors)
        return cls(
            name=name,
            shards=config["shards"],
            replicas=config["replicas"],
            chunk_size=config.get("chunk_size", DEFAULT_CHUNK_SIZE),
            acceptable_count_deviation=parse_potential_percent(
                config.get("acceptable_count_deviation", DEFAULT_ACCEPTABLE_COUNT_DEVIATION)),
            reindex_processes=config.get("reindex_processes", DEFAULT_REINDEX_PROCESSES),
        )

    def with_overrides(self, chunk_size=None, acceptable_count_deviation=None,
                       reindex_processes=None) -> "IndexTypeSpec":
        overrides: Dict[str, Any] = {}
        if chunk_size is not None:
            overrides["chunk_size"] = chunk_size
        if acceptable_count_deviation is not None:
            overrides["acceptable_count_deviation"] = acceptable_count_deviation
        if reindex_processes is not None:
            overrides["reindex_processes"] = reindex_processes
        if not overrides:
            return self
        v = Validator(OVERRIDES_SCHEMA)
        if not v.validate({"index_type": overrides}):
            raise ValueError(f"Invalid overrides for index type {self.name}", v.errors)
        if "acceptable_count_deviation" in overrides:
            overrides["acceptable_count_deviation"] = parse_potential_percent(overrides["acceptable_count_deviation"])
        logger.info(f"Overriding configuration of index type {self.name}: {overrides}")
        return replace(self, **overrides)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "shards": self.shards,
            "replicas": self.replicas,
            "chunk_size": self.chunk_size,
            "acceptable_count_deviation": self.acceptable_count_deviation,
            "reindex_processes": self.reindex_processes,
        }
