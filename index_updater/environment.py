import logging
from pathlib import Path
from typing import Dict, Optional, Union

import yaml
from cerberus import Validator

from index_updater.models.cluster import Cluster
from index_updater.models.desired_state import DesiredStateProvider
from index_updater.models.factories import get_desired_state
from index_updater.models.index_type import IndexTypeSpec
from index_updater.models.search_backend import SearchBackend

logger = logging.getLogger(__name__)


SCHEMA = {
    "cluster": {"type": "dict", "required": True},
    "index": {
        "type": "dict",
        "required": True,
        "schema": {
            "base_name": {"type": "string", "required": True, "empty": False, "regex": "^[a-z0-9][a-z0-9_\\-]*$"},
        }
    },
    "index_types": {
        "type": "dict",
        "required": True,
        "empty": False,
        "keysrules": {"type": "string", "regex": "^[a-z0-9][a-z0-9\\-]*$"},
        "valuesrules": {"type": "dict"},
    },
    "desired_state": {"type": "dict", "required": True},
}


def _read_config_file(config_file: Optional[Union[str, Path]]) -> Dict:
    if not config_file:
        raise ValueError("Either config or config_file must be provided.")
    logger.info(f"Loading config file: {config_file}")
    with open(config_file) as f:
        loaded = yaml.safe_load(f)
    if not isinstance(loaded, dict):
        raise ValueError("Invalid config file", f"{config_file} does not hold a mapping")
    return loaded


class UnknownIndexTypeError(Exception):
    def __init__(self, index_type: str, known: Dict):
        super().__init__(f"Unknown index type '{index_type}', expected one of: {', '.join(sorted(known))}")


class Environment:
    cluster: Cluster
    backend: SearchBackend
    base_name: str
    index_types: Dict[str, IndexTypeSpec]
    desired_state: DesiredStateProvider
    config: Dict

    def __init__(self, config: Optional[Dict] = None, config_file: Optional[Union[str, Path]] = None):
        """
        Build the environment from a config dict, or failing that from a YAML config file. Credentials in the
        cluster section are never logged.
        """
        self.config = config if isinstance(config, dict) else _read_config_file(config_file)
        v = Validator(SCHEMA)
        if not v.validate(self.config):
            logger.error(f"Config validation errors: {v.errors}")
            raise ValueError("Invalid config file", v.errors)
        logger.info(f"Config sections: {sorted(self.config)}")

        self.cluster = Cluster(config=self.config["cluster"])
        self.backend = SearchBackend(self.cluster)
        logger.info(f"Cluster initialized: {self.cluster.endpoint}")

        self.base_name = self.config["index"]["base_name"]
        self.index_types = {name: IndexTypeSpec.from_config(name, type_config)
                            for name, type_config in self.config["index_types"].items()}
        logger.info(f"Index types initialized: {sorted(self.index_types)}")

        self.desired_state = get_desired_state(self.config["desired_state"])
        logger.info(f"Desired state initialized: {type(self.desired_state).__name__}")

    def index_type(self, name: str) -> IndexTypeSpec:
        if name not in self.index_types:
            raise UnknownIndexTypeError(name, self.index_types)
        return self.index_types[name]
