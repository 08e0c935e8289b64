import json
import logging
from pathlib import Path
from typing import Any, Dict

from cerberus import Validator
import yaml

from index_updater.models.schema_tools import contains_one_of

logger = logging.getLogger(__name__)

ConfigTree = Dict[str, Any]

SCHEMA = {
    "desired_state": {
        "type": "dict",
        "schema": {
            "inline": {
                "type": "dict",
                "schema": {
                    "analysis": {"type": "dict", "required": True},
                    "mapping": {"type": "dict", "required": True},
                },
            },
            "file": {
                "type": "dict",
                "schema": {
                    "analysis": {"type": "string", "required": True},
                    "mapping": {"type": "string", "required": True},
                },
            },
        },
        "check_with": contains_one_of({"inline", "file"})
    }
}


class DesiredStateProvider:
    """
    Interface for supplying the analysis settings and field mapping an index should converge on.
    """
    def __init__(self, config: Dict) -> None:
        v = Validator(SCHEMA)
        self.config = config
        if not v.validate({"desired_state": self.config}):
            raise ValueError("Invalid config file for desired_state", v.errors)

    def build_analysis_config(self) -> ConfigTree:
        raise NotImplementedError

    def build_mapping_config(self) -> ConfigTree:
        raise NotImplementedError

    def describe(self) -> Dict:
        return self.config


class InlineDesiredState(DesiredStateProvider):
    def __init__(self, config: Dict) -> None:
        super().__init__(config)
        self.analysis = self.config["inline"]["analysis"]
        self.mapping = self.config["inline"]["mapping"]

    def build_analysis_config(self) -> ConfigTree:
        return self.analysis

    def build_mapping_config(self) -> ConfigTree:
        return self.mapping


def _load_tree(path: Path) -> ConfigTree:
    logger.info(f"Loading desired state from {path}")
    with open(path) as f:
        if path.suffix == ".json":
            tree = json.load(f)
        else:
            tree = yaml.safe_load(f)
    if not isinstance(tree, dict):
        raise ValueError(f"Desired state file {path} must hold a mapping at the top level")
    return tree


class FileDesiredState(DesiredStateProvider):
    """Reads each tree from a YAML or JSON file. Files are read once, on first use."""
    def __init__(self, config: Dict) -> None:
        super().__init__(config)
        self.analysis_path = Path(self.config["file"]["analysis"])
        self.mapping_path = Path(self.config["file"]["mapping"])
        self._analysis = None
        self._mapping = None

    def build_analysis_config(self) -> ConfigTree:
        if self._analysis is None:
            self._analysis = _load_tree(self.analysis_path)
        return self._analysis

    def build_mapping_config(self) -> ConfigTree:
        if self._mapping is None:
            self._mapping = _load_tree(self.mapping_path)
        return self._mapping
