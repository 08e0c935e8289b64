from typing import Dict
import logging

from index_updater.models.desired_state import DesiredStateProvider, FileDesiredState, InlineDesiredState

logger = logging.getLogger(__name__)


class UnsupportedDesiredStateError(Exception):
    def __init__(self, supplied_desired_state: str):
        super().__init__("Unsupported desired state type", supplied_desired_state)


def get_desired_state(config: Dict) -> DesiredStateProvider:
    if 'inline' in config:
        return InlineDesiredState(config)
    elif 'file' in config:
        return FileDesiredState(config)
    logger.error(f"An unsupported desired state type was provided: {config.keys()}")
    if len(config.keys()) > 1:
        raise UnsupportedDesiredStateError(', '.join(config.keys()))
    raise UnsupportedDesiredStateError(next(iter(config.keys()), ""))
