from dataclasses import dataclass
import logging
import time
from typing import Callable, Iterable, List, Optional, Union

logger = logging.getLogger(__name__)

CURRENT_IDENTIFIER = "current"
NOW_IDENTIFIER = "now"
FIRST_IDENTIFIER = "first"


@dataclass(frozen=True)
class IndexNames:
    """
    Names derived for one index type:
        - global alias: {base}
        - type alias:   {base}_{index_type}
        - index:        {base}_{index_type}_{identifier}
    """
    base: str
    index_type: str
    identifier: str

    @property
    def global_alias(self) -> str:
        return self.base

    @property
    def type_alias(self) -> str:
        return f"{self.base}_{self.index_type}"

    @property
    def index(self) -> str:
        return f"{self.type_alias}_{self.identifier}"

    def is_same_type(self, index_name: str) -> bool:
        return index_name.startswith(f"{self.type_alias}_")


@dataclass(frozen=True)
class Resolved:
    identifier: str


@dataclass(frozen=True)
class Ambiguous:
    candidates: List[str]


@dataclass(frozen=True)
class NoneFound:
    pass


IdentifierResolution = Union[Resolved, Ambiguous, NoneFound]


class AmbiguousIndexIdentifier(Exception):
    def __init__(self, type_alias: str, candidates: List[str]):
        self.candidates = candidates
        super().__init__(f"Looks like {type_alias} has more than one identifier. You should delete all but the "
                         f"one currently active. Here is the list: {', '.join(candidates)}")


def resolve_current_identifier(type_alias: str, index_names: Iterable[str]) -> IdentifierResolution:
    prefix = f"{type_alias}_"
    found = sorted(name for name in index_names if name.startswith(prefix))
    if len(found) > 1:
        return Ambiguous(found)
    if found:
        return Resolved(found[0][len(prefix):])
    return NoneFound()


def pick_index_identifier(option: str, type_alias: str, list_index_names: Callable[[], List[str]],
                          clock: Optional[Callable[[], float]] = None) -> str:
    """
    Pick the index identifier from the provided option.
        'now'        => current time in seconds, which should be unique
        'current'    => the identifier of the one index of this type, or 'first' if there is none
        other string => that string back
    """
    if option == NOW_IDENTIFIER:
        identifier = str(int((clock or time.time)()))
        logger.info(f"Setting index identifier...{identifier}")
        return identifier
    if option != CURRENT_IDENTIFIER:
        return option

    resolution = resolve_current_identifier(type_alias, list_index_names())
    if isinstance(resolution, Ambiguous):
        raise AmbiguousIndexIdentifier(type_alias, resolution.candidates)
    identifier = resolution.identifier if isinstance(resolution, Resolved) else FIRST_IDENTIFIER
    logger.info(f"Inferred index identifier...{identifier}")
    return identifier
