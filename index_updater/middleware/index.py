import logging
from typing import Dict, Optional, Tuple

from index_updater.environment import Environment
from index_updater.middleware.error_handler import handle_errors
from index_updater.middleware.json_support import support_json_return
from index_updater.models.converger import ConvergenceEngine, ConvergenceOptions, ConvergenceReport
from index_updater.models.index_type import IndexTypeSpec
from index_updater.models.naming import IndexNames, pick_index_identifier
from index_updater.models.utils import ExitCode

logger = logging.getLogger(__name__)


def _resolve(env: Environment, index_type: str, index_identifier: str,
             chunk_size: Optional[int] = None, acceptable_count_deviation=None,
             reindex_processes: Optional[int] = None) -> Tuple[IndexTypeSpec, IndexNames]:
    spec = env.index_type(index_type).with_overrides(chunk_size=chunk_size,
                                                     acceptable_count_deviation=acceptable_count_deviation,
                                                     reindex_processes=reindex_processes)
    type_alias = IndexNames(env.base_name, index_type, "").type_alias
    identifier = pick_index_identifier(index_identifier, type_alias, env.backend.list_index_names)
    return spec, IndexNames(env.base_name, index_type, identifier)


@support_json_return()
@handle_errors("index")
def update(env: Environment, index_type: str, index_identifier: str, rebuild: bool = False, close_ok: bool = False,
           reindex_and_remove_ok: bool = False, chunk_size: Optional[int] = None, acceptable_count_deviation=None,
           reindex_processes: Optional[int] = None) -> ConvergenceReport:
    spec, names = _resolve(env, index_type, index_identifier, chunk_size, acceptable_count_deviation,
                           reindex_processes)
    options = ConvergenceOptions(rebuild=rebuild, close_ok=close_ok, reindex_and_remove_ok=reindex_and_remove_ok)
    logger.info(f"Updating {names.index} with {options}")
    return ConvergenceEngine(env.backend, spec, names, env.desired_state, options).converge()


@support_json_return()
@handle_errors("index")
def force_open(env: Environment, index_type: str, index_identifier: str) -> ConvergenceReport:
    spec, names = _resolve(env, index_type, index_identifier)
    return ConvergenceEngine(env.backend, spec, names, env.desired_state).force_open()


@support_json_return()
@handle_errors("index")
def force_reindex(env: Environment, index_type: str, index_identifier: str, chunk_size: Optional[int] = None,
                  acceptable_count_deviation=None, reindex_processes: Optional[int] = None) -> ConvergenceReport:
    spec, names = _resolve(env, index_type, index_identifier, chunk_size, acceptable_count_deviation,
                           reindex_processes)
    logger.info(f"Force reindexing {names.type_alias} into {names.index}")
    return ConvergenceEngine(env.backend, spec, names, env.desired_state).force_reindex()


@support_json_return()
@handle_errors("index", on_success=lambda result: (ExitCode.SUCCESS, result))
def status(env: Environment, index_type: str, index_identifier: str) -> Dict:
    spec, names = _resolve(env, index_type, index_identifier)
    return ConvergenceEngine(env.backend, spec, names, env.desired_state).inspect()


@support_json_return()
@handle_errors("index", on_success=lambda result: (ExitCode.SUCCESS, result))
def describe(env: Environment, index_type: str) -> Dict:
    spec = env.index_type(index_type)
    names = IndexNames(env.base_name, index_type, "{identifier}")
    return {
        "index_type": spec.to_dict(),
        "global_alias": names.global_alias,
        "type_alias": names.type_alias,
        "index": names.index,
        "desired_state": env.desired_state.describe(),
    }
