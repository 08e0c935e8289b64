"""
Converges one physical index onto its desired configuration.

A run walks these steps in order, recording each correction and each problem it could not fix in a
ConvergenceReport rather than stopping at the first one:
    1. ensure the index exists (creating or rebuilding it)
    2. shard and replica counts
    3. analyzers, which can only be changed while the index is closed
    4. the field mapping
    5. the type alias, then the global alias, then removal of superseded indexes

Backend errors outside of a reindex are not caught here; they end the run and are reported by the middleware.
"""
from dataclasses import dataclass, field
from enum import Enum
import logging
from typing import Any, Callable, Dict, List, Optional

from index_updater.models.alias_swap import AliasSwap
from index_updater.models.desired_state import DesiredStateProvider
from index_updater.models.drift import REPLICAS_SETTING, SHARDS_SETTING, analysis_matches, detect_drift, \
    differing_sections, mapping_matches, replicas_match, shards_match
from index_updater.models.index_type import IndexTypeSpec
from index_updater.models.naming import IndexNames
from index_updater.models.reindexer import CountDeviationExceeded, PartitionViolation, Reindexer
from index_updater.models.search_backend import BackendError, BulkWriteFailed, IndexStatus, SearchBackend
from index_updater.models.utils import ExitCode

logger = logging.getLogger(__name__)


class IssueKind(Enum):
    UNCORRECTABLE_DRIFT = "uncorrectable drift"
    CORRECTION_DENIED = "correction denied"
    CORRECTION_FAILED = "correction failed"
    MIGRATION_ABORTED = "migration aborted"
    ALIAS_CONFLICT = "alias conflict"


@dataclass(frozen=True)
class Issue:
    kind: IssueKind
    message: str

    def __str__(self) -> str:
        return f"[{self.kind.value}] {self.message}"


@dataclass
class ConvergenceReport:
    index: str
    actions: List[str] = field(default_factory=list)
    issues: List[Issue] = field(default_factory=list)

    def action(self, message: str) -> None:
        logger.info(message)
        self.actions.append(message)

    def issue(self, kind: IssueKind, message: str) -> None:
        logger.error(message)
        self.issues.append(Issue(kind, message))

    @property
    def exit_code(self) -> ExitCode:
        return ExitCode.FAILURE if self.issues else ExitCode.SUCCESS

    def kinds(self) -> List[IssueKind]:
        return [issue.kind for issue in self.issues]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "converged": not self.issues,
            "actions": list(self.actions),
            "issues": [str(issue) for issue in self.issues],
        }


@dataclass(frozen=True)
class ConvergenceOptions:
    rebuild: bool = False
    close_ok: bool = False
    reindex_and_remove_ok: bool = False


@dataclass
class SpecificAliasOutcome:
    bound: bool
    superseded: List[str] = field(default_factory=list)


class ConvergenceEngine:
    def __init__(self, backend: SearchBackend, spec: IndexTypeSpec, names: IndexNames,
                 desired_state: DesiredStateProvider, options: ConvergenceOptions = ConvergenceOptions(),
                 reindexer: Optional[Reindexer] = None, alias_swap: Optional[AliasSwap] = None) -> None:
        self.backend = backend
        self.spec = spec
        self.names = names
        self.desired_state = desired_state
        self.options = options
        self.reindexer = reindexer or Reindexer(backend, chunk_size=spec.chunk_size,
                                                workers=spec.reindex_processes,
                                                acceptable_count_deviation=spec.acceptable_count_deviation)
        self.alias_swap = alias_swap or AliasSwap(backend)
        self.close_ok = options.close_ok
        self.closed = False
        self.too_few_replicas = False

    @property
    def index(self) -> str:
        return self.names.index

    def converge(self) -> ConvergenceReport:
        report = ConvergenceReport(self.index)
        self.close_ok = self.options.close_ok
        self.closed = False
        self.too_few_replicas = False
        try:
            self.ensure_index(report)
            self.validate_analyzers(report)
            self.validate_mapping(report)
            self.validate_alias(report)
        finally:
            self.reopen_if_closed(report)
        if report.issues:
            logger.warning(f"{self.index} did not converge: {', '.join(kind.value for kind in report.kinds())}")
        return report

    # Index

    def ensure_index(self, report: ConvergenceReport) -> None:
        status = self.backend.index_status(self.index)
        if self.options.rebuild:
            if status != IndexStatus.MISSING:
                self.backend.delete_index(self.index)
                report.action(f"Deleted {self.index} to rebuild it")
            self.create_index(report)
            return
        if status == IndexStatus.MISSING:
            self.create_index(report)
            return
        if status == IndexStatus.CLOSED:
            self.backend.open_index(self.index)
            report.action(f"Opened {self.index}, which was closed")
        self.validate_index_settings(report)

    def create_index(self, report: ConvergenceReport) -> None:
        bulk_load_expected = self.options.rebuild or self.options.reindex_and_remove_ok
        replicas = 0 if bulk_load_expected else self.spec.replicas
        settings = {
            "index": {
                "number_of_shards": self.spec.shards,
                "number_of_replicas": replicas,
                "analysis": self.desired_state.build_analysis_config(),
            }
        }
        self.backend.create_index(self.index, settings, self.desired_state.build_mapping_config())
        # Nothing on a brand new index needs the close window.
        self.close_ok = False
        self.too_few_replicas = replicas < self.spec.replicas
        report.action(f"Created {self.index} with {self.spec.shards} shard(s) and {replicas} replica(s)")

    def validate_index_settings(self, report: ConvergenceReport) -> None:
        settings = self.backend.get_settings(self.index)
        if not shards_match(settings, self.spec.shards):
            report.issue(IssueKind.UNCORRECTABLE_DRIFT,
                         f"Number of shards is {settings.get(SHARDS_SETTING)} but should be {self.spec.shards}. "
                         f"It cannot be changed without a rebuild; rerun with --rebuild or --reindex-and-remove-ok.")
        if not replicas_match(settings, self.spec.replicas):
            self.backend.set_replica_count(self.index, self.spec.replicas)
            report.action(f"Corrected number of replicas from {settings.get(REPLICAS_SETTING)} "
                          f"to {self.spec.replicas}")

    # Analyzers

    def validate_analyzers(self, report: ConvergenceReport) -> None:
        desired_analysis = self.desired_state.build_analysis_config()
        if analysis_matches(self.backend.get_settings(self.index), desired_analysis):
            return
        if not self.close_ok:
            report.issue(IssueKind.CORRECTION_DENIED,
                         f"Analyzers of {self.index} differ and can only be corrected by closing the index, "
                         f"which makes it unusable until reopened. Rerun with --close-ok to allow it.")
            return
        self.close_and_correct(report, lambda: self.backend.set_settings(
            self.index, {"index": {"analysis": desired_analysis}}))
        report.action("Corrected analyzers")

    def close_and_correct(self, report: ConvergenceReport, correct: Callable[[], None]) -> None:
        self.backend.close_index(self.index)
        self.closed = True
        report.action(f"Closed {self.index}")
        try:
            correct()
        finally:
            self.reopen_if_closed(report)

    def reopen_if_closed(self, report: ConvergenceReport) -> None:
        if not self.closed:
            return
        self.backend.open_index(self.index)
        self.closed = False
        report.action(f"Reopened {self.index}")

    # Mapping

    def validate_mapping(self, report: ConvergenceReport) -> None:
        desired_mapping = self.desired_state.build_mapping_config()
        if mapping_matches(self.backend.get_mapping(self.index), desired_mapping):
            return
        try:
            self.backend.put_mapping(self.index, desired_mapping)
        except BackendError as e:
            if e.status_code is None or not 400 <= e.status_code < 500:
                raise
            report.issue(IssueKind.CORRECTION_FAILED, f"Couldn't update mapping. The backend said: {e}")
            return
        report.action("Corrected mapping")

    # Aliases

    def validate_alias(self, report: ConvergenceReport) -> None:
        # The type alias goes first: it may trigger a reindex, and the global alias stays on the old index until
        # that is done.
        outcome = self.validate_specific_alias(report)
        if self.too_few_replicas:
            self.alias_swap.restore_replicas(self.index, self.spec.replicas)
            self.too_few_replicas = False
            report.action(f"Restored {self.spec.replicas} replica(s)")
        if not outcome.bound:
            logger.warning(f"{self.names.type_alias} does not point at {self.index}, leaving "
                           f"{self.names.global_alias} alone")
            return
        self.validate_global_alias(report, outcome.superseded)
        if outcome.superseded:
            failed = self.alias_swap.remove_superseded(outcome.superseded)
            removed = [index for index in outcome.superseded if index not in failed]
            if removed:
                report.action(f"Removed superseded indexes {', '.join(removed)}")

    def _clear_index_named_like(self, alias: str, report: ConvergenceReport) -> bool:
        """True when no index is named like the alias (anymore)."""
        if not self.backend.index_exists(alias):
            return True
        if not self.options.rebuild:
            report.issue(IssueKind.ALIAS_CONFLICT,
                         f"There is an index named {alias}, like the alias. Rerun with --rebuild to remove it.")
            return False
        self.backend.delete_index(alias)
        report.action(f"Removed index {alias}, which had the name of the alias")
        return True

    def validate_specific_alias(self, report: ConvergenceReport) -> SpecificAliasOutcome:
        alias = self.names.type_alias
        if not self._clear_index_named_like(alias, report):
            return SpecificAliasOutcome(bound=False)
        holders = self.backend.get_indices_with_alias(alias)
        if self.index in holders:
            return self._detach_other_holders(alias, holders, report)
        if not holders:
            self.backend.add_alias(alias, self.index)
            report.action(f"Added alias {alias}")
            return SpecificAliasOutcome(bound=True)
        if not self.options.reindex_and_remove_ok:
            report.issue(IssueKind.ALIAS_CONFLICT,
                         f"Alias {alias} is held by {', '.join(holders)}, which may be serving queries. Rerun with "
                         f"--reindex-and-remove-ok to copy it into {self.index} and move the alias.")
            return SpecificAliasOutcome(bound=False)

        try:
            result = self.reindexer.reindex(alias, self.index)
        except (CountDeviationExceeded, BulkWriteFailed, PartitionViolation, BackendError) as e:
            report.issue(IssueKind.MIGRATION_ABORTED,
                         f"Reindex into {self.index} failed, {alias} stays on {', '.join(holders)}: {e}")
            return SpecificAliasOutcome(bound=False)
        report.action(f"Reindexed {result.new_count} of {result.old_count} documents from {alias}")
        superseded = self.alias_swap.swap(alias, self.index, holders)
        report.action(f"Swapped alias {alias} from {', '.join(superseded)}")
        if self.too_few_replicas:
            self.alias_swap.finish(self.index, self.spec.replicas)
            self.too_few_replicas = False
            report.action(f"Optimized {self.index} and brought it up to {self.spec.replicas} replica(s)")
        return SpecificAliasOutcome(bound=True, superseded=superseded)

    def _detach_other_holders(self, alias: str, holders: List[str], report: ConvergenceReport) -> SpecificAliasOutcome:
        """The alias already points here; any other holder loses it. Those indexes are deleted only when allowed."""
        if holders == [self.index]:
            return SpecificAliasOutcome(bound=True)
        detached = self.alias_swap.swap(alias, self.index, holders)
        report.action(f"Removed alias {alias} from {', '.join(detached)}")
        if not self.options.reindex_and_remove_ok:
            return SpecificAliasOutcome(bound=True)
        return SpecificAliasOutcome(bound=True, superseded=detached)

    def validate_global_alias(self, report: ConvergenceReport, superseded: List[str]) -> None:
        alias = self.names.global_alias
        if not self._clear_index_named_like(alias, report):
            return
        holders = self.backend.get_indices_with_alias(alias)
        stale = [holder for holder in holders
                 if holder != self.index and (holder in superseded or self.names.is_same_type(holder))]
        if self.index in holders and not stale:
            return
        removed = self.alias_swap.bind_global(alias, self.index, stale)
        report.action(f"Added global alias {alias}" + (f", removing it from {', '.join(removed)}" if removed else ""))

    # Other operations

    def force_open(self) -> ConvergenceReport:
        report = ConvergenceReport(self.index)
        self.backend.open_index(self.index)
        report.action(f"Opened {self.index}")
        return report

    def force_reindex(self) -> ConvergenceReport:
        """Copy the documents behind the type alias into the index. Aliases are not touched."""
        report = ConvergenceReport(self.index)
        try:
            result = self.reindexer.reindex(self.names.type_alias, self.index)
        except CountDeviationExceeded as e:
            report.issue(IssueKind.MIGRATION_ABORTED, str(e))
            return report
        report.action(f"Reindexed {result.new_count} of {result.old_count} documents from {self.names.type_alias}")
        return report

    def inspect(self) -> Dict[str, Any]:
        """Read-only view of the index and its drift; nothing is corrected."""
        status = self.backend.index_status(self.index)
        result: Dict[str, Any] = {
            "index": self.index,
            "status": status.value,
            "type_alias": {self.names.type_alias: self.backend.get_indices_with_alias(self.names.type_alias)},
            "global_alias": {self.names.global_alias: self.backend.get_indices_with_alias(self.names.global_alias)},
        }
        if status != IndexStatus.OPEN:
            return result
        verdicts = detect_drift(self.backend.get_settings(self.index), self.backend.get_mapping(self.index),
                                shards=self.spec.shards, replicas=self.spec.replicas,
                                desired_analysis=self.desired_state.build_analysis_config(),
                                desired_mapping=self.desired_state.build_mapping_config())
        result["drift"] = {section.value: verdict.value for section, verdict in verdicts.items()}
        result["differs"] = [section.value for section in differing_sections(verdicts)]
        return result
