from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple, Union

import pandas as pd
from loguru import logger

from reconcile.errors import ConfigError
from reconcile.merge import DisambiguationRule, MergeResult, merge_many
from reconcile.names import NormalizationReport, check_normalization
from reconcile.overrides import OverrideAudit, Overrides
from reconcile.report import ReconciliationReport
from reconcile.resolver import NameResolver, ResolutionResult

log = logger.bind(tags=['workflow'])


@dataclass
class ReconciliationRun:
    """Everything a reviewer needs from one pass over the datasets"""
    snapshot_version: str
    annotated: Dict[str, pd.DataFrame] = field(default_factory=dict)
    reports: Dict[str, ReconciliationReport] = field(default_factory=dict)
    normalization: Dict[str, NormalizationReport] = field(default_factory=dict)
    audits: Dict[str, OverrideAudit] = field(default_factory=dict)
    merge: Optional[MergeResult] = None

    @property
    def unused_overrides(self) -> List[str]:
        """Overrides that matched no name in any dataset"""
        if not self.audits:
            return []
        return sorted(set.intersection(*(set(audit.unused) for audit in self.audits.values())))

    @property
    def merged(self) -> Optional[pd.DataFrame]:
        return self.merge.merged if self.merge is not None else None


def annotate_dataset(
        frame: pd.DataFrame,
        resolver: NameResolver,
        name_column: str,
        overrides: Optional[Overrides] = None,
        max_workers: Optional[int] = None
    ) -> Tuple[pd.DataFrame, List[ResolutionResult]]:
    """Resolve a name column and append final_name and status to a copy"""
    if name_column not in frame.columns:
        raise ConfigError(f"Name column '{name_column}' not found; columns are {list(frame.columns)}")

    results = resolver.resolve_all(frame[name_column].tolist(), max_workers=max_workers)
    if overrides is not None:
        results = overrides.apply(results, snapshot=resolver.snapshot)

    annotated = frame.copy()
    clobbered = [col for col in ('final_name', 'status') if col in annotated.columns]
    if clobbered:
        log.warning(f"Overwriting existing columns {clobbered}")
    annotated['final_name'] = [r.final_name for r in results]
    annotated['status'] = [r.status.value for r in results]
    return annotated, results


def _audit_overrides(label: str, overrides: Overrides, results: List[ResolutionResult]) -> OverrideAudit:
    audit = overrides.audit(results)
    if audit.self_mappings:
        log.info(f"{label}: {len(audit.self_mappings)} overrides map names to their resolved name")
    return audit


def reconcile_datasets(
        datasets: Mapping[str, pd.DataFrame],
        resolver: NameResolver,
        name_columns: Mapping[str, str],
        reference: str,
        overrides: Optional[Overrides] = None,
        rules: Union[None, DisambiguationRule, Mapping[str, DisambiguationRule]] = None,
        max_workers: Optional[int] = None
    ) -> ReconciliationRun:
    """
    Resolve every dataset, report on each, then merge the rest into the
    reference dataset.

    rules is one rule for every dataset or a mapping of label to rule; the
    reference's entry settles duplicate final names within the reference.

    Unresolved names and duplicate groups end up in the run's reports;
    only unsettled reference duplicates and a broken join raise.
    """
    if reference not in datasets:
        raise ConfigError(f"Reference dataset '{reference}' is not among {list(datasets)}")

    run = ReconciliationRun(snapshot_version=resolver.snapshot.version)

    for label, frame in datasets.items():
        name_column = name_columns.get(label)
        if name_column is None:
            raise ConfigError(f"No name column configured for dataset '{label}'")

        log.info(f"Reconciling {label} ({len(frame):,} rows, column '{name_column}')")
        annotated, results = annotate_dataset(frame, resolver, name_column, overrides, max_workers)
        names = frame[name_column].tolist()
        run.normalization[label] = check_normalization(names, resolver.snapshot)
        if overrides is not None:
            # unoverridden results come straight from the resolver cache
            run.audits[label] = _audit_overrides(label, overrides, resolver.resolve_all(names))

        report = ReconciliationReport(results, label=label)
        report.log_summary()

        run.annotated[label] = annotated
        run.reports[label] = report

    unused = run.unused_overrides
    if unused:
        log.warning(f"{len(unused)} overrides match no name in any dataset: {', '.join(unused[:10])}")

    others = {label: frame for label, frame in run.annotated.items() if label != reference}
    reference_rule = rules.get(reference) if isinstance(rules, Mapping) else rules
    run.merge = merge_many(run.annotated[reference], others, rules=rules, reference_rule=reference_rule)
    return run
