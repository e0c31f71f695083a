from pathlib import Path
from typing import Dict, Optional

import pandas as pd
from dotenv import load_dotenv
from loguru import logger
from metaflow import FlowSpec, Parameter, step

from etl.sources import load_name_history, load_synonym_pairs, load_table
from etl.taxonomy import get_db_connection, load_snapshot_from_postgres
from reconcile.config import ReconcileConfig, TaxonomySource, load_config
from reconcile.log import configure_logging
from reconcile.merge import MergeResult, prefer_exact_name
from reconcile.overrides import Overrides
from reconcile.report import ReconciliationReport
from reconcile.resolver import NameResolver
from reconcile.store import TaxonomySnapshot
from reconcile.workflow import reconcile_datasets

load_dotenv()

log = logger.bind(tags=['pipeline'])


def load_snapshot(source: TaxonomySource) -> TaxonomySnapshot:
    if source.format == 'pairs':
        return load_synonym_pairs(
            source.path, source.canonical_column, source.synonym_column, version=source.version
        )
    if source.format == 'history':
        return load_name_history(
            source.path, source.history_path, source.canonical_column,
            source.old_column, source.current_column, version=source.version
        )

    conn = get_db_connection()
    try:
        return load_snapshot_from_postgres(conn, schema_name=source.schema_name, version=source.version)
    finally:
        conn.close()


def load_overrides(config: ReconcileConfig) -> Optional[Overrides]:
    """Overrides from the configured file; a configured but missing file is only warned about"""
    if not config.overrides_path:
        return None
    if not Path(config.overrides_path).exists():
        log.warning(f"Overrides file {config.overrides_path} not found; running without manual overrides")
        return None
    return Overrides.from_yaml(config.overrides_path)


def build_rules(config: ReconcileConfig) -> Dict:
    """Duplicate rules per dataset, the reference included; empty means exclude unresolved groups"""
    if config.duplicate_rule != 'prefer_exact':
        return {}
    return {label: prefer_exact_name(dataset.name_column) for label, dataset in config.datasets.items()}


def write_review_files(report: ReconciliationReport, output_dir) -> Dict[str, Path]:
    """Write the subsets a reviewer works through before the next run"""
    review_dir = Path(output_dir) / 'review' / report.label
    review_dir.mkdir(parents=True, exist_ok=True)

    frame = report.to_frame()
    duplicates = ReconciliationReport(report.duplicates(), label=report.label).to_frame()
    collisions = ReconciliationReport(report.collisions(), label=report.label).to_frame()
    counts = report.counts()
    subsets = {
        'not_found': frame[frame['status'] == 'not_found'][['query']],
        'ambiguous': frame[frame['status'] == 'ambiguous'][['query', 'candidates']],
        'updated': frame[frame['status'] == 'updated'][['query', 'final_name']],
        'duplicates': duplicates.sort_values('final_name', kind='stable')[['final_name', 'query', 'status']],
        'collisions': collisions.sort_values('final_name', kind='stable')[['final_name', 'query', 'status']],
        'summary': pd.DataFrame({'status': [s.value for s in counts], 'count': list(counts.values())}),
    }

    written = {}
    for name, subset in subsets.items():
        path = review_dir / f"{name}.csv"
        subset.to_csv(path, index=False)
        written[name] = path
    log.info(f"Wrote review files for {report.label} to {review_dir}")
    return written


def write_merge_files(merge: MergeResult, output_dir) -> Dict[str, Path]:
    """merged.csv plus the rows a reviewer has to look at before the next run"""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    tables = {'merged': merge.merged}
    if merge.unresolved_groups:
        tables['unresolved_groups'] = merge.unresolved_frame()
    if merge.collapsed_reference is not None and not merge.collapsed_reference.empty:
        tables['collapsed_reference'] = merge.collapsed_reference

    written = {}
    for name, table in tables.items():
        path = output_dir / f"{name}.csv"
        table.to_csv(path, index=False)
        written[name] = path
    return written


class ReconciliationFlow(FlowSpec):
    """
    Resolve species names in every configured dataset, write review files,
    then merge everything onto the reference dataset.

    Fill in the overrides file from the review files and run again; the
    overrides are re-applied after every resolution pass.
    """

    config_file = Parameter('config_file', help='Pipeline YAML configuration', default='reconcile.yaml')

    @step
    def start(self):
        self.config = load_config(self.config_file)
        configure_logging(self.config.log_file, self.config.log_level)

        self.snapshot = load_snapshot(self.config.taxonomy)
        log.info(f"Using taxonomy {self.snapshot.version} (fingerprint {self.snapshot.fingerprint[:12]})")
        self.next(self.reconcile)

    @step
    def reconcile(self):
        configure_logging(self.config.log_file, self.config.log_level)
        datasets = {label: load_table(dataset.path) for label, dataset in self.config.datasets.items()}

        self.reconciliation = reconcile_datasets(
            datasets,
            NameResolver(self.snapshot),
            name_columns={label: dataset.name_column for label, dataset in self.config.datasets.items()},
            reference=self.config.reference,
            overrides=load_overrides(self.config),
            rules=build_rules(self.config),
            max_workers=self.config.max_workers,
        )
        self.next(self.report)

    @step
    def report(self):
        configure_logging(self.config.log_file, self.config.log_level)
        self.review_files = {
            label: {name: str(path) for name, path in write_review_files(report, self.config.output_dir).items()}
            for label, report in self.reconciliation.reports.items()
        }
        self.next(self.export)

    @step
    def export(self):
        configure_logging(self.config.log_file, self.config.log_level)
        self.output_files = {
            name: str(path) for name, path in
            write_merge_files(self.reconciliation.merge, self.config.output_dir).items()
        }
        self.next(self.end)

    @step
    def end(self):
        configure_logging(self.config.log_file, self.config.log_level)
        merge = self.reconciliation.merge
        log.success(f"Merged {len(merge.merged):,} rows; {len(merge.excluded_names)} duplicate groups excluded")


if __name__ == "__main__":
    ReconciliationFlow()
