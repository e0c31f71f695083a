from collections import Counter, defaultdict
from typing import Dict, List, Tuple

import pandas as pd
from loguru import logger

from reconcile.names import name_key
from reconcile.resolver import ResolutionResult, Status

log = logger.bind(tags=['report'])


class ReconciliationReport:
    """
    Read-only view over a set of resolution results.

    Build it from results with overrides already applied: overrides can both
    create and remove duplicate final names.
    """

    def __init__(self, results: List[ResolutionResult], label: str = 'dataset'):
        self.results = list(results)
        self.label = label

    def counts(self) -> Dict[Status, int]:
        tally = Counter(result.status for result in self.results)
        return {status: tally.get(status, 0) for status in Status}

    def not_found(self) -> List[str]:
        return [r.query for r in self.results if r.status == Status.NOT_FOUND]

    def ambiguous(self) -> List[Tuple[str, Tuple[str, ...]]]:
        return [(r.query, r.candidates) for r in self.results if r.status == Status.AMBIGUOUS]

    def updated(self) -> List[Tuple[str, str]]:
        return [(r.query, r.final_name) for r in self.results if r.status == Status.UPDATED]

    def overridden(self) -> List[Tuple[str, str]]:
        return [(r.query, r.final_name) for r in self.results if r.status == Status.OVERRIDDEN]

    def pending_review(self) -> List[ResolutionResult]:
        return [r for r in self.results if r.needs_review]

    def duplicates(self) -> List[ResolutionResult]:
        """Rows whose final name is shared with at least one other row"""
        finals = Counter(r.final_name for r in self.results if r.final_name is not None)
        return [r for r in self.results if r.final_name is not None and finals[r.final_name] > 1]

    def duplicate_names(self) -> List[str]:
        return sorted({r.final_name for r in self.duplicates()})

    def collisions(self) -> List[ResolutionResult]:
        """
        Duplicate rows whose final name is reached from two or more distinct
        query names. Repeated rows for one query name are left out.
        """
        duplicates = self.duplicates()
        queries = defaultdict(set)
        for r in duplicates:
            queries[r.final_name].add(name_key(r.query))
        return [r for r in duplicates if len(queries[r.final_name]) > 1]

    def collision_names(self) -> List[str]:
        return sorted({r.final_name for r in self.collisions()})

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({
            'query': [r.query for r in self.results],
            'final_name': [r.final_name for r in self.results],
            'status': [r.status.value for r in self.results],
            'candidates': ['; '.join(r.candidates) for r in self.results],
            'previous_status': [r.previous_status.value if r.previous_status else None for r in self.results],
            'snapshot': [r.snapshot for r in self.results],
        })

    def log_summary(self):
        counts = self.counts()
        total = len(self.results)
        log.info(f"=== {self.label.upper()}: {total:,} names ===")
        for status, count in counts.items():
            percentage = (count / total * 100) if total else 0.0
            log.info(f"  {status.value}: {count:,} ({percentage:.1f}%)")

        duplicates = self.duplicate_names()
        if duplicates:
            log.warning(f"{len(duplicates)} final names are shared by several rows: {', '.join(duplicates[:10])}")
        collisions = self.collision_names()
        if collisions:
            log.warning(f"{len(collisions)} final names are reached from different query names: {', '.join(collisions[:10])}")
        pending = len(self.pending_review())
        if pending:
            log.warning(f"{pending} names need manual review (not found or ambiguous)")
