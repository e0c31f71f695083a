import math
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from loguru import logger

log = logger.bind(tags=['names'])


def clean_name(name) -> str:
    """Display form of a name: underscores to spaces, whitespace collapsed"""
    if name is None:
        return ''
    if isinstance(name, float) and math.isnan(name):
        return ''
    return ' '.join(str(name).replace('_', ' ').split())


def name_key(name) -> str:
    """Lookup key shared by the store, the resolver and overrides"""
    return clean_name(name).casefold()


@dataclass(frozen=True)
class NormalizationIssue:
    raw: str
    cleaned: str
    kind: str  # 'separator' or 'whitespace'


@dataclass
class NormalizationReport:
    """
    Names whose raw spelling disagrees with the normalized convention.

    Mismatched conventions otherwise show up as NOT_FOUND results that look
    exactly like genuine taxonomic gaps.
    """
    issues: List[NormalizationIssue] = field(default_factory=list)
    collisions: Dict[str, List[str]] = field(default_factory=dict)
    rescued: List[str] = field(default_factory=list)

    @property
    def has_issues(self) -> bool:
        return bool(self.issues or self.collisions or self.rescued)

    def by_kind(self, kind: str) -> List[str]:
        return [issue.raw for issue in self.issues if issue.kind == kind]


def check_normalization(query_names: Iterable, snapshot=None) -> NormalizationReport:
    """Compare raw and normalized query names, optionally against a snapshot"""
    report = NormalizationReport()
    keyed = defaultdict(list)
    seen = set()

    for raw in query_names:
        cleaned = clean_name(raw)
        if not cleaned:
            continue
        raw = str(raw)
        if raw in seen:
            continue
        seen.add(raw)

        if '_' in raw:
            report.issues.append(NormalizationIssue(raw, cleaned, 'separator'))
        elif raw != cleaned:
            report.issues.append(NormalizationIssue(raw, cleaned, 'whitespace'))

        keyed[name_key(cleaned)].append(raw)

        if snapshot is not None and raw not in snapshot.all_names() and snapshot.knows(raw):
            report.rescued.append(raw)

    report.collisions = {key: raws for key, raws in keyed.items() if len(raws) > 1}

    if report.has_issues:
        log.warning(
            f"Normalization: {len(report.by_kind('separator'))} separator, "
            f"{len(report.by_kind('whitespace'))} whitespace, "
            f"{len(report.collisions)} collisions, {len(report.rescued)} rescued"
        )
    return report
