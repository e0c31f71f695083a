from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from loguru import logger

from reconcile.names import clean_name
from reconcile.store import TaxonomySnapshot

log = logger.bind(tags=['resolver'])


class Status(str, Enum):
    CURRENT = 'current'
    UPDATED = 'updated'
    AMBIGUOUS = 'ambiguous'
    NOT_FOUND = 'not_found'
    OVERRIDDEN = 'overridden'

    def __str__(self):
        return self.value


@dataclass(frozen=True)
class ResolutionResult:
    query: str
    candidates: Tuple[str, ...]
    status: Status
    snapshot: str
    previous_status: Optional[Status] = None

    @property
    def final_name(self) -> Optional[str]:
        """The single chosen canonical name, None while unresolved"""
        if len(self.candidates) == 1:
            return self.candidates[0]
        return None

    @property
    def needs_review(self) -> bool:
        return self.status in (Status.AMBIGUOUS, Status.NOT_FOUND)


class NameResolver:
    """
    Maps query names onto the canonical names of one taxonomy snapshot.

    Resolution is a pure function of (query, snapshot), so results are
    memoized per resolver. Overrides are never applied here.
    """

    def __init__(self, snapshot: TaxonomySnapshot):
        self.snapshot = snapshot
        self._cache: Dict[str, ResolutionResult] = {}

    def resolve(self, query) -> ResolutionResult:
        raw = '' if query is None else query
        cached = self._cache.get(raw) if isinstance(raw, str) else None
        if cached is not None:
            return cached

        result = self._classify(raw)
        if isinstance(raw, str):
            self._cache[raw] = result
        return result

    def _classify(self, raw) -> ResolutionResult:
        query = raw if isinstance(raw, str) else clean_name(raw)
        version = self.snapshot.version

        if not clean_name(raw):
            return ResolutionResult(query, (), Status.NOT_FOUND, version)

        canonical = self.snapshot.canonical_for(raw)
        if canonical is not None:
            return ResolutionResult(query, (canonical,), Status.CURRENT, version)

        candidates = tuple(sorted(self.snapshot.candidates_for(raw)))
        if not candidates:
            return ResolutionResult(query, (), Status.NOT_FOUND, version)
        if len(candidates) == 1:
            return ResolutionResult(query, candidates, Status.UPDATED, version)
        return ResolutionResult(query, candidates, Status.AMBIGUOUS, version)

    def resolve_all(self, names: Iterable, max_workers: Optional[int] = None) -> List[ResolutionResult]:
        """Resolve in input order; threads only when max_workers > 1"""
        names = list(names)
        if max_workers and max_workers > 1 and len(names) > 1:
            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                results = list(executor.map(self.resolve, names))
        else:
            results = [self.resolve(name) for name in names]

        log.info(f"Resolved {len(results):,} names against snapshot {self.snapshot.version}")
        return results
