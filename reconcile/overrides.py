from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Mapping, Optional

import pandas as pd
import yaml
from loguru import logger

from reconcile.errors import ConfigError
from reconcile.names import clean_name, name_key
from reconcile.resolver import ResolutionResult, Status

log = logger.bind(tags=['overrides'])


@dataclass
class OverrideAudit:
    applied: List[str] = field(default_factory=list)
    self_mappings: List[str] = field(default_factory=list)
    unused: List[str] = field(default_factory=list)


class Overrides:
    """
    Human adjudications: query name -> chosen canonical name.

    Applied after every resolution pass as a pure transformation; the
    results it is given are never modified.
    """

    def __init__(self, mapping: Mapping[str, str], source: str = 'manual'):
        if source not in ('manual', 'automated'):
            raise ConfigError(f"Unknown override source: {source}")
        self.source = source
        self._choices: Dict[str, str] = {}
        self._queries: Dict[str, str] = {}

        for query, chosen in mapping.items():
            key = name_key(query)
            chosen = clean_name(chosen)
            if not key or not chosen:
                raise ConfigError(f"Override needs both a query and a chosen name: {query!r} -> {chosen!r}")
            previous = self._choices.get(key)
            if previous is not None and previous != chosen:
                raise ConfigError(f"Conflicting overrides for {query!r}: {previous!r} and {chosen!r}")
            self._choices[key] = chosen
            self._queries[key] = clean_name(query)

    @classmethod
    def from_yaml(cls, path, source: str = 'manual') -> 'Overrides':
        """Load a YAML mapping of query name to chosen name"""
        with open(path, 'r', encoding='utf-8') as file:
            data = yaml.safe_load(file) or {}

        if not isinstance(data, dict):
            raise ConfigError(f"Overrides file {path} must contain a mapping")
        # Allow an optional top-level 'overrides:' section
        if set(data) == {'overrides'}:
            data = data['overrides'] or {}

        log.info(f"Loaded {len(data)} overrides from {Path(path).name}")
        return cls(data, source=source)

    @classmethod
    def from_frame(
            cls,
            frame: pd.DataFrame,
            query_column: str = 'query',
            name_column: str = 'final_name',
            source: str = 'manual'
        ) -> 'Overrides':
        missing = [col for col in (query_column, name_column) if col not in frame.columns]
        if missing:
            raise ConfigError(f"Override table is missing columns: {missing}")

        rows = frame[[query_column, name_column]].dropna()
        return cls(dict(zip(rows[query_column], rows[name_column])), source=source)

    def __len__(self):
        return len(self._choices)

    def __contains__(self, query):
        return name_key(query) in self._choices

    def chosen_for(self, query) -> Optional[str]:
        return self._choices.get(name_key(query))

    def apply(self, results: List[ResolutionResult], snapshot=None) -> List[ResolutionResult]:
        """Return new results with overrides merged in"""
        updated = []
        for result in results:
            chosen = self._choices.get(name_key(result.query))
            if chosen is None:
                updated.append(result)
                continue

            if snapshot is not None:
                canonical = snapshot.canonical_for(chosen)
                if canonical is None:
                    log.warning(f"Override {result.query!r} -> {chosen!r}: chosen name is not canonical in {snapshot.version}")
                else:
                    chosen = canonical

            if result.final_name == chosen and result.status != Status.OVERRIDDEN:
                if self.source == 'automated':
                    log.warning(f"Automated override maps {result.query!r} to its current name {chosen!r}; flag for review")
                else:
                    log.debug(f"Override {result.query!r} -> {chosen!r} matches the resolved name, ignored")
                updated.append(result)
                continue

            previous = result.previous_status if result.status == Status.OVERRIDDEN else result.status
            updated.append(replace(
                result,
                candidates=(chosen,),
                status=Status.OVERRIDDEN,
                previous_status=previous,
            ))

        return updated

    def audit(self, results: List[ResolutionResult]) -> OverrideAudit:
        """Which overrides apply, which are self-mappings, which match nothing.

        Expects the results of a resolution pass, before apply().
        """
        audit = OverrideAudit()
        matched = set()

        for result in results:
            key = name_key(result.query)
            chosen = self._choices.get(key)
            if chosen is None or key in matched:
                continue
            matched.add(key)
            if result.final_name is not None and name_key(result.final_name) == name_key(chosen):
                audit.self_mappings.append(self._queries[key])
            else:
                audit.applied.append(self._queries[key])

        audit.unused = [query for key, query in self._queries.items() if key not in matched]
        return audit
