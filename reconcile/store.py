import hashlib
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, Optional, Tuple

from loguru import logger

from reconcile.errors import InvalidTaxonomy
from reconcile.names import clean_name, name_key

log = logger.bind(tags=['taxonomy-store'])


@dataclass(frozen=True, eq=False)
class TaxonomySnapshot:
    """
    Point-in-time reference taxonomy: canonical names and their synonyms.

    Lookups go through name_key, so 'Rana_pipiens' and 'rana  pipiens'
    find the same canonical entry. The snapshot never changes after it is
    built; a newer taxonomy is a new snapshot with a new version.
    """
    version: str
    _canonical: Dict[str, str] = field(repr=False)
    _synonyms: Dict[str, FrozenSet[str]] = field(repr=False)
    _index: Dict[str, FrozenSet[str]] = field(repr=False)
    _names: FrozenSet[str] = field(repr=False)
    fingerprint: str = ''

    @classmethod
    def from_pairs(cls, pairs: Iterable[Tuple[str, str]], version: str = 'unversioned') -> 'TaxonomySnapshot':
        """Build from (canonical, synonym) rows"""
        canonical = {}
        synonyms = defaultdict(set)
        skipped = 0

        for row_number, (canonical_raw, synonym_raw) in enumerate(pairs, start=1):
            display = clean_name(canonical_raw)
            if not display:
                raise InvalidTaxonomy(f"Row {row_number}: empty canonical name (synonym {synonym_raw!r})")

            key = name_key(display)
            # First spelling seen wins as the display form
            display = canonical.setdefault(key, display)
            synonyms[display].add(display)

            synonym = clean_name(synonym_raw)
            if synonym:
                synonyms[display].add(synonym)
            else:
                skipped += 1

        if skipped:
            log.debug(f"Ignored {skipped} rows with an empty synonym")

        return cls._build(canonical, synonyms, version)

    @classmethod
    def from_history(
            cls,
            canonical_names: Iterable[str],
            history: Iterable[Tuple[str, str]],
            version: str = 'unversioned'
        ) -> 'TaxonomySnapshot':
        """Build from a canonical list plus (old name, current name) rows"""
        canonical = {}
        synonyms = defaultdict(set)

        for raw in canonical_names:
            display = clean_name(raw)
            if not display:
                raise InvalidTaxonomy("Empty name in canonical list")
            display = canonical.setdefault(name_key(display), display)
            synonyms[display].add(display)

        orphaned = 0
        for old_raw, current_raw in history:
            current = canonical.get(name_key(current_raw))
            if current is None:
                orphaned += 1
                log.debug(f"History row {old_raw!r} -> {current_raw!r}: current name is not canonical")
                continue
            old = clean_name(old_raw)
            if old:
                synonyms[current].add(old)

        if orphaned:
            log.warning(f"Skipped {orphaned} history rows pointing at non-canonical names")

        return cls._build(canonical, synonyms, version)

    @classmethod
    def _build(cls, canonical: Dict[str, str], synonyms: Dict[str, set], version: str) -> 'TaxonomySnapshot':
        index = defaultdict(set)
        for display, names in synonyms.items():
            for synonym in names:
                index[name_key(synonym)].add(display)

        digest = hashlib.sha256()
        for display in sorted(synonyms):
            for synonym in sorted(synonyms[display]):
                digest.update(f"{display}\t{synonym}\n".encode('utf-8'))

        snapshot = cls(
            version=version,
            _canonical=dict(canonical),
            _synonyms={display: frozenset(names) for display, names in synonyms.items()},
            _index={key: frozenset(names) for key, names in index.items()},
            _names=frozenset(name for names in synonyms.values() for name in names),
            fingerprint=digest.hexdigest(),
        )
        log.info(
            f"Taxonomy snapshot {version}: {len(canonical):,} canonical names, "
            f"{len(index):,} indexed names"
        )
        return snapshot

    def canonical_names(self) -> FrozenSet[str]:
        return frozenset(self._canonical.values())

    def synonyms_of(self, name) -> FrozenSet[str]:
        """Synonyms of a canonical name, including itself; empty if not canonical"""
        display = self._canonical.get(name_key(name))
        if display is None:
            return frozenset()
        return self._synonyms[display]

    def candidates_for(self, query) -> FrozenSet[str]:
        """Canonical names listing query as a synonym"""
        return self._index.get(name_key(query), frozenset())

    def is_canonical(self, name) -> bool:
        return name_key(name) in self._canonical

    def canonical_for(self, name) -> Optional[str]:
        return self._canonical.get(name_key(name))

    def knows(self, name) -> bool:
        return name_key(name) in self._index

    def all_names(self) -> FrozenSet[str]:
        """Every cleaned name in the snapshot, canonical or synonym"""
        return self._names

    def __len__(self) -> int:
        return len(self._canonical)

    def __contains__(self, name) -> bool:
        return self.is_canonical(name)
