from dataclasses import dataclass, field
from typing import Callable, Dict, Mapping, Optional, Union

import pandas as pd
from loguru import logger

from reconcile.errors import DuplicateFinalName, StructuralMergeFailure
from reconcile.names import clean_name

log = logger.bind(tags=['merge'])

# (canonical name, rows sharing it) -> the rows to keep
DisambiguationRule = Callable[[str, pd.DataFrame], pd.DataFrame]


def exclude_group(canonical: str, group: pd.DataFrame) -> pd.DataFrame:
    """Keep nothing: the whole group is reported as unresolved"""
    return group.iloc[0:0]


def prefer_exact_name(name_column: str) -> DisambiguationRule:
    """Keep the one row whose raw name is the canonical name itself, else drop the group"""

    def rule(canonical: str, group: pd.DataFrame) -> pd.DataFrame:
        exact = group[group[name_column].map(clean_name) == canonical]
        if len(exact) == 1:
            return exact
        return group.iloc[0:0]

    return rule


@dataclass
class MergeResult:
    merged: pd.DataFrame
    unresolved_groups: Dict[str, pd.DataFrame] = field(default_factory=dict)
    unmatched_reference: pd.DataFrame = None
    unmatched_other: pd.DataFrame = None
    collapsed_reference: pd.DataFrame = None  # reference rows dropped by the reference rule

    @property
    def excluded_names(self):
        return sorted(self.unresolved_groups)

    def unresolved_frame(self) -> pd.DataFrame:
        """Every row of every unresolved duplicate group, one table"""
        if not self.unresolved_groups:
            return pd.DataFrame()
        return pd.concat(self.unresolved_groups.values(), ignore_index=True)


def _check_key(frame: pd.DataFrame, key: str, which: str):
    if key not in frame.columns:
        raise StructuralMergeFailure(f"{which} dataset has no '{key}' column")


def _disambiguate(other: pd.DataFrame, key: str, rule: Optional[DisambiguationRule]):
    """Collapse duplicate key groups to at most one row each"""
    dup_mask = other[key].duplicated(keep=False)
    if not dup_mask.any():
        return other, {}

    kept = []
    unresolved = {}
    for canonical, group in other[dup_mask].groupby(key, sort=False):
        chosen = (rule or exclude_group)(canonical, group)

        if not isinstance(chosen, pd.DataFrame) or not chosen.index.isin(group.index).all():
            raise StructuralMergeFailure(f"Disambiguation rule returned rows outside the '{canonical}' group")
        if len(chosen) > 1:
            raise StructuralMergeFailure(
                f"Disambiguation rule kept {len(chosen)} rows for '{canonical}'; at most one is allowed"
            )

        if len(chosen) == 1:
            kept.append(chosen)
        else:
            unresolved[canonical] = group

    keep = ~dup_mask
    for chosen in kept:
        keep |= other.index.isin(chosen.index)
    resolved = other[keep]
    if not resolved[key].is_unique:
        raise StructuralMergeFailure("Join key is still not unique after disambiguation")

    if unresolved:
        log.warning(f"Excluded {len(unresolved)} unresolved duplicate groups: {', '.join(list(unresolved)[:10])}")
    return resolved, unresolved


def merge_datasets(
        reference: pd.DataFrame,
        other: pd.DataFrame,
        key: str = 'final_name',
        rule: Optional[DisambiguationRule] = None,
        label: str = 'other',
        reference_rule: Optional[DisambiguationRule] = None
    ) -> MergeResult:
    """
    Inner join of other onto reference on the final canonical name.

    Output rows follow the reference's row order. Duplicate groups in the
    reference go through reference_rule; any it cannot settle raise
    DuplicateFinalName. Duplicate groups in other go through rule, and
    groups it cannot settle are excluded and reported.
    """
    _check_key(reference, key, 'Reference')
    _check_key(other, key, label.capitalize())

    ref_valid = reference[reference[key].notna()]
    collapsed = reference.iloc[0:0]
    if ref_valid[key].duplicated().any():
        if reference_rule is None:
            ref_unresolved = set(ref_valid.loc[ref_valid[key].duplicated(), key])
        else:
            ref_kept, ref_groups = _disambiguate(ref_valid, key, reference_rule)
            ref_unresolved = set(ref_groups)
            collapsed = ref_valid[~ref_valid.index.isin(ref_kept.index)]
            ref_valid = ref_kept
        if ref_unresolved:
            raise DuplicateFinalName(
                ref_unresolved, f"Reference dataset repeats final names: {sorted(ref_unresolved)[:10]}"
            )
        log.info(f"Reference rule dropped {len(collapsed):,} rows sharing a final name")

    other_valid = other[other[key].notna()]
    resolved_other, unresolved = _disambiguate(other_valid, key, rule)

    try:
        merged = ref_valid.merge(
            resolved_other,
            on=key,
            how='inner',
            sort=False,
            suffixes=('', f"_{label}"),
            validate='one_to_one',
        )
    except pd.errors.MergeError as exc:
        raise StructuralMergeFailure(f"Join with {label} is not one-to-one: {exc}") from exc

    merged = merged.reset_index(drop=True)
    unmatched_reference = reference[~reference[key].isin(merged[key])]
    unmatched_other = other[~other[key].isin(merged[key]) & ~other[key].isin(list(unresolved))]

    log.info(
        f"Merged {label}: {len(merged):,} rows joined, {len(unmatched_reference):,} reference rows unmatched, "
        f"{len(unmatched_other):,} {label} rows unmatched"
    )
    return MergeResult(
        merged=merged,
        unresolved_groups=unresolved,
        unmatched_reference=unmatched_reference,
        unmatched_other=unmatched_other,
        collapsed_reference=collapsed,
    )


def merge_many(
        reference: pd.DataFrame,
        others: Mapping[str, pd.DataFrame],
        key: str = 'final_name',
        rules: Union[None, DisambiguationRule, Mapping[str, DisambiguationRule]] = None,
        reference_rule: Optional[DisambiguationRule] = None
    ) -> MergeResult:
    """Chain merge_datasets over several labelled datasets, in mapping order"""
    merged = reference
    unresolved = {}
    unmatched_other = []
    collapsed = reference.iloc[0:0]

    for position, (label, frame) in enumerate(others.items()):
        rule = rules.get(label) if isinstance(rules, Mapping) else rules
        # after the first join the reference side is unique
        step = merge_datasets(
            merged, frame, key=key, rule=rule, label=label,
            reference_rule=reference_rule if position == 0 else None
        )
        merged = step.merged
        if position == 0:
            collapsed = step.collapsed_reference
        for canonical, group in step.unresolved_groups.items():
            unresolved[f"{label}:{canonical}"] = group.assign(source_dataset=label)
        unmatched_other.append(step.unmatched_other.assign(source_dataset=label))

    return MergeResult(
        merged=merged,
        unresolved_groups=unresolved,
        unmatched_reference=reference[~reference[key].isin(merged[key])],
        unmatched_other=pd.concat(unmatched_other, ignore_index=True) if unmatched_other else pd.DataFrame(),
        collapsed_reference=collapsed,
    )
