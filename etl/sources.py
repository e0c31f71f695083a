import os
from pathlib import Path
from typing import Optional

import duckdb
import pandas as pd
from loguru import logger

from reconcile.store import TaxonomySnapshot

log = logger.bind(tags=['sources'])

ENCODINGS = ['utf-8', 'latin-1']


def _read_csv_sql(filepath: str, delimiter: Optional[str], all_varchar: bool, encoding: str) -> str:
    safe_path = filepath.replace("'", "''")
    options = [
        'header=true',
        'auto_detect=true',
        f"encoding='{encoding}'",
    ]
    if delimiter:
        options.append(f"delim='{delimiter}'")
    if all_varchar:
        options.append('all_varchar=true')
    return f"SELECT * FROM read_csv('{safe_path}', {', '.join(options)})"


def load_table(filepath, all_varchar: bool = False, delimiter: Optional[str] = None) -> pd.DataFrame:
    """
    Load a CSV/TSV file into pandas through DuckDB's CSV reader.

    Tries each encoding in turn; when type detection fails the file is
    re-read with every column as text.
    """
    filepath = str(filepath)
    if not os.path.exists(filepath):
        raise FileNotFoundError(f"Data file not found: {filepath}")

    if delimiter is None and Path(filepath).suffix.lower() == '.tsv':
        delimiter = '\t'

    attempts = [all_varchar] if all_varchar else [False, True]
    conn = duckdb.connect()
    try:
        for encoding in ENCODINGS:
            for varchar in attempts:
                try:
                    log.debug(f"Reading {filepath} with {encoding} (all_varchar={varchar})")
                    frame = conn.execute(_read_csv_sql(filepath, delimiter, varchar, encoding)).df()
                    log.success(f"Loaded {len(frame):,} rows, {len(frame.columns)} columns from {Path(filepath).name}")
                    return frame
                except duckdb.Error as e:
                    log.debug(f"Read failed with {encoding} (all_varchar={varchar}): {e}")
                    continue
    finally:
        conn.close()

    raise ValueError(f"Could not load {filepath} with any of the encodings {ENCODINGS}")


def _require_columns(frame: pd.DataFrame, columns, filepath):
    missing = [col for col in columns if col not in frame.columns]
    if missing:
        raise ValueError(f"{filepath} is missing columns {missing}; found {list(frame.columns)}")


def load_synonym_pairs(
        filepath,
        canonical_column: str = 'canonical',
        synonym_column: str = 'synonym',
        version: Optional[str] = None
    ) -> TaxonomySnapshot:
    """Snapshot from a table of (canonical, synonym) rows"""
    frame = load_table(filepath, all_varchar=True)
    _require_columns(frame, [canonical_column, synonym_column], filepath)

    pairs = zip(frame[canonical_column].tolist(), frame[synonym_column].tolist())
    return TaxonomySnapshot.from_pairs(pairs, version=version or Path(filepath).name)


def load_name_history(
        canonical_path,
        history_path,
        canonical_column: str = 'canonical',
        old_column: str = 'old_name',
        current_column: str = 'current_name',
        version: Optional[str] = None
    ) -> TaxonomySnapshot:
    """Snapshot from a canonical list plus a name-history table"""
    canonical = load_table(canonical_path, all_varchar=True)
    _require_columns(canonical, [canonical_column], canonical_path)

    history = load_table(history_path, all_varchar=True)
    _require_columns(history, [old_column, current_column], history_path)

    return TaxonomySnapshot.from_history(
        canonical[canonical_column].dropna().tolist(),
        zip(history[old_column].tolist(), history[current_column].tolist()),
        version=version or f"{Path(canonical_path).name}+{Path(history_path).name}",
    )
