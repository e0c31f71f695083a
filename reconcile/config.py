import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

import yaml
from dotenv import load_dotenv

from reconcile.errors import ConfigError

load_dotenv()

TAXONOMY_FORMATS = ('pairs', 'history', 'postgres')
DUPLICATE_RULES = ('exclude', 'prefer_exact')


@dataclass
class TaxonomySource:
    """Where the reference taxonomy comes from"""
    format: str = 'pairs'
    path: Optional[str] = None
    version: Optional[str] = None

    # pairs: one (canonical, synonym) row each
    canonical_column: str = 'canonical'
    synonym_column: str = 'synonym'

    # history: canonical list plus (old, current) rows
    history_path: Optional[str] = None
    old_column: str = 'old_name'
    current_column: str = 'current_name'

    # postgres: taxonomy.taxa layout
    schema_name: str = 'taxonomy'


@dataclass
class DatasetSource:
    path: str
    name_column: str


@dataclass
class ReconcileConfig:
    taxonomy: TaxonomySource
    reference: str
    datasets: Dict[str, DatasetSource]
    overrides_path: Optional[str] = None
    duplicate_rule: str = 'exclude'
    output_dir: str = 'output'
    log_file: Optional[str] = None
    log_level: str = 'INFO'
    max_workers: int = 1


def _resolve(path, base_dir: Optional[Path]):
    """Relative paths are relative to the config file"""
    if not path or base_dir is None or Path(path).is_absolute():
        return path
    return str(base_dir / path)


def _taxonomy_from_dict(data: dict, base_dir: Optional[Path] = None) -> TaxonomySource:
    unknown = set(data) - set(TaxonomySource.__dataclass_fields__)
    if unknown:
        raise ConfigError(f"Unknown taxonomy keys: {sorted(unknown)}")

    source = TaxonomySource(**data)
    source.path = _resolve(source.path, base_dir)
    source.history_path = _resolve(source.history_path, base_dir)
    if source.format not in TAXONOMY_FORMATS:
        raise ConfigError(f"taxonomy.format must be one of {TAXONOMY_FORMATS}, got {source.format!r}")
    if source.format != 'postgres' and not source.path:
        raise ConfigError(f"taxonomy.path is required for the {source.format} format")
    if source.format == 'history' and not source.history_path:
        raise ConfigError("taxonomy.history_path is required for the history format")
    return source


def parse_config(data: dict, base_dir: Optional[Path] = None) -> ReconcileConfig:
    """Validate a raw config mapping and apply environment overrides"""
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping")

    required = ['taxonomy', 'reference', 'datasets']
    missing = [key for key in required if key not in data]
    if missing:
        raise ConfigError(f"Missing required configuration keys: {missing}")

    datasets = {}
    for label, spec in (data['datasets'] or {}).items():
        if not isinstance(spec, dict) or 'path' not in spec or 'name_column' not in spec:
            raise ConfigError(f"Dataset '{label}' needs 'path' and 'name_column'")
        datasets[label] = DatasetSource(path=_resolve(spec['path'], base_dir), name_column=spec['name_column'])

    if data['reference'] not in datasets:
        raise ConfigError(f"Reference dataset '{data['reference']}' is not listed under datasets")

    config = ReconcileConfig(
        taxonomy=_taxonomy_from_dict(data['taxonomy'] or {}, base_dir),
        reference=data['reference'],
        datasets=datasets,
        overrides_path=_resolve(data.get('overrides'), base_dir),
        duplicate_rule=data.get('duplicate_rule', 'exclude'),
        output_dir=data.get('output_dir', 'output'),
        log_file=data.get('log_file'),
        log_level=data.get('log_level', 'INFO'),
        max_workers=int(data.get('max_workers', 1)),
    )

    # Environment wins over the file
    config.log_level = os.getenv('RECONCILE_LOG_LEVEL', config.log_level).upper()
    config.log_file = os.getenv('RECONCILE_LOG_FILE', config.log_file)
    config.output_dir = os.getenv('RECONCILE_OUTPUT_DIR', config.output_dir)
    workers = os.getenv('RECONCILE_MAX_WORKERS')
    if workers:
        try:
            config.max_workers = int(workers)
        except ValueError:
            raise ConfigError(f"RECONCILE_MAX_WORKERS must be an integer, got {workers!r}")

    if config.duplicate_rule not in DUPLICATE_RULES:
        raise ConfigError(f"duplicate_rule must be one of {DUPLICATE_RULES}, got {config.duplicate_rule!r}")

    return config


def load_config(config_file='reconcile.yaml') -> ReconcileConfig:
    """Load the pipeline configuration from a YAML file"""
    path = Path(config_file)
    if not path.exists():
        raise ConfigError(f"Configuration file '{config_file}' not found")

    try:
        with open(path, 'r', encoding='utf-8') as file:
            data = yaml.safe_load(file)
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing YAML configuration: {e}") from e

    return parse_config(data, base_dir=path.parent)
