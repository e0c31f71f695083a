from pathlib import Path

import pytest

from reconcile.config import load_config, parse_config
from reconcile.errors import ConfigError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep a developer's .env out of these tests"""
    for var in ('RECONCILE_LOG_LEVEL', 'RECONCILE_LOG_FILE', 'RECONCILE_OUTPUT_DIR', 'RECONCILE_MAX_WORKERS'):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def raw_config():
    return {
        'taxonomy': {'format': 'pairs', 'path': 'data/asw_synonyms.csv', 'version': 'asw-6.2'},
        'reference': 'traits',
        'datasets': {
            'traits': {'path': 'data/traits.csv', 'name_column': 'species'},
            'risk': {'path': 'data/risk.tsv', 'name_column': 'scientific_name'},
        },
        'overrides': 'overrides.yaml',
    }


class TestParseConfig:
    """Validation of the raw mapping"""

    def test_defaults(self, raw_config):
        config = parse_config(raw_config)

        assert config.taxonomy.version == 'asw-6.2'
        assert config.duplicate_rule == 'exclude'
        assert config.max_workers == 1
        assert config.log_level == 'INFO'
        assert config.datasets['risk'].name_column == 'scientific_name'

    def test_missing_required_keys(self):
        with pytest.raises(ConfigError, match='reference'):
            parse_config({'taxonomy': {'path': 'x.csv'}, 'datasets': {}})

    def test_reference_must_be_a_dataset(self, raw_config):
        raw_config['reference'] = 'museum'
        with pytest.raises(ConfigError):
            parse_config(raw_config)

    def test_dataset_needs_name_column(self, raw_config):
        raw_config['datasets']['risk'] = {'path': 'data/risk.tsv'}
        with pytest.raises(ConfigError):
            parse_config(raw_config)

    def test_unknown_duplicate_rule(self, raw_config):
        raw_config['duplicate_rule'] = 'first'
        with pytest.raises(ConfigError):
            parse_config(raw_config)

    def test_unknown_taxonomy_format(self, raw_config):
        raw_config['taxonomy']['format'] = 'excel'
        with pytest.raises(ConfigError):
            parse_config(raw_config)

    def test_unknown_taxonomy_keys(self, raw_config):
        raw_config['taxonomy']['sheet'] = 'Sheet1'
        with pytest.raises(ConfigError, match='sheet'):
            parse_config(raw_config)

    def test_history_format_needs_history_path(self, raw_config):
        raw_config['taxonomy']['format'] = 'history'
        with pytest.raises(ConfigError):
            parse_config(raw_config)

    def test_postgres_format_needs_no_path(self, raw_config):
        raw_config['taxonomy'] = {'format': 'postgres', 'schema_name': 'orchids'}
        config = parse_config(raw_config)
        assert config.taxonomy.schema_name == 'orchids'


class TestEnvironmentOverrides:
    """RECONCILE_* variables win over the file"""

    def test_environment_wins(self, raw_config, monkeypatch):
        monkeypatch.setenv('RECONCILE_LOG_LEVEL', 'debug')
        monkeypatch.setenv('RECONCILE_OUTPUT_DIR', '/tmp/reconcile-out')
        monkeypatch.setenv('RECONCILE_MAX_WORKERS', '8')

        config = parse_config(raw_config)

        assert config.log_level == 'DEBUG'
        assert config.output_dir == '/tmp/reconcile-out'
        assert config.max_workers == 8

    def test_bad_worker_count(self, raw_config, monkeypatch):
        monkeypatch.setenv('RECONCILE_MAX_WORKERS', 'many')
        with pytest.raises(ConfigError):
            parse_config(raw_config)


class TestLoadConfig:

    def test_paths_are_relative_to_the_file(self, tmp_path, raw_config):
        path = tmp_path / 'reconcile.yaml'
        path.write_text(
            "taxonomy:\n"
            "  path: data/asw_synonyms.csv\n"
            "reference: traits\n"
            "datasets:\n"
            "  traits:\n"
            "    path: data/traits.csv\n"
            "    name_column: species\n"
            "overrides: overrides.yaml\n",
            encoding='utf-8'
        )

        config = load_config(path)

        assert Path(config.taxonomy.path) == tmp_path / 'data' / 'asw_synonyms.csv'
        assert Path(config.datasets['traits'].path) == tmp_path / 'data' / 'traits.csv'
        assert Path(config.overrides_path) == tmp_path / 'overrides.yaml'

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(tmp_path / 'missing.yaml')

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / 'reconcile.yaml'
        path.write_text("taxonomy: [unclosed\n", encoding='utf-8')

        with pytest.raises(ConfigError):
            load_config(path)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
