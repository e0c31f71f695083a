import pytest

from etl.sources import load_name_history, load_synonym_pairs, load_table


@pytest.fixture
def traits_csv(tmp_path):
    path = tmp_path / 'traits.csv'
    path.write_text(
        "species,svl,habitat\n"
        "Rana pipiens,8.5,pond\n"
        "Lithobates_catesbeianus,15.2,lake\n"
        "Bufo granulosus,4.1,savanna\n",
        encoding='utf-8'
    )
    return path


class TestLoadTable:
    """DuckDB-backed CSV/TSV loading"""

    def test_csv_with_detected_types(self, traits_csv):
        frame = load_table(traits_csv)

        assert list(frame.columns) == ['species', 'svl', 'habitat']
        assert len(frame) == 3
        assert frame['svl'].tolist() == [8.5, 15.2, 4.1]

    def test_all_varchar_keeps_text(self, traits_csv):
        frame = load_table(traits_csv, all_varchar=True)
        assert frame['svl'].tolist() == ['8.5', '15.2', '4.1']

    def test_tsv_uses_tab_delimiter(self, tmp_path):
        path = tmp_path / 'risk.tsv'
        path.write_text("name\tcategory\nRana pipiens\tLC\nHyla arborea\tVU\n", encoding='utf-8')

        frame = load_table(path)

        assert list(frame.columns) == ['name', 'category']
        assert frame['category'].tolist() == ['LC', 'VU']

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_table(tmp_path / 'nope.csv')


class TestTaxonomyFiles:
    """Snapshots built straight from files"""

    def test_load_synonym_pairs(self, tmp_path):
        path = tmp_path / 'synonyms.csv'
        path.write_text(
            "canonical,synonym\n"
            "Rana pipiens,Lithobates pipiens\n"
            "Rhinella granulosa,Bufo granulosus\n"
            "Rhinella bernardoi,Bufo granulosus\n"
            "Hyla arborea,\n",
            encoding='utf-8'
        )

        snapshot = load_synonym_pairs(path)

        assert snapshot.version == 'synonyms.csv'
        assert snapshot.canonical_names() == {'Rana pipiens', 'Rhinella granulosa', 'Rhinella bernardoi', 'Hyla arborea'}
        assert snapshot.candidates_for('Bufo granulosus') == {'Rhinella granulosa', 'Rhinella bernardoi'}

    def test_load_synonym_pairs_custom_columns(self, tmp_path):
        path = tmp_path / 'asw.csv'
        path.write_text("accepted,name\nRana pipiens,Lithobates pipiens\n", encoding='utf-8')

        snapshot = load_synonym_pairs(path, canonical_column='accepted', synonym_column='name', version='asw-6.2')

        assert snapshot.version == 'asw-6.2'
        assert snapshot.canonical_for('Rana pipiens') == 'Rana pipiens'

    def test_load_synonym_pairs_missing_columns(self, tmp_path):
        path = tmp_path / 'bad.csv'
        path.write_text("accepted,name\nRana pipiens,Lithobates pipiens\n", encoding='utf-8')

        with pytest.raises(ValueError):
            load_synonym_pairs(path)

    def test_load_name_history(self, tmp_path):
        canonical = tmp_path / 'canonical.csv'
        canonical.write_text("canonical\nRana pipiens\nRana catesbeiana\n", encoding='utf-8')
        history = tmp_path / 'history.csv'
        history.write_text(
            "old_name,current_name\n"
            "Lithobates pipiens,Rana pipiens\n"
            "Lithobates catesbeianus,Rana catesbeiana\n",
            encoding='utf-8'
        )

        snapshot = load_name_history(canonical, history)

        assert snapshot.version == 'canonical.csv+history.csv'
        assert snapshot.candidates_for('Lithobates catesbeianus') == {'Rana catesbeiana'}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
