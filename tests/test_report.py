import pytest

from reconcile.report import ReconciliationReport
from reconcile.resolver import ResolutionResult, Status


def make_result(query, candidates, status, previous=None):
    return ResolutionResult(query, tuple(candidates), status, 'report-test', previous)


@pytest.fixture
def results():
    return [
        make_result('Rana pipiens', ['Rana pipiens'], Status.CURRENT),
        make_result('Lithobates pipiens', ['Rana pipiens'], Status.UPDATED),
        make_result('Bufo granulosus', ['Rhinella bernardoi', 'Rhinella granulosa'], Status.AMBIGUOUS),
        make_result('Hyla arborea', [], Status.NOT_FOUND),
        make_result('Bufo viridis', ['Bufotes viridis'], Status.OVERRIDDEN, Status.NOT_FOUND),
    ]


class TestReportSubsets:
    """Counts and reviewer-facing subsets"""

    def test_counts_cover_every_status(self, results):
        counts = ReconciliationReport(results).counts()

        assert set(counts) == set(Status)
        assert all(count == 1 for count in counts.values()), counts

    def test_counts_include_zeros(self):
        counts = ReconciliationReport([make_result('Rana pipiens', ['Rana pipiens'], Status.CURRENT)]).counts()
        assert counts[Status.AMBIGUOUS] == 0
        assert counts[Status.CURRENT] == 1

    def test_not_found(self, results):
        assert ReconciliationReport(results).not_found() == ['Hyla arborea']

    def test_ambiguous_lists_all_candidates(self, results):
        assert ReconciliationReport(results).ambiguous() == [
            ('Bufo granulosus', ('Rhinella bernardoi', 'Rhinella granulosa'))
        ]

    def test_updated_and_overridden(self, results):
        report = ReconciliationReport(results)
        assert report.updated() == [('Lithobates pipiens', 'Rana pipiens')]
        assert report.overridden() == [('Bufo viridis', 'Bufotes viridis')]

    def test_pending_review(self, results):
        pending = ReconciliationReport(results).pending_review()
        assert [r.query for r in pending] == ['Bufo granulosus', 'Hyla arborea']


class TestDuplicateDetection:
    """Final names shared by more than one row"""

    def test_duplicate_rows_are_reported(self):
        finals = ['A', 'B', 'A', 'C']
        results = [make_result(f"query {i}", [name], Status.CURRENT) for i, name in enumerate(finals)]

        duplicates = ReconciliationReport(results).duplicates()

        assert len(duplicates) == 2, f"Expected exactly the two 'A' rows, got {duplicates}"
        assert {r.final_name for r in duplicates} == {'A'}
        assert [r.query for r in duplicates] == ['query 0', 'query 2']

    def test_synonym_and_canonical_collapse_together(self, results):
        report = ReconciliationReport(results)
        assert report.duplicate_names() == ['Rana pipiens']

    def test_unresolved_rows_are_never_duplicates(self):
        results = [
            make_result('x', [], Status.NOT_FOUND),
            make_result('y', [], Status.NOT_FOUND),
            make_result('z', ['A', 'B'], Status.AMBIGUOUS),
            make_result('w', ['A', 'B'], Status.AMBIGUOUS),
        ]
        assert ReconciliationReport(results).duplicates() == []

    def test_collisions_need_distinct_query_names(self, results):
        repeats = [make_result('Hyla arborea', ['Hyla arborea'], Status.CURRENT) for _ in range(3)]
        report = ReconciliationReport(results + repeats)

        assert report.duplicate_names() == ['Hyla arborea', 'Rana pipiens']
        assert report.collision_names() == ['Rana pipiens'], "Repeat rows of one query are not a name collision"
        assert [r.query for r in report.collisions()] == ['Rana pipiens', 'Lithobates pipiens']

    def test_collisions_compare_normalized_queries(self):
        results = [
            make_result('Rana pipiens', ['Rana pipiens'], Status.CURRENT),
            make_result('rana_pipiens', ['Rana pipiens'], Status.CURRENT),
        ]
        assert ReconciliationReport(results).collisions() == []

    def test_report_is_rerunnable(self, results):
        report = ReconciliationReport(results)
        first = (report.counts(), report.duplicates(), report.not_found())
        second = (report.counts(), report.duplicates(), report.not_found())

        assert first == second
        assert report.results == results


class TestReportFrame:

    def test_to_frame(self, results):
        frame = ReconciliationReport(results).to_frame()

        assert list(frame.columns) == ['query', 'final_name', 'status', 'candidates', 'previous_status', 'snapshot']
        assert frame.loc[2, 'candidates'] == 'Rhinella bernardoi; Rhinella granulosa'
        assert frame.loc[4, 'previous_status'] == 'not_found'
        assert frame['status'].tolist() == ['current', 'updated', 'ambiguous', 'not_found', 'overridden']

    def test_log_summary_runs_on_empty_report(self):
        ReconciliationReport([]).log_summary()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
