from __future__ import annotations

import asyncio
import itertools

from fakes import FakeDiffRepository, StubDiffer
from rivalwatch.report_service import ENRICHMENT_ERROR_KEY, NO_DIFFS_MESSAGE, ReportService
from rivalwatch.schemas.diff import DiffAnalysis
from rivalwatch.schemas.report import AggregatedReport, ReportRequest

WEEK = "12"


def _repo_with(diffs: dict[str, DiffAnalysis], failing: set[str] | None = None) -> FakeDiffRepository:
    repo = FakeDiffRepository(failing_urls=failing)
    for url, analysis in diffs.items():
        asyncio.run(repo.insert(url=url, run_id1="1", run_id2="7", week_number=WEEK, differences=analysis))
    return repo


def _report(service: ReportService, urls: list[str], **kwargs) -> AggregatedReport:
    request = ReportRequest(urls=urls, run_id1="1", run_id2="7", week_number=WEEK, competitor="Rival", **kwargs)
    return asyncio.run(service.generate_report(request))


def _assert_accounted(report: AggregatedReport) -> None:
    processed = report.metadata.processed_urls
    assert len(processed.successful) + len(processed.failed) + len(processed.skipped) == report.metadata.url_count
    for url in processed.failed + processed.skipped:
        assert url in report.metadata.errors


def test_mixed_outcomes_are_classified_per_url() -> None:
    repo = _repo_with({"a": DiffAnalysis(pricing=["Price up"])}, failing={"c"})
    report = _report(ReportService(repo, StubDiffer()), ["a", "b", "c"])

    processed = report.metadata.processed_urls
    assert processed.successful == ["a"]
    assert processed.skipped == ["b"]
    assert processed.failed == ["c"]
    assert report.metadata.errors["b"] == NO_DIFFS_MESSAGE
    assert "database unavailable" in report.metadata.errors["c"]
    assert "a" not in report.metadata.errors
    stats = report.metadata.processing_stats
    assert (stats.total_urls, stats.success_count, stats.skipped_count, stats.failure_count) == (3, 1, 1, 1)
    assert report.categories["pricing"].changes == ["Price up"]
    assert report.categories["pricing"].urls == {"a": ["Price up"]}
    _assert_accounted(report)


def test_changes_are_deduplicated_across_urls_and_attributed() -> None:
    repo = _repo_with(
        {
            "a": DiffAnalysis(pricing=["Free tier removed", "Pro now $20"]),
            "b": DiffAnalysis(pricing=["Pro now $20"], product=["Added SSO"]),
        }
    )
    report = _report(ReportService(repo, StubDiffer()), ["a", "b"])

    pricing = report.categories["pricing"]
    assert pricing.changes == ["Free tier removed", "Pro now $20"]
    assert pricing.urls == {"a": ["Free tier removed", "Pro now $20"], "b": ["Pro now $20"]}
    for category in report.categories.values():
        for url_changes in category.urls.values():
            assert set(url_changes) <= set(category.changes)
    assert report.categories["branding"].changes == []


def test_report_is_independent_of_url_order() -> None:
    repo = _repo_with(
        {
            "a": DiffAnalysis(pricing=["x", "y"]),
            "b": DiffAnalysis(pricing=["y", "z"], branding=["new logo"]),
            "c": DiffAnalysis(positioning=["now targets enterprise"]),
        }
    )
    service = ReportService(repo, StubDiffer())
    baseline = None
    for order in itertools.permutations(["a", "b", "c", "d"]):
        report = _report(service, list(order))
        snapshot = (
            {name: set(cat.changes) for name, cat in report.categories.items()},
            report.metadata.processed_urls.model_dump(),
        )
        baseline = baseline or snapshot
        assert snapshot == baseline
        _assert_accounted(report)


def test_empty_url_list_produces_empty_report() -> None:
    report = _report(ReportService(FakeDiffRepository(), StubDiffer()), [])
    assert report.metadata.url_count == 0
    _assert_accounted(report)


def test_enrichment_attaches_summaries_only_to_changed_categories() -> None:
    repo = _repo_with({"a": DiffAnalysis(pricing=["Price up"])})
    differ = StubDiffer(summaries={"pricing": "Prices climbing.", "branding": "Nothing new."})
    report = _report(ReportService(repo, differ), ["a"], enriched=True)

    assert report.metadata.enriched is True
    assert report.categories["pricing"].summary == "Prices climbing."
    assert report.categories["branding"].summary is None


def test_enrichment_failure_degrades_instead_of_failing() -> None:
    repo = _repo_with({"a": DiffAnalysis(pricing=["Price up"])})
    differ = StubDiffer(summarize_error=RuntimeError("model overloaded"))
    service = ReportService(repo, differ)
    raw = _report(service, ["a"])

    enriched = asyncio.run(service.enrich_report(raw))

    assert enriched.metadata.enriched is False
    assert enriched.metadata.errors[ENRICHMENT_ERROR_KEY] == "model overloaded"
    assert enriched.categories["pricing"].changes == ["Price up"]
    assert enriched.metadata.processed_urls.successful == ["a"]
    assert ENRICHMENT_ERROR_KEY not in raw.metadata.errors


def test_enrichment_skips_model_when_nothing_changed() -> None:
    repo = _repo_with({"a": DiffAnalysis()})
    differ = StubDiffer(summarize_error=RuntimeError("should not be called"))
    report = _report(ReportService(repo, differ), ["a"], enriched=True)

    assert differ.summarize_calls == 0
    assert report.metadata.enriched is True
    assert ENRICHMENT_ERROR_KEY not in report.metadata.errors
    assert all(category.summary is None for category in report.categories.values())
