"""Tests for the system reliability insight."""

from datetime import timedelta

import pytest

from assetflow_core.domain.assets import StageStatus
from assetflow_core.domain.incidents import IncidentReport, IncidentSeverity, SourceType
from tests.app.reliability.fakes import (
    FIXED_NOW,
    FakeActivitySink,
    FakeAssetRepository,
    FakeClassifier,
    FakeIncidentRepository,
    fixed_clock,
    make_asset,
)

GOOD_RESPONSE = (
    '{"summary": "Thumbnail processing is backing up.", "severity": "high", '
    '"root_causes": ["processor crashes on PSD files"], '
    '"recommendations": ["Check the thumbnail worker", "Re-run stuck assets"]}'
)


@pytest.fixture
def stores():
    assets = FakeAssetRepository(
        make_asset("stuck-1", analysis_status="generating_thumbnails", updated_at=FIXED_NOW - timedelta(hours=2)),
        make_asset("fresh-1", analysis_status="generating_thumbnails", updated_at=FIXED_NOW),
    )
    incidents = FakeIncidentRepository()
    incidents.record(
        IncidentReport(
            source_type=SourceType.JOB,
            source_id="stuck-1",
            tenant_id="tenant-1",
            severity=IncidentSeverity.CRITICAL,
            title="thumbnail failed: storage_missing",
            message="original.psd",
            requires_support=True,
            unique_signature="stage_failed:thumbnail:stuck-1",
        )
    )
    return {"assets": assets, "incidents": incidents, "activity": FakeActivitySink()}


def build_service(stores, classifier):
    from app.reliability.services.insights import ReliabilityInsightService

    return ReliabilityInsightService(
        assets=stores["assets"],
        incidents=stores["incidents"],
        classifier=classifier,
        activity=stores["activity"],
        stuck_after_minutes=30,
        clock=fixed_clock,
    )


class TestParseInsight:
    def test_well_formed_json(self):
        from app.reliability.services.insights import InsightSeverity, parse_insight

        insight = parse_insight(f"Here you go:\n{GOOD_RESPONSE}")

        assert insight.parsed is True
        assert insight.severity == InsightSeverity.HIGH
        assert insight.summary == "Thumbnail processing is backing up."
        assert insight.root_causes == ["processor crashes on PSD files"]
        assert len(insight.recommendations) == 2

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("Overall the risk is critical, disk is full.", "critical"),
            ("Severity: HIGH because of queue growth.", "high"),
            ("Failure volume is low today.", "low"),
            ("Nothing conclusive; the slow queue may need attention.", "medium"),
            ("", "medium"),
        ],
    )
    def test_text_response_falls_back_to_keywords(self, raw, expected):
        from app.reliability.services.insights import DEFAULT_INSIGHT_SUMMARY, parse_insight

        insight = parse_insight(raw)

        assert insight.parsed is False
        assert insight.severity.value == expected
        assert insight.summary == (raw or DEFAULT_INSIGHT_SUMMARY)
        assert insight.root_causes == []

    def test_unknown_severity_in_json_uses_keywords(self):
        from app.reliability.services.insights import InsightSeverity, parse_insight

        insight = parse_insight('{"summary": "Critical storage outage", "severity": "urgent"}')

        assert insight.parsed is False
        assert insight.severity == InsightSeverity.CRITICAL

    def test_missing_summary_and_bad_lists(self):
        from app.reliability.services.insights import DEFAULT_INSIGHT_SUMMARY, parse_insight

        insight = parse_insight('{"severity": "low", "root_causes": "none", "recommendations": [null, "Retry", " "]}')

        assert insight.summary == DEFAULT_INSIGHT_SUMMARY
        assert insight.root_causes == []
        assert insight.recommendations == ["Retry"]

    def test_long_text_summary_is_truncated(self):
        from app.reliability.services.insights import MAX_SUMMARY_CHARS, parse_insight

        assert len(parse_insight("x" * 2000).summary) == MAX_SUMMARY_CHARS


class TestReliabilityInsightService:
    def test_gather_snapshot(self, stores):
        snapshot = build_service(stores, FakeClassifier(GOOD_RESPONSE)).gather()

        assert snapshot.taken_at == FIXED_NOW
        assert [asset.id for asset in snapshot.stuck_assets] == ["stuck-1"]
        assert snapshot.incidents.unresolved == 1
        assert snapshot.incidents.by_severity["critical"] == 1
        assert snapshot.recent_incidents[0].title == "thumbnail failed: storage_missing"

    def test_prompt_carries_counts_and_samples(self, stores):
        classifier = FakeClassifier(GOOD_RESPONSE)

        build_service(stores, classifier).analyze()

        prompt = classifier.prompts[0]
        assert "Assets without pipeline progress for 30+ minutes: 1" in prompt
        assert "Unresolved incidents: 1 (critical=1, error=0, warning=0, info=0)" in prompt
        assert "requiring support: 1" in prompt
        assert "[critical] thumbnail failed: storage_missing" in prompt
        assert "stuck-1 (analysis_status: generating_thumbnails" in prompt
        assert "fresh-1" not in prompt

    def test_analyze_records_insight_activity(self, stores):
        from app.reliability.services.insights import SYSTEM_INSIGHT_AGENT_ID, InsightSeverity

        insight = build_service(stores, FakeClassifier(GOOD_RESPONSE)).analyze()

        assert insight.severity == InsightSeverity.HIGH
        assert insight.stuck_assets == 1
        assert insight.unresolved_incidents == 1
        assert insight.generated_at == FIXED_NOW
        events = stores["activity"].of_type("ai.system_insight")
        assert len(events) == 1
        assert events[0]["tenant_id"] is None
        assert events[0]["subject_type"] == "system"
        assert events[0]["metadata"]["agent_id"] == SYSTEM_INSIGHT_AGENT_ID
        assert events[0]["metadata"]["severity"] == "high"
        assert events[0]["metadata"]["recommendations"] == ["Check the thumbnail worker", "Re-run stuck assets"]

    def test_quiet_system(self):
        stores = {
            "assets": FakeAssetRepository(make_asset(thumbnail_status=StageStatus.COMPLETED)),
            "incidents": FakeIncidentRepository(),
            "activity": FakeActivitySink(),
        }
        classifier = FakeClassifier('{"summary": "All clear.", "severity": "low"}')

        insight = build_service(stores, classifier).analyze()

        assert insight.stuck_assets == 0
        assert insight.unresolved_incidents == 0
        assert "RECENT INCIDENTS" not in classifier.prompts[0]
        assert "STUCK ASSETS" not in classifier.prompts[0]

    def test_classifier_error_propagates_without_activity(self, stores):
        from assetflow_core.domain.exceptions import ClassificationError

        service = build_service(stores, FakeClassifier(error=ClassificationError("openai down")))

        with pytest.raises(ClassificationError):
            service.analyze()

        assert stores["activity"].of_type("ai.system_insight") == []

    def test_never_opens_tickets(self, stores):
        build_service(stores, FakeClassifier('{"severity": "critical", "summary": "Outage"}')).analyze()

        assert stores["incidents"].get(stores["incidents"].list_incidents()[0].id).ticket_id is None
