"""Tests for the failure classification bridge."""

from unittest.mock import MagicMock, patch

import pytest

from assetflow_core.domain.failures import AISeverity, FailureDomain, FailureRecord
from tests.app.reliability.fakes import (
    FakeActivitySink,
    FakeAssetRepository,
    FakeClassifier,
    FakeFailureRecordRepository,
    FakeIncidentRepository,
    FakePlanService,
    FakeTicketRepository,
    fixed_clock,
)


class TestParseClassification:
    """Lenient parsing of model responses."""

    def test_well_formed_json(self):
        from app.reliability.services.classification import parse_classification

        result = parse_classification(
            '{"severity": "data", "summary": "Corrupt PSD header", "recommendation": "Ask user to re-export"}'
        )

        assert result.severity == AISeverity.DATA
        assert result.summary == "Corrupt PSD header"
        assert result.recommendation == "Ask user to re-export"
        assert result.parsed is True

    def test_json_wrapped_in_prose(self):
        from app.reliability.services.classification import parse_classification

        result = parse_classification('Here you go:\n```json\n{"severity": "SYSTEM", "summary": "x"}\n```')

        assert result.severity == AISeverity.SYSTEM

    def test_regex_extraction_from_broken_json(self):
        from app.reliability.services.classification import parse_classification

        raw = '{"severity": "warning", "summary": "Timed out \\"twice\\"", "recommendation": "retry",'

        result = parse_classification(raw)

        assert result.severity == AISeverity.WARNING
        assert result.summary == 'Timed out "twice"'
        assert result.recommendation == "retry"

    def test_unknown_severity_near_system_falls_back_to_system(self):
        from app.reliability.services.classification import parse_classification

        result = parse_classification("The severity here is clearly a system-level problem")

        assert result.severity == AISeverity.SYSTEM
        assert result.parsed is False

    def test_unparseable_defaults_to_warning(self):
        from app.reliability.services.classification import parse_classification

        result = parse_classification("I could not determine anything useful.")

        assert result.severity == AISeverity.WARNING
        assert result.parsed is False

    @pytest.mark.parametrize("raw", [None, "", "{}", '{"severity": 3}'])
    def test_degenerate_responses(self, raw):
        from app.reliability.services.classification import parse_classification

        assert parse_classification(raw).severity == AISeverity.WARNING


class TestBuildPrompt:
    def test_truncates_trace(self):
        from app.reliability.services.classification import build_prompt

        record = FailureRecord(
            id="up-1", domain=FailureDomain.UPLOAD, failure_count=2, failure_trace="x" * 5000
        )

        prompt = build_prompt(record, trace_limit=2000)

        assert "Record ID: up-1" in prompt
        assert "x" * 2000 in prompt
        assert "x" * 2001 not in prompt

    def test_derivative_details(self):
        from app.reliability.services.classification import build_prompt

        record = FailureRecord(
            id="d-1", domain=FailureDomain.DERIVATIVE, derivative_type="thumbnail", processor="Vips"
        )

        prompt = build_prompt(record)

        assert "Processor: Vips" in prompt
        assert "Codec: unknown" in prompt
        assert "Trace:\n(none)" in prompt


@pytest.fixture
def stores():
    return {
        "assets": FakeAssetRepository(),
        "incidents": FakeIncidentRepository(),
        "tickets": FakeTicketRepository(),
        "failure_records": FakeFailureRecordRepository(),
        "activity": FakeActivitySink(),
    }


def build_service(stores, classifier, plans=None, enabled=True):
    from app.reliability.services.classification import FailureClassificationService
    from app.reliability.services.escalation import EscalationService

    escalation = EscalationService(
        tickets=stores["tickets"],
        incidents=stores["incidents"],
        failure_records=stores["failure_records"],
        assets=stores["assets"],
        activity=stores["activity"],
        clock=fixed_clock,
    )
    return FailureClassificationService(
        failure_records=stores["failure_records"],
        classifier=classifier,
        escalation=escalation,
        plans=plans or FakePlanService(),
        activity=stores["activity"],
        enabled=enabled,
    )


def _add_record(stores, count=3, **fields):
    return stores["failure_records"].add(
        FailureRecord(
            id="up-1",
            domain=FailureDomain.UPLOAD,
            tenant_id="tenant-1",
            failure_reason="transfer_failed",
            failure_count=count,
            **fields,
        )
    )


class TestFailureClassificationService:
    def test_stores_triage_and_creates_ticket(self, stores):
        _add_record(stores)
        classifier = FakeClassifier('{"severity": "system", "summary": "S3 unreachable", "recommendation": "Page infra"}')

        result = build_service(stores, classifier).handle(FailureDomain.UPLOAD, "up-1")

        stored = stores["failure_records"].get(FailureDomain.UPLOAD, "up-1")
        assert stored.ai_severity == AISeverity.SYSTEM
        assert stored.ai_summary == "S3 unreachable"
        assert result.created is True
        assert "AI summary: S3 unreachable" in result.ticket.description
        assert len(stores["activity"].of_type("ai.failure.triaged")) == 1

    def test_classifier_timeout_still_escalates_with_null_summary(self, stores):
        _add_record(stores)
        service = build_service(stores, FakeClassifier(error=TimeoutError("agent timed out")))

        with patch.object(
            service._escalation, "create_ticket_if_needed", wraps=service._escalation.create_ticket_if_needed
        ) as spy:
            result = service.handle(FailureDomain.UPLOAD, "up-1")

        spy.assert_called_once()
        assert spy.call_args.kwargs["ai_summary"] is None
        assert result.created is True
        assert "AI summary: unavailable" in result.ticket.description

    def test_below_threshold_classifies_without_ticket(self, stores):
        _add_record(stores, count=2)
        classifier = FakeClassifier('{"severity": "warning", "summary": "flaky"}')

        result = build_service(stores, classifier).handle(FailureDomain.UPLOAD, "up-1")

        assert len(classifier.prompts) == 1
        assert result.created is False
        assert stores["tickets"].tickets == {}

    def test_plan_without_feature_skips_classifier(self, stores):
        _add_record(stores)
        classifier = FakeClassifier('{"severity": "system"}')

        result = build_service(stores, classifier, plans=FakePlanService(allowed=False)).handle(
            FailureDomain.UPLOAD, "up-1"
        )

        assert classifier.prompts == []
        assert result.created is True

    def test_disabled_skips_classifier(self, stores):
        _add_record(stores)
        classifier = FakeClassifier('{"severity": "system"}')

        build_service(stores, classifier, enabled=False).handle(FailureDomain.UPLOAD, "up-1")

        assert classifier.prompts == []

    def test_missing_record(self, stores):
        result = build_service(stores, FakeClassifier()).handle(FailureDomain.DOWNLOAD, "nope")

        assert result.skipped_reason == "record_missing"

    def test_prompt_excludes_trace_beyond_limit(self, stores):
        _add_record(stores, failure_trace="secret-free trace " * 500)
        classifier = FakeClassifier('{"severity": "warning"}')

        build_service(stores, classifier).handle(FailureDomain.UPLOAD, "up-1")

        trace_part = classifier.prompts[0].split("Trace:\n", 1)[1]
        assert len(trace_part) == 2000


class TestOpenAIFailureClassifier:
    @patch("app.reliability.services.classification.get_openai_client")
    def test_returns_message_content(self, mock_get_client):
        from app.reliability.services.classification import OpenAIFailureClassifier

        mock_client = MagicMock()
        mock_client.chat.completions.create.return_value.choices = [
            MagicMock(message=MagicMock(content='{"severity": "data"}'))
        ]
        mock_get_client.return_value = mock_client

        result = OpenAIFailureClassifier(model="test-model").complete("prompt")

        assert result == '{"severity": "data"}'
        kwargs = mock_client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["messages"][1] == {"role": "user", "content": "prompt"}

    @patch("app.reliability.services.classification.get_openai_client")
    def test_wraps_client_errors(self, mock_get_client):
        from app.reliability.services.classification import OpenAIFailureClassifier
        from assetflow_core.domain.exceptions import ClassificationError

        mock_get_client.side_effect = ValueError("OPENAI_API_KEY not configured")

        with pytest.raises(ClassificationError):
            OpenAIFailureClassifier().complete("prompt")
