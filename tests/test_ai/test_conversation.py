"""Tests for conversation sessions over scan results."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from sentinelhub.ai.conversation import (
    MAX_HISTORY,
    TRIMMED_HISTORY,
    ConversationService,
    ConversationSession,
    actionable_steps,
    build_scan_summary,
    compliance_notes,
    follow_up_questions,
    quick_actions,
    related_findings,
    suggested_questions,
)
from sentinelhub.ai.generator import TextGenerationError, TextGenerator


@pytest.fixture
def scan_results() -> dict:
    return {
        "type": "repository-scan",
        "target": "octo/widgets",
        "findings": {
            "secrets": [{"severity": "critical", "message": "AWS secret key committed", "type": "aws"}],
            "vulnerabilities": [
                {"severity": "high", "message": "Prototype pollution in lodash"},
                {"severity": "medium", "message": "Outdated express version"},
            ],
        },
    }


def make_generator(text: str | None = None, error: Exception | None = None) -> MagicMock:
    generator = MagicMock()
    generator.generate = AsyncMock(return_value=text, side_effect=error)
    return generator


class TestHelpers:
    """Pure helpers used to decorate session and chat responses."""

    def test_scan_summary_counts(self, scan_results):
        summary = build_scan_summary(scan_results)

        assert "Total Findings: 3" in summary
        assert "Critical Issues: 1" in summary
        assert "Risk Level: Critical" in summary
        assert "- SECRETS: AWS secret key committed" in summary

    def test_scan_summary_empty(self):
        assert build_scan_summary(None) == "No scan results available for analysis."

    def test_suggested_questions_follow_categories(self, scan_results):
        questions = suggested_questions(scan_results)

        assert len(questions) == 6
        assert questions[-1] == "How do I properly manage and secure these exposed secrets?"

    def test_quick_actions(self, scan_results):
        titles = [a["title"] for a in quick_actions(scan_results)]
        assert titles == [
            "Address Critical Issues",
            "Secure Exposed Credentials",
            "Patch Vulnerabilities",
            "Create Remediation Plan",
        ]

    def test_quick_actions_always_offer_plan(self):
        assert [a["title"] for a in quick_actions({"findings": {}})] == ["Create Remediation Plan"]

    def test_related_findings_ranked_by_keyword_hits(self, scan_results):
        related = related_findings(scan_results, "how bad is the lodash prototype pollution")

        assert related[0]["message"] == "Prototype pollution in lodash"
        assert related[0]["relevance_score"] == 3
        assert related[0]["category"] == "vulnerabilities"

    def test_related_findings_ignores_short_words(self, scan_results):
        assert related_findings(scan_results, "is it bad") == []

    def test_actionable_steps(self):
        response = "Here is what to do:\n1. Rotate the key today\n- Add a pre-commit hook\n- ok\nThanks"
        assert actionable_steps(response) == ["1. Rotate the key today", "- Add a pre-commit hook"]

    def test_follow_up_questions_prioritize_topics(self):
        questions = follow_up_questions("Restrict access and encrypt the data.")

        assert len(questions) == 4
        assert questions[0] == "How should I configure access controls?"
        assert questions[1] == "What encryption standards should I implement?"

    def test_compliance_notes(self):
        assert compliance_notes("Does this affect GDPR or payment data?") == [
            "GDPR compliance considerations apply",
            "PCI-DSS requirements relevant",
        ]


class TestSession:
    def test_history_trimmed_past_limit(self):
        session = ConversationSession(session_id="sess_x", scan_results={})
        for i in range(MAX_HISTORY + 1):
            session.add("user", f"message {i}")

        assert len(session.history) == TRIMMED_HISTORY
        assert session.history[-1]["content"] == f"message {MAX_HISTORY}"


class TestConversationService:
    """Session lifecycle through the service."""

    @pytest.mark.asyncio
    async def test_start_session_with_ai_overview(self, scan_results):
        service = ConversationService(make_generator("Looks risky: rotate that key."))
        result = await service.start_session(scan_results)

        assert result["session_id"].startswith("sess_")
        assert result["type"] == "security_overview"
        assert result["message"] == "Looks risky: rotate that key."
        assert result["can_chat"] is True
        assert len(service) == 1

    @pytest.mark.asyncio
    async def test_start_session_falls_back_to_structured_overview(self, scan_results):
        service = ConversationService(make_generator(error=TextGenerationError("offline")))
        result = await service.start_session(scan_results)

        assert result["type"] == "structured_overview"
        assert "Total security findings: 3" in result["message"]
        assert "Overall risk level: Critical" in result["message"]

    @pytest.mark.asyncio
    async def test_start_session_rejects_non_mapping(self):
        service = ConversationService(make_generator("x"))
        with pytest.raises(ValueError):
            await service.start_session(None)

    @pytest.mark.asyncio
    async def test_chat_records_turns(self, scan_results):
        generator = make_generator("Overview")
        service = ConversationService(generator)
        session_id = (await service.start_session(scan_results))["session_id"]

        generator.generate.return_value = "1. Revoke the AWS secret key immediately"
        reply = await service.chat(session_id, "What about the secret key?")

        assert reply["type"] == "chat_response"
        assert reply["actionable_steps"] == ["1. Revoke the AWS secret key immediately"]
        assert reply["related_findings"][0]["category"] == "secrets"
        assert [turn["role"] for turn in service.get_session(session_id).history] == [
            "assistant", "user", "assistant",
        ]

    @pytest.mark.asyncio
    async def test_chat_generation_failure_returns_fallback(self, scan_results):
        generator = make_generator("Overview")
        service = ConversationService(generator)
        session_id = (await service.start_session(scan_results))["session_id"]

        generator.generate.side_effect = TextGenerationError("quota")
        reply = await service.chat(session_id, "Help?")

        assert reply["type"] == "fallback_response"
        assert reply["is_error"] is True
        assert len(service.get_session(session_id).history) == 1

    @pytest.mark.asyncio
    async def test_chat_unknown_session(self):
        service = ConversationService(make_generator("x"))
        with pytest.raises(KeyError):
            await service.chat("sess_missing", "hi")

    @pytest.mark.asyncio
    async def test_export(self, scan_results):
        service = ConversationService(make_generator("Overview"))
        session_id = (await service.start_session(scan_results))["session_id"]

        exported = service.export(session_id)
        assert exported["message_count"] == 1
        assert exported["conversation"][0]["content"] == "Overview"

    @pytest.mark.asyncio
    async def test_close_drops_session(self, scan_results):
        service = ConversationService(make_generator("Overview"))
        session_id = (await service.start_session(scan_results))["session_id"]

        assert service.close(session_id) is True
        assert service.get_session(session_id) is None
        assert len(service) == 0
        assert service.close(session_id) is False

    @pytest.mark.asyncio
    async def test_malformed_provider_body_falls_back_to_structured_overview(self, scan_results, respx_mock):
        respx_mock.post("http://ollama.test/api/chat").mock(
            return_value=httpx.Response(200, text="upstream proxy error")
        )
        service = ConversationService(TextGenerator(provider="ollama", base_url="http://ollama.test"))

        result = await service.start_session(scan_results)

        assert result["type"] == "structured_overview"
        assert result["can_chat"] is True
