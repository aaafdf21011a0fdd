"""Tests for ticket classification: JSON extraction, decoding and rule fallback"""
import pytest

from src.core import LLMException
from src.infrastructure.llm import MockLLMClient
from src.triage.application import ClassificationService
from src.triage.domain import RuleBasedClassifier, extract_json_object
from tests.conftest import FailingLLMClient, StubLLMClient, LLM_REPLY


class TestExtractJsonObject:
    def test_prose_around_object(self):
        text = 'Here you go: {"a": 1} and that is all. {"b": 2}'

        assert extract_json_object(text) == '{"a": 1}'

    def test_nested_and_braces_in_strings(self):
        text = 'x {"a": {"b": "} not the end \\" {"}, "c": 1} trailing }'

        assert extract_json_object(text) == '{"a": {"b": "} not the end \\" {"}, "c": 1}'

    def test_no_object(self):
        assert extract_json_object("no json here") is None

    def test_unbalanced(self):
        assert extract_json_object('{"a": {"b": 1}') is None


class TestDecode:
    def test_valid_reply(self):
        result = ClassificationService.decode(LLM_REPLY)

        assert result.priority == "high"
        assert result.summary == "React login page renders blank"
        assert result.helpful_notes.startswith("Check the browser console")
        assert result.related_skills == ["reactjs", "node", "General"]
        assert result.source == "llm"

    def test_missing_field_is_rejected(self):
        with pytest.raises(LLMException):
            ClassificationService.decode('{"summary": "s", "priority": "low", "relatedSkills": []}')

    def test_mistyped_skills_rejected(self):
        reply = '{"summary": "s", "priority": "low", "helpfulNotes": "n", "relatedSkills": "React"}'
        with pytest.raises(LLMException):
            ClassificationService.decode(reply)

    def test_unknown_priority_rejected(self):
        reply = '{"summary": "s", "priority": "urgent", "helpfulNotes": "n", "relatedSkills": []}'
        with pytest.raises(LLMException):
            ClassificationService.decode(reply)

    def test_invalid_json_rejected(self):
        with pytest.raises(LLMException):
            ClassificationService.decode("{summary: nope}")

    def test_empty_reply_rejected(self):
        with pytest.raises(LLMException):
            ClassificationService.decode(None)


class TestRuleBasedClassifier:
    def test_database_down_is_high_with_database_skills(self):
        result = RuleBasedClassifier.classify("Database down", "prod db timeout errors")

        assert result.priority == "high"
        assert "MongoDB" in result.related_skills
        assert result.summary == "Issue with Database down"
        assert result.is_fallback

    @pytest.mark.parametrize("title,description", [
        ("App crashed", "after update"),
        ("Checkout failing", "payment step"),
        ("Requests timed out", "intermittent"),
        ("URGENT", "please help"),
    ])
    def test_high_priority_keywords(self, title, description):
        assert RuleBasedClassifier.classify(title, description).priority == "high"

    def test_question_is_low(self):
        result = RuleBasedClassifier.classify("Question about billing", "How to change my plan?")

        assert result.priority == "low"

    def test_plain_request_is_medium(self):
        result = RuleBasedClassifier.classify("Add dark mode", "Would be nice to have")

        assert result.priority == "medium"
        assert result.related_skills == ["General"]

    def test_words_inside_other_words_do_not_match(self):
        # "download" contains "down"
        result = RuleBasedClassifier.classify("Download page", "looks fine")

        assert result.priority == "medium"

    def test_skill_lexicon_accumulates(self):
        result = RuleBasedClassifier.classify("React app on iOS", "calls a node API")

        assert result.related_skills == ["React", "JavaScript", "Node.js", "Mobile"]

    def test_never_raises_on_missing_text(self):
        result = RuleBasedClassifier.classify(None, None)

        assert result.priority == "medium"
        assert result.summary


class TestClassificationService:
    @pytest.mark.asyncio
    async def test_uses_llm_reply(self):
        client = StubLLMClient(LLM_REPLY)
        service = ClassificationService(client)

        result = await service.classify("Login page broken", "React app shows blank page")

        assert result.source == "llm"
        assert result.priority == "high"
        assert len(client.calls) == 1
        user_prompt = client.calls[0][1]["content"]
        assert "Login page broken" in user_prompt

    @pytest.mark.asyncio
    async def test_unreachable_llm_falls_back(self):
        client = FailingLLMClient()
        service = ClassificationService(client)

        result = await service.classify("Database down", "prod db timeout errors")

        assert client.calls == 1
        assert result.is_fallback
        assert result.priority == "high"

    @pytest.mark.asyncio
    async def test_malformed_reply_falls_back(self):
        service = ClassificationService(StubLLMClient("I cannot help with that."))

        result = await service.classify("How to export data", "question")

        assert result.is_fallback
        assert result.priority == "low"

    @pytest.mark.asyncio
    async def test_no_client_uses_rules(self):
        result = await ClassificationService(None).classify("Server outage", "everything is down")

        assert result.is_fallback
        assert result.priority == "high"

    @pytest.mark.asyncio
    async def test_mock_client_reply_is_decodable(self):
        result = await ClassificationService(MockLLMClient()).classify("t", "d")

        assert result.source == "llm"
        assert result.related_skills == ["javascript", "node"]
