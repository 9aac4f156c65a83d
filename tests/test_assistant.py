"""Tests for the Bedrock study assistant."""
import json
import pytest
from unittest.mock import MagicMock
from botocore.exceptions import ClientError

from study_ingest.assistant import BedrockStudyAssistant, parse_json_array
from study_ingest.errors import ConfigurationError, ProviderError, ProviderUnavailable
from study_ingest.models import PracticeQuestion, SummaryLevel
from study_ingest.retry import RetryPolicy

from conftest import claude_response


def make_assistant(bedrock):
    return BedrockStudyAssistant(
        claude_model="anthropic.claude-test",
        retry_policy=RetryPolicy(max_retries=1, sleep=lambda s: None),
        bedrock_client=bedrock,
    )


def sent_request(bedrock):
    return json.loads(bedrock.invoke_model.call_args.kwargs["body"])


class TestParseJsonArray:
    def test_plain(self):
        assert parse_json_array('[{"a": 1}]') == [{"a": 1}]

    def test_code_fence_and_prose(self):
        reply = 'Here you go:\n```json\n[{"term": "Cell"}]\n```\nHope this helps.'
        assert parse_json_array(reply) == [{"term": "Cell"}]

    @pytest.mark.parametrize("reply", ["no json here", "[not valid json", '{"a": 1}'])
    def test_malformed(self, reply):
        with pytest.raises(ProviderError):
            parse_json_array(reply)


class TestBedrockStudyAssistant:
    """Tests for BedrockStudyAssistant."""

    def test_requires_model(self):
        with pytest.raises(ConfigurationError):
            BedrockStudyAssistant(claude_model=None, bedrock_client=MagicMock())

    def test_summarize(self):
        bedrock = MagicMock()
        bedrock.invoke_model.return_value = claude_response("  A short summary.  ")

        result = make_assistant(bedrock).summarize("Some chapter text", SummaryLevel.BRIEF)

        assert result == "A short summary."
        request = sent_request(bedrock)
        assert request["anthropic_version"] == "bedrock-2023-05-31"
        assert request["max_tokens"] == 200
        assert "2-3 sentences" in request["messages"][0]["content"][0]["text"]
        assert bedrock.invoke_model.call_args.kwargs["modelId"] == "anthropic.claude-test"

    def test_summarize_accepts_level_value(self):
        bedrock = MagicMock()
        bedrock.invoke_model.return_value = claude_response("Detailed.")
        make_assistant(bedrock).summarize("text", "detailed")
        assert sent_request(bedrock)["max_tokens"] == 1500

    def test_extract_concepts(self):
        bedrock = MagicMock()
        bedrock.invoke_model.return_value = claude_response(json.dumps([
            {"term": "Osmosis", "definition": "Water movement", "category": "process"},
            {"definition": "missing term"},
            {"term": "Cell", "definition": "Unit of life"},
        ]))

        concepts = make_assistant(bedrock).extract_concepts("text")

        assert [c.term for c in concepts] == ["Osmosis", "Cell"]
        assert concepts[0].category == "process"
        assert concepts[1].category is None

    def test_generate_questions_truncates_to_count(self):
        bedrock = MagicMock()
        bedrock.invoke_model.return_value = claude_response(json.dumps([
            {"question": f"Q{i}?", "answer": f"A{i}"} for i in range(4)
        ]))

        questions = make_assistant(bedrock).generate_questions("text", 2)

        assert questions == [PracticeQuestion("Q0?", "A0"), PracticeQuestion("Q1?", "A1")]

    def test_malformed_reply_is_provider_error(self):
        bedrock = MagicMock()
        bedrock.invoke_model.return_value = claude_response("I cannot do that.")
        with pytest.raises(ProviderError):
            make_assistant(bedrock).generate_questions("text", 3)

    def test_answer_with_context_and_history(self):
        bedrock = MagicMock()
        bedrock.invoke_model.return_value = claude_response(
            "Osmosis moves water [Page 4]. See also [Page 2] and [Page 4]."
        )
        history = [{"role": "user", "content": "Hi"}, {"role": "assistant", "content": "Hello"}]

        result = make_assistant(bedrock).answer("What is osmosis?", "[Page 4] Osmosis is...", history)

        assert result.citations == ["Page 2", "Page 4"]
        request = sent_request(bedrock)
        assert [m["role"] for m in request["messages"]] == ["user", "assistant", "user"]
        assert "[Page 4] Osmosis is..." in request["messages"][-1]["content"][0]["text"]
        assert "system" in request

    def test_answer_without_context(self):
        bedrock = MagicMock()
        bedrock.invoke_model.return_value = claude_response("Generally speaking...")

        result = make_assistant(bedrock).answer("What is osmosis?", "")

        assert result.citations == []
        assert "No excerpts" in sent_request(bedrock)["messages"][-1]["content"][0]["text"]

    def test_throttling_retried_then_unavailable(self):
        bedrock = MagicMock()
        bedrock.invoke_model.side_effect = ClientError(
            {"Error": {"Code": "ThrottlingException", "Message": "slow down"},
             "ResponseMetadata": {"HTTPStatusCode": 429}},
            "InvokeModel",
        )

        with pytest.raises(ProviderUnavailable):
            make_assistant(bedrock).summarize("text", SummaryLevel.STANDARD)
        assert bedrock.invoke_model.call_count == 2

    def test_empty_content(self):
        bedrock = MagicMock()
        body = MagicMock()
        body.read.return_value = json.dumps({"content": []})
        bedrock.invoke_model.return_value = {"body": body}

        with pytest.raises(ProviderError):
            make_assistant(bedrock).summarize("text", SummaryLevel.BRIEF)
