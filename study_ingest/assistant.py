"""
Summaries, key concepts, practice questions and answers from Claude on
AWS Bedrock.

Every model call goes through the retry policy. Replies that should be
JSON arrays are parsed leniently (code fences and surrounding prose are
ignored); anything unparseable raises ProviderError so the caller can fall
back.
"""
import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import boto3
from botocore.exceptions import ClientError

from .errors import ConfigurationError, ProviderError, ProviderUnavailable, is_retryable
from .log import get_logger
from .models import ConceptDraft, PracticeQuestion, SummaryLevel
from .retry import RetryPolicy

logger = get_logger(__name__)

_PAGE_REF_RE = re.compile(r"\[Page (\d+)\]")
_JSON_ARRAY_RE = re.compile(r"\[.*\]", re.DOTALL)

SUMMARY_INSTRUCTIONS = {
    SummaryLevel.BRIEF: "Summarize the text below in 2-3 sentences.",
    SummaryLevel.STANDARD: "Summarize the text below in one or two paragraphs covering the main ideas.",
    SummaryLevel.DETAILED: (
        "Write a detailed study summary of the text below. Cover every major idea, "
        "key arguments and examples, using short paragraphs or bullet points."
    ),
}

SUMMARY_MAX_TOKENS = {
    SummaryLevel.BRIEF: 200,
    SummaryLevel.STANDARD: 600,
    SummaryLevel.DETAILED: 1500,
}

# Keeps prompts within the model's context window
MAX_PROMPT_CHARS = 60000


@dataclass
class SynthesizedAnswer:
    answer: str
    citations: List[str] = field(default_factory=list)


class StudyAssistant(ABC):
    """Summarization and answer-synthesis capability used by the pipeline."""

    @abstractmethod
    def summarize(self, text: str, detail_level: SummaryLevel) -> str: ...

    @abstractmethod
    def extract_concepts(self, text: str) -> List[ConceptDraft]: ...

    @abstractmethod
    def generate_questions(self, text: str, count: int) -> List[PracticeQuestion]: ...

    @abstractmethod
    def answer(
        self,
        question: str,
        context: str,
        history: Optional[Sequence[Dict[str, str]]] = None,
    ) -> SynthesizedAnswer: ...


def parse_json_array(reply: str) -> List[Any]:
    """
    Pull the first JSON array out of a model reply.

    Raises:
        ProviderError: No array, or the array does not parse
    """
    cleaned = re.sub(r"```(?:json)?", "", reply).strip()
    match = _JSON_ARRAY_RE.search(cleaned)
    if not match:
        raise ProviderError("Model reply contained no JSON array", provider_name="bedrock")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise ProviderError(f"Model reply was not valid JSON: {e}", provider_name="bedrock")
    if not isinstance(data, list):
        raise ProviderError("Model reply was not a JSON array", provider_name="bedrock")
    return data


class BedrockStudyAssistant(StudyAssistant):
    """Claude on AWS Bedrock."""

    provider_name = "bedrock"

    def __init__(
        self,
        claude_model: Optional[str],
        aws_region: str = "us-east-1",
        retry_policy: Optional[RetryPolicy] = None,
        bedrock_client=None,
    ):
        """
        Args:
            claude_model: Claude model or inference profile ID
            aws_region: AWS region for Bedrock
            retry_policy: Backoff applied to every call
            bedrock_client: Pre-built bedrock-runtime client
        """
        if not claude_model:
            raise ConfigurationError("AWS_BEDROCK_CLAUDE_MODEL is not set", provider_name=self.provider_name)
        self.claude_model = claude_model
        self.bedrock_client = bedrock_client or boto3.client(
            service_name="bedrock-runtime",
            region_name=aws_region
        )
        self.retry_policy = retry_policy or RetryPolicy()

    def _invoke(self, messages: List[Dict[str, Any]], max_tokens: int, system: Optional[str]) -> str:
        native_request: Dict[str, Any] = {
            "anthropic_version": "bedrock-2023-05-31",
            "max_tokens": max_tokens,
            "temperature": 0.2,
            "messages": messages,
        }
        if system:
            native_request["system"] = system

        response = self.bedrock_client.invoke_model(
            modelId=self.claude_model,
            body=json.dumps(native_request)
        )
        model_response = json.loads(response["body"].read())
        content = model_response.get("content") or []
        if not content:
            raise ProviderError(f"Claude returned empty content: {model_response}", provider_name=self.provider_name)
        return content[0]["text"].strip()

    def _call_claude(
        self,
        prompt: str,
        max_tokens: int = 500,
        history: Optional[Sequence[Dict[str, str]]] = None,
        system: Optional[str] = None,
    ) -> str:
        """Call Claude via AWS Bedrock under the retry policy."""
        messages = [
            {"role": m["role"], "content": [{"type": "text", "text": m["content"]}]}
            for m in (history or [])
        ]
        messages.append({"role": "user", "content": [{"type": "text", "text": prompt}]})
        try:
            return self.retry_policy.call(self._invoke, messages, max_tokens, system, operation="claude")
        except ClientError as e:
            if is_retryable(e):
                raise ProviderUnavailable(str(e), provider_name=self.provider_name)
            raise ProviderError(str(e), provider_name=self.provider_name)

    def summarize(self, text: str, detail_level: SummaryLevel) -> str:
        level = SummaryLevel(detail_level)
        prompt = f"""{SUMMARY_INSTRUCTIONS[level]}
Write for a student revising the material. Answer with the summary only.

<text>
{text[:MAX_PROMPT_CHARS]}
</text>"""
        return self._call_claude(prompt, max_tokens=SUMMARY_MAX_TOKENS[level])

    def extract_concepts(self, text: str) -> List[ConceptDraft]:
        prompt = f"""Identify the key concepts a student must know from the text below.
Return ONLY a JSON array of objects with keys "term", "definition" and "category",
where category is one of DEFINITION, THEORY, FORMULA, PROCESS, PERSON, EVENT, TERM, OTHER.

<text>
{text[:MAX_PROMPT_CHARS]}
</text>"""
        items = parse_json_array(self._call_claude(prompt, max_tokens=1500))
        concepts = []
        for item in items:
            if not isinstance(item, dict) or not item.get("term"):
                continue
            concepts.append(ConceptDraft(
                term=str(item["term"]).strip(),
                definition=str(item.get("definition", "")).strip(),
                category=item.get("category"),
            ))
        return concepts

    def generate_questions(self, text: str, count: int) -> List[PracticeQuestion]:
        prompt = f"""Write {count} practice questions that test understanding of the text below.
Return ONLY a JSON array of objects with keys "question" and "answer".

<text>
{text[:MAX_PROMPT_CHARS]}
</text>"""
        items = parse_json_array(self._call_claude(prompt, max_tokens=1500))
        questions = [
            PracticeQuestion.from_dict(item)
            for item in items
            if isinstance(item, dict) and item.get("question")
        ]
        return questions[:count]

    def answer(
        self,
        question: str,
        context: str,
        history: Optional[Sequence[Dict[str, str]]] = None,
    ) -> SynthesizedAnswer:
        system = (
            "You are a patient teacher helping a student understand their study material. "
            "Ground answers in the provided excerpts and cite them as [Page N]. "
            "If the excerpts do not cover the question, say so and answer from general knowledge."
        )
        if context:
            prompt = f"""Study material excerpts:
{context}

Question: {question}"""
        else:
            prompt = f"""No excerpts from the study material matched this question.

Question: {question}"""
        reply = self._call_claude(prompt, max_tokens=1000, history=history, system=system)
        citations = sorted(set(_PAGE_REF_RE.findall(reply)), key=int)
        return SynthesizedAnswer(answer=reply, citations=[f"Page {n}" for n in citations])
