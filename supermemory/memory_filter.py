"""
Smart Memory Filter - decides which exchanges are worth remembering.

The LLM classifies each user/assistant exchange into a strict JSON
decision. When no LLM is configured, the provider fails, or its output
cannot be parsed twice in a row, a deterministic keyword heuristic decides
instead. Callers always get a decision, never an error.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Literal, Optional, Sequence

from .errors import MalformedResponseError
from .llm.base import LLMProvider
from .memory.base import CATEGORIES

logger = logging.getLogger("supermemory.filter")

GREETINGS = {"hi", "hello", "hey", "bye", "goodbye", "thanks", "thank you", "ok", "okay"}

IDENTITY_PHRASES = ("my name is", "i am", "i'm", "i live", "i work")
PREFERENCE_PHRASES = ("i like", "i love", "i prefer", "i hate", "i dislike", "favorite")
PROJECT_PHRASES = ("building", "working on", "project", "developing", "creating")

SYSTEM_PROMPT = (
    "You are a memory management system. "
    "Respond with ONLY a JSON object, no explanation."
)

DECISION_PROMPT = """Analyze this conversation and decide if it should be stored in long-term memory.

CONVERSATION:
User: "{user_text}"
AI: "{assistant_text}"
{context}
ANALYSIS CRITERIA:
1. Personal Information (name, age, location, etc.) - STORE
2. Preferences (likes, dislikes, habits) - STORE
3. Projects/Work (what user is building/doing) - STORE
4. Important Questions & Answers - STORE
5. Casual Greetings (hi, hello, bye) - DON'T STORE
6. Redundant Information (already stored) - DON'T STORE
7. Temporary/Transient Info - DON'T STORE

Respond ONLY with valid JSON (no markdown, no code blocks):
{{
  "shouldStore": true or false,
  "reasoning": "brief explanation",
  "importance": 0.0 to 1.0,
  "extractedFacts": ["fact 1", "fact 2"],
  "category": "personal" | "preference" | "project" | "question" | "casual" | "important"
}}"""


@dataclass
class StoreDecision:
    """Whether to persist an exchange, and how to label it."""
    should_store: bool
    importance: float
    category: str
    extracted_facts: list[str] = field(default_factory=list)
    reasoning: str = ""
    source: Literal["llm", "heuristic"] = "heuristic"


@dataclass
class FilterStats:
    total: int
    stored: int
    skipped: int
    by_category: dict[str, int]
    avg_importance: float


def _contains_phrase(text: str, phrases: Sequence[str]) -> bool:
    return any(re.search(rf"\b{re.escape(phrase)}\b", text) for phrase in phrases)


def heuristic_decision(user_text: str, assistant_text: str) -> StoreDecision:
    """Deterministic keyword classifier used when the LLM path is unavailable."""
    lower = user_text.lower().strip()
    word_count = len(user_text.split())

    if lower.rstrip("!.?").strip() in GREETINGS:
        return StoreDecision(False, 0.1, "casual", [], "Casual greeting")

    if _contains_phrase(lower, IDENTITY_PHRASES):
        return StoreDecision(True, 0.9, "personal", [user_text], "Contains personal information")

    if _contains_phrase(lower, PREFERENCE_PHRASES):
        return StoreDecision(True, 0.8, "preference", [user_text], "Contains user preference")

    if _contains_phrase(lower, PROJECT_PHRASES):
        return StoreDecision(True, 0.9, "project", [user_text], "Contains project information")

    if "?" in lower and word_count > 3:
        return StoreDecision(
            True, 0.7, "question", [user_text, assistant_text], "Important question and answer"
        )

    if word_count > 5:
        return StoreDecision(True, 0.6, "important", [user_text], "Substantial conversation")

    return StoreDecision(False, 0.2, "casual", [], "Too short or casual")


def parse_decision(content: str) -> StoreDecision:
    """
    Parse the LLM's JSON decision.

    Raises:
        MalformedResponseError: Not JSON, or fields of the wrong type/range.
    """
    content = content.strip()

    # Handle potential markdown code blocks
    if content.startswith("```"):
        content = content.split("\n", 1)[1] if "\n" in content else content
        content = content.rsplit("```", 1)[0] if "```" in content else content
        content = content.strip()

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"Decision is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedResponseError(f"Decision must be a JSON object, got {type(data).__name__}")

    should_store = data.get("shouldStore")
    if not isinstance(should_store, bool):
        raise MalformedResponseError(f"shouldStore must be a boolean, got {should_store!r}")

    importance = data.get("importance")
    if isinstance(importance, bool) or not isinstance(importance, (int, float)):
        raise MalformedResponseError(f"importance must be a number, got {importance!r}")
    if not 0.0 <= importance <= 1.0:
        raise MalformedResponseError(f"importance must be within [0, 1], got {importance}")

    category = data.get("category")
    if category not in CATEGORIES:
        raise MalformedResponseError(f"Unknown category: {category!r}")

    facts = data.get("extractedFacts") or []
    if not isinstance(facts, list):
        raise MalformedResponseError(f"extractedFacts must be a list, got {facts!r}")

    return StoreDecision(
        should_store=should_store,
        importance=float(importance),
        category=category,
        extracted_facts=[str(f) for f in facts],
        reasoning=str(data.get("reasoning", "")),
        source="llm",
    )


class SmartMemoryFilter:
    """
    Decide whether a conversation exchange should be stored.

    Stateless per call; with no LLM provider every decision is heuristic.
    """

    def __init__(self, llm_provider: Optional[LLMProvider] = None):
        self.llm_provider = llm_provider

    async def _ask_llm(self, prompt: str) -> StoreDecision:
        response = await self.llm_provider.generate(
            prompt=prompt,
            system_prompt=SYSTEM_PROMPT,
            temperature=0.2,  # Low temp for consistency
            max_tokens=300,
        )
        return parse_decision(response.content)

    async def analyze_conversation(
        self,
        user_text: str,
        assistant_text: str,
        context: Optional[str] = None,
    ) -> StoreDecision:
        """Return a storage decision for one exchange."""
        if self.llm_provider is None:
            return heuristic_decision(user_text, assistant_text)

        prompt = DECISION_PROMPT.format(
            user_text=user_text,
            assistant_text=assistant_text,
            context=f"\nCONTEXT: {context}\n" if context else "",
        )

        for attempt in (1, 2):
            try:
                decision = await self._ask_llm(prompt)
                logger.debug(
                    f"LLM decision: store={decision.should_store} "
                    f"category={decision.category} importance={decision.importance}"
                )
                return decision
            except MalformedResponseError as e:
                logger.warning(f"Malformed memory decision (attempt {attempt}/2): {e}")
            except Exception as e:
                logger.warning(f"Memory decision LLM call failed, using heuristics: {e}")
                break

        return heuristic_decision(user_text, assistant_text)

    async def analyze_many(self, pairs: Sequence[tuple[str, str]]) -> list[StoreDecision]:
        """Analyze several (user, assistant) exchanges in order."""
        return [await self.analyze_conversation(user, assistant) for user, assistant in pairs]

    @staticmethod
    def get_stats(decisions: Sequence[StoreDecision]) -> FilterStats:
        """Summarize decisions; average importance covers stored ones only."""
        stored = [d for d in decisions if d.should_store]
        by_category: dict[str, int] = {}
        for decision in decisions:
            by_category[decision.category] = by_category.get(decision.category, 0) + 1

        return FilterStats(
            total=len(decisions),
            stored=len(stored),
            skipped=len(decisions) - len(stored),
            by_category=by_category,
            avg_importance=sum(d.importance for d in stored) / len(stored) if stored else 0.0,
        )
