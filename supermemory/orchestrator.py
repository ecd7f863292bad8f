"""
Conversation Orchestrator.

One request/response cycle:
retrieve relevant memories -> build augmented prompt -> generate reply ->
decide whether to persist the exchange.

Retrieval failures degrade to an empty context so the assistant can still
answer. Storage runs after the reply is final and never fails the request.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from .config import request_context
from .errors import GenerationError
from .llm.base import ChatMessage, LLMProvider
from .memory.base import MemoryMetadata
from .memory.memory_service import (
    ComposedContext,
    MemoryService,
    SearchOptions,
    render_context,
)
from .memory_filter import SmartMemoryFilter, StoreDecision

logger = logging.getLogger("supermemory.orchestrator")

# Earlier turns sent with each request
HISTORY_LIMIT = 10


@dataclass
class HandleOptions:
    """Per-request options; None falls back to the orchestrator defaults."""
    top_k: Optional[int] = None
    min_score: Optional[float] = None
    conversation_id: str = "default"
    system_prompt: Optional[str] = None
    store: bool = True
    background_storage: Optional[bool] = None
    # Earlier turns of this conversation, oldest first
    history: list[ChatMessage] = field(default_factory=list)


@dataclass
class ConversationResult:
    reply: str
    memories_used: int
    storage_decision: Optional[StoreDecision]
    retrieval_degraded: bool = False
    retrieval_error: Optional[str] = None


class ConversationOrchestrator:
    """
    Ties the memory service, the store-worthiness filter and an LLM together.

    Holds no per-request state; pending background storage tasks are tracked
    only so they can be awaited with ``drain()``.
    """

    def __init__(
        self,
        memory_service: MemoryService,
        llm_provider: LLMProvider,
        memory_filter: Optional[SmartMemoryFilter] = None,
        top_k: int = 5,
        min_score: Optional[float] = None,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        background_storage: bool = True,
        deduplicate: bool = True,
    ):
        self.memory_service = memory_service
        self.llm_provider = llm_provider
        self.memory_filter = memory_filter or SmartMemoryFilter()
        self.top_k = top_k
        self.min_score = min_score
        self.system_prompt = system_prompt
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.background_storage = background_storage
        self.deduplicate = deduplicate
        self._pending: set[asyncio.Task] = set()

    async def _retrieve(
        self,
        user_query: str,
        owner_id: str,
        options: HandleOptions,
        system_prompt: Optional[str],
    ) -> tuple[ComposedContext, Optional[str]]:
        search = SearchOptions(
            top_k=options.top_k if options.top_k is not None else self.top_k,
            filter={"owner_id": owner_id},
            min_score=options.min_score if options.min_score is not None else self.min_score,
        )
        try:
            context = await self.memory_service.compose_context(user_query, search, system_prompt)
            logger.info(f"Retrieved {len(context.results)} relevant memories")
            return context, None
        except Exception as e:
            logger.error(f"Memory retrieval failed, continuing without memories: {e}")
            empty = ComposedContext(
                prompt_text=render_context(user_query, [], system_prompt),
                results=[],
            )
            return empty, str(e)

    async def _generate(self, prompt: str, history: list[ChatMessage]) -> str:
        provider = self.llm_provider.provider_name
        logger.info(f"Generating response with {provider}...")
        try:
            response = await self.llm_provider.generate(
                prompt=prompt,
                messages=history[-HISTORY_LIMIT:] or None,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except GenerationError:
            raise
        except Exception as e:
            raise GenerationError(provider, "generate", str(e)) from e
        return response.content

    async def _store(
        self,
        user_query: str,
        reply: str,
        owner_id: str,
        conversation_id: str,
        decision: StoreDecision,
    ) -> None:
        extra = {}
        if decision.extracted_facts:
            extra["facts"] = "; ".join(decision.extracted_facts)
        metadata = MemoryMetadata(
            owner_id=owner_id,
            importance=decision.importance,
            category=decision.category,
            extra=extra,
        )
        await self.memory_service.record_exchange(
            user_query, reply, conversation_id, metadata, deduplicate=self.deduplicate
        )
        logger.info(f"Conversation stored in memory ({decision.category}, {decision.importance:.1f})")

    async def _store_in_background(self, *args) -> None:
        try:
            await self._store(*args)
        except Exception as e:
            logger.error(f"Background memory storage failed: {e}")

    def _spawn(self, coro) -> None:
        # The task copies the current context, so log lines keep the owner id
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def handle(
        self,
        user_query: str,
        owner_id: str,
        options: Optional[HandleOptions] = None,
    ) -> ConversationResult:
        """
        Answer ``user_query`` for ``owner_id`` using their stored memories.

        Raises:
            GenerationError: The LLM failed; no reply is fabricated.
        """
        options = options or HandleOptions()
        token = request_context.set(owner_id)
        try:
            system_prompt = options.system_prompt or self.system_prompt
            context, retrieval_error = await self._retrieve(
                user_query, owner_id, options, system_prompt
            )

            reply = await self._generate(context.prompt_text, options.history)

            decision = None
            if options.store:
                decision = await self.memory_filter.analyze_conversation(user_query, reply)
                if decision.should_store:
                    args = (user_query, reply, owner_id, options.conversation_id, decision)
                    background = (
                        self.background_storage
                        if options.background_storage is None
                        else options.background_storage
                    )
                    if background:
                        self._spawn(self._store_in_background(*args))
                    else:
                        try:
                            await self._store(*args)
                        except Exception as e:
                            logger.error(f"Memory storage failed: {e}")
                else:
                    logger.debug(f"Not storing exchange: {decision.reasoning}")

            return ConversationResult(
                reply=reply,
                memories_used=len(context.results),
                storage_decision=decision,
                retrieval_degraded=retrieval_error is not None,
                retrieval_error=retrieval_error,
            )
        finally:
            request_context.reset(token)

    @property
    def pending_tasks(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for all pending background storage tasks."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
