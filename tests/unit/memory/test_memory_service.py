"""
Unit tests for supermemory/memory/memory_service.py

Tests storage, retrieval, prompt composition and exchange recording.
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from supermemory.memory.base import SearchResult
from supermemory.memory.memory_service import (
    MemoryService,
    SearchOptions,
    detect_relationship,
    render_context,
)
from tests.fixtures import make_metadata, make_record


class TestRenderContext:
    """Tests for the augmented prompt format."""

    def test_exact_format(self):
        """Test the rendered block with one result and a system prompt."""
        record = make_record(text="I love hiking in the Alps")
        prompt = render_context(
            "Where should I go this weekend?",
            [SearchResult(record=record, score=0.8734)],
            system_prompt="You are helpful.",
        )

        assert prompt == (
            "You are helpful.\n\n"
            "=== RELEVANT MEMORIES ===\n"
            "\n[Memory 1] (Relevance: 87.3%)\n"
            "Time: 2026-10-18 14:03:11 UTC\n"
            "Content: I love hiking in the Alps\n"
            "\n=== END MEMORIES ===\n\n"
            "Current Query: Where should I go this weekend?"
        )

    def test_conversation_line_when_not_default(self):
        """Test that a non-default conversation id is shown."""
        record = make_record(metadata=make_metadata(conversation_id="trip-planning"))
        prompt = render_context("q", [SearchResult(record=record, score=0.5)])

        assert "Conversation: trip-planning\n" in prompt
        assert not prompt.startswith("\n")

    def test_no_results_marker(self):
        """Test that markers are present and the no-results line is shown."""
        prompt = render_context("hello", [])

        assert prompt == (
            "=== RELEVANT MEMORIES ===\n"
            "\nNo relevant memories found.\n"
            "\n=== END MEMORIES ===\n\n"
            "Current Query: hello"
        )

    def test_ranks_numbered_in_order(self):
        """Test that results are numbered from 1 in the given order."""
        results = [
            SearchResult(record=make_record(id="a", text="first"), score=0.9),
            SearchResult(record=make_record(id="b", text="second"), score=0.6),
        ]
        prompt = render_context("q", results)

        assert prompt.index("[Memory 1] (Relevance: 90.0%)") < prompt.index("Content: first")
        assert prompt.index("[Memory 2] (Relevance: 60.0%)") < prompt.index("Content: second")


class TestSearch:
    """Tests for search and compose_context."""

    @pytest.mark.asyncio
    async def test_threshold_regression(self, memory_service):
        """Test that a related but lexically different memory is found at the default threshold."""
        await memory_service.store("My name is Shivansh", make_metadata())

        strict = await memory_service.search("What is my name?", SearchOptions(min_score=0.7))
        default = await memory_service.search("What is my name?")

        assert strict == []
        assert len(default) == 1
        assert default[0].record.text == "My name is Shivansh"
        assert default[0].score == pytest.approx(0.55)

    @pytest.mark.asyncio
    async def test_search_filters_by_owner(self, memory_service):
        """Test that the owner filter is applied."""
        await memory_service.store("My name is Shivansh", make_metadata(owner_id="alice"))
        await memory_service.store("My name is Shivansh", make_metadata(owner_id="bob"))

        results = await memory_service.search(
            "What is my name?", SearchOptions(filter={"owner_id": "bob"})
        )

        assert [r.record.metadata.owner_id for r in results] == ["bob"]

    @pytest.mark.asyncio
    async def test_compose_context(self, memory_service):
        """Test that compose_context returns both the prompt and the results."""
        await memory_service.store("My name is Shivansh", make_metadata())

        context = await memory_service.compose_context("What is my name?", system_prompt="Be brief.")

        assert len(context.results) == 1
        assert context.prompt_text.startswith("Be brief.\n\n=== RELEVANT MEMORIES ===\n")
        assert "(Relevance: 55.0%)" in context.prompt_text
        assert "Content: My name is Shivansh\n" in context.prompt_text
        assert context.prompt_text.endswith("Current Query: What is my name?")

    @pytest.mark.asyncio
    async def test_compose_context_empty_store(self, memory_service):
        """Test composition against an empty store."""
        context = await memory_service.compose_context("anything")

        assert context.results == []
        assert "No relevant memories found." in context.prompt_text

    @pytest.mark.asyncio
    async def test_embedder_failure_propagates(self, local_store, fake_embedder):
        """Test that search surfaces embedder errors unchanged."""
        fake_embedder.fail = ConnectionError("embedder down")
        service = MemoryService(local_store)

        with pytest.raises(ConnectionError):
            await service.search("hello")


class TestRecordExchange:
    """Tests for record_exchange."""

    @pytest.mark.asyncio
    async def test_stores_both_turns_in_order(self, memory_service, fake_embedder):
        """Test that user then assistant turns are stored with roles."""
        ids = await memory_service.record_exchange(
            "I prefer dark mode",
            "Noted, dark mode it is.",
            conversation_id="settings",
            metadata=make_metadata(owner_id="alice", category="preference", importance=0.8),
        )

        assert fake_embedder.calls == ["I prefer dark mode", "Noted, dark mode it is."]
        user = await memory_service.get(ids.user_id)
        assistant = await memory_service.get(ids.assistant_id)

        assert user.metadata.role == "user"
        assert assistant.metadata.role == "assistant"
        for record in (user, assistant):
            assert record.metadata.conversation_id == "settings"
            assert record.metadata.owner_id == "alice"
            assert record.metadata.category == "preference"
            assert record.metadata.importance == 0.8
        assert user.created_at <= assistant.created_at

    @pytest.mark.asyncio
    async def test_default_metadata(self, memory_service):
        """Test recording without metadata."""
        ids = await memory_service.record_exchange("hi there friend", "hello!")

        user = await memory_service.get(ids.user_id)
        assert user.metadata.owner_id == "default"
        assert user.metadata.conversation_id == "default"


CATS = "I live in Lisbon with my two cats and a very old dog"


class TestDetectRelationship:
    """Tests for classifying a new text against a stored one."""

    @pytest.mark.parametrize("new, existing, expected", [
        ("I live in Lisbon", "i live in lisbon ", "duplicate"),
        ("I live in Porto now", "I live in Lisbon", "update"),
        ("My job changed last week", "I work at a bank", "update"),
        ("I live in Lisbon with my cats", "I live in Lisbon with my dog", "related"),
        ("I play the cello", "Quarterly revenue grew", "different"),
        # "know" and "snow" are not the update word "now"
        ("I know it will snow in Lisbon", "It will snow in Lisbon I know", "related"),
    ])
    def test_classification(self, new, existing, expected):
        assert detect_relationship(new, existing) == expected


class TestStoreIntelligently:
    """Tests for dedup-aware storage."""

    @pytest.mark.asyncio
    async def test_new_text_stored(self, memory_service):
        outcome = await memory_service.store_intelligently(CATS, make_metadata())

        assert outcome.action == "stored"
        assert outcome.related == []
        assert (await memory_service.get(outcome.record_id)).text == CATS

    @pytest.mark.asyncio
    async def test_duplicate_skipped(self, memory_service):
        """Test that a repeat (ignoring case) returns the stored id and writes nothing."""
        first = await memory_service.store_intelligently(CATS, make_metadata())

        second = await memory_service.store_intelligently(CATS.upper(), make_metadata())

        assert second.action == "skipped"
        assert second.relationship == "duplicate"
        assert second.record_id == first.record_id
        assert (await memory_service.stats()).total_records == 1

    @pytest.mark.asyncio
    async def test_update_linked_to_existing(self, memory_service):
        """Test that a change is stored as a new memory pointing at the old one."""
        first = await memory_service.store_intelligently(CATS, make_metadata(category="personal"))

        second = await memory_service.store_intelligently(f"{CATS} now", make_metadata(category="personal"))

        assert second.action == "updated"
        assert second.record_id != first.record_id
        record = await memory_service.get(second.record_id)
        assert record.metadata.extra == {"related_to": first.record_id, "relationship": "update"}
        assert record.metadata.category == "personal"
        assert (await memory_service.stats()).total_records == 2

    @pytest.mark.asyncio
    async def test_related_text_stored(self, memory_service):
        """Test that a similar but different fact is stored alongside."""
        await memory_service.store_intelligently(CATS, make_metadata())

        outcome = await memory_service.store_intelligently(
            "I live in Lisbon with my three cats and a very old dog", make_metadata()
        )

        assert outcome.action == "stored"
        assert outcome.relationship == "related"
        assert (await memory_service.stats()).total_records == 2

    @pytest.mark.asyncio
    async def test_other_owner_not_a_duplicate(self, memory_service):
        """Test that the same text for another owner is stored."""
        await memory_service.store_intelligently(CATS, make_metadata(owner_id="alice"))

        outcome = await memory_service.store_intelligently(CATS, make_metadata(owner_id="bob"))

        assert outcome.action == "stored"
        assert (await memory_service.stats()).total_records == 2

    @pytest.mark.asyncio
    async def test_record_exchange_deduplicates(self, memory_service):
        """Test that repeating an exchange stores nothing new."""
        first = await memory_service.record_exchange(
            CATS, "Sounds lovely.", metadata=make_metadata(), deduplicate=True
        )
        second = await memory_service.record_exchange(
            CATS, "Sounds lovely.", metadata=make_metadata(), deduplicate=True
        )

        assert second == first
        assert (await memory_service.stats()).total_records == 2

    @pytest.mark.asyncio
    async def test_find_duplicates(self, memory_service):
        """Test pairwise detection scoped to one owner."""
        a = await memory_service.store(CATS, make_metadata())
        b = await memory_service.store(CATS.lower(), make_metadata())
        await memory_service.store("Quarterly revenue grew 12 percent", make_metadata())
        await memory_service.store(CATS, make_metadata(owner_id="bob"))

        pairs = await memory_service.find_duplicates("alice")

        assert len(pairs) == 1
        assert {pairs[0].first_id, pairs[0].second_id} == {a, b}
        assert pairs[0].relationship == "duplicate"
        assert pairs[0].similarity == pytest.approx(1.0)
        assert await memory_service.find_duplicates("carol") == []

class TestManagement:
    """Tests for listing, deleting and stats."""

    @pytest.mark.asyncio
    async def test_list_memories_grouped_newest_first(self, local_store):
        """Test grouping by category with every category present."""
        service = MemoryService(local_store)
        await local_store.initialize()
        now = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
        await local_store._upsert([
            make_record(id="old", text="old fact", metadata=make_metadata(category="personal"),
                        created_at=now - timedelta(days=2)),
            make_record(id="new", text="new fact", metadata=make_metadata(category="personal"),
                        created_at=now),
            make_record(id="proj", text="project", metadata=make_metadata(category="project"),
                        created_at=now),
            make_record(id="other", text="not mine", metadata=make_metadata(owner_id="bob"),
                        created_at=now),
        ])

        grouped = await service.list_memories("alice")

        assert set(grouped) == {
            "personal", "preference", "project", "question", "casual", "important", "general",
        }
        assert [r.id for r in grouped["personal"]] == ["new", "old"]
        assert [r.id for r in grouped["project"]] == ["proj"]
        assert grouped["general"] == []

    @pytest.mark.asyncio
    async def test_delete_for_owner(self, memory_service):
        """Test forgetting one owner."""
        await memory_service.store("alice fact one", make_metadata(owner_id="alice"))
        await memory_service.store("alice fact two", make_metadata(owner_id="alice"))
        await memory_service.store("bob fact", make_metadata(owner_id="bob"))

        deleted = await memory_service.delete_for_owner("alice")
        stats = await memory_service.stats()

        assert deleted == 2
        assert stats.total_records == 1
        assert stats.backend == "local"
        assert stats.dimension == 64

    @pytest.mark.asyncio
    async def test_update_and_delete(self, memory_service):
        """Test update and delete through the service."""
        record_id = await memory_service.store("draft", make_metadata())

        updated = await memory_service.update(record_id, "final", make_metadata())
        assert updated.text == "final"

        await memory_service.delete(record_id)
        assert (await memory_service.stats()).total_records == 0


class TestCreateMemoryService:
    """Tests for the service factory."""

    def _config(self, **memory_overrides):
        memory = dict(
            store_type="local",
            embedding_provider="local",
            embedding_model="",
            embedding_dimensions=None,
            storage_path=None,
            collection_name="supermemory",
            chroma_path="./data/chroma",
            chroma_host=None,
            chroma_port=8000,
            pinecone_api_key="",
            pinecone_index="supermemory",
            pinecone_cloud="aws",
            pinecone_region="us-east-1",
            postgres_url="",
            min_score=0.4,
            timeout_seconds=10.0,
            max_retries=2,
            retry_base_delay=0.1,
            provision_timeout=60.0,
            poll_interval=2.0,
            duplicate_threshold=0.9,
        )
        memory.update(memory_overrides)
        return SimpleNamespace(
            memory=SimpleNamespace(**memory),
            openai=SimpleNamespace(api_key="sk-openai"),
            openrouter=SimpleNamespace(api_key="sk-openrouter"),
        )

    def test_local_defaults(self):
        from supermemory.memory.local_store import InMemoryVectorStore
        from supermemory.memory.memory_service import create_memory_service

        service = create_memory_service(self._config())

        assert isinstance(service.vector_store, InMemoryVectorStore)
        assert service.vector_store.default_min_score == 0.4
        assert service.vector_store.max_retries == 2
        assert service.embedding_service.dimension == 384
        assert service.duplicate_threshold == 0.9

    def test_openrouter_embeddings_use_openrouter_key(self):
        from supermemory.memory.memory_service import create_memory_service

        service = create_memory_service(self._config(embedding_provider="openrouter"))

        assert service.embedding_service.api_key == "sk-openrouter"
        assert service.embedding_service.name == "openrouter"

    def test_pgvector_requires_url(self):
        from supermemory.memory.memory_service import create_memory_service

        with pytest.raises(ValueError, match="postgres_url"):
            create_memory_service(self._config(store_type="pgvector"))

    def test_pinecone_requires_key(self):
        from supermemory.memory.memory_service import create_memory_service

        with pytest.raises(ValueError):
            create_memory_service(self._config(store_type="pinecone"))

    def test_unknown_store(self):
        from supermemory.memory.memory_service import create_memory_service

        with pytest.raises(ValueError, match="Unknown store type"):
            create_memory_service(self._config(store_type="faiss"))
