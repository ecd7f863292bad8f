"""
Interactive chat with long-term memory.

Each turn retrieves the user's relevant memories, generates a reply with
the configured LLM and lets the memory filter decide what to keep.

SETUP REQUIRED:
1. Copy .env.example to .env and fill in API keys
2. Copy config.yaml.example to config.yaml and pick the LLM provider,
   embedding provider and vector store
3. Install dependencies:
   pip install -e .
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from .config import Config, config
from .llm import ChatMessage, provider_from_config
from .memory import MemoryService, create_memory_service
from .memory_filter import SmartMemoryFilter
from .orchestrator import ConversationOrchestrator, HandleOptions

logger = logging.getLogger("supermemory.main")

HELP_TEXT = """Commands:
  /help        Show this help
  /stats       Show memory store statistics
  /memories    List your stored memories by category
  /duplicates  Show pairs of near-identical memories
  /forget      Delete all of your memories
  /exit        Quit"""


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Chat with an assistant that remembers you")
    ap.add_argument("--user", default="default", help="Owner id whose memories are read and written")
    ap.add_argument("--conversation", default="default", help="Conversation id stored with each turn")
    ap.add_argument("--no-store", action="store_true", help="Never store exchanges")
    return ap


def build_orchestrator(cfg: Config, memory: MemoryService) -> ConversationOrchestrator:
    """Wire the LLM, filter and memory service from configuration."""
    llm = provider_from_config(cfg)
    memory_filter = SmartMemoryFilter(llm if cfg.filter.use_llm else None)
    return ConversationOrchestrator(
        memory_service=memory,
        llm_provider=llm,
        memory_filter=memory_filter,
        top_k=cfg.memory.top_k,
        min_score=cfg.memory.min_score,
        system_prompt=cfg.app.system_prompt,
        temperature=cfg.app.temperature,
        max_tokens=cfg.app.max_tokens,
        deduplicate=cfg.memory.deduplicate,
    )


async def run_command(command: str, memory: MemoryService, owner_id: str) -> Optional[str]:
    """
    Execute a slash command and return the text to print.

    Returns None for /exit.
    """
    name = command.strip().split()[0].lower()

    if name == "/exit":
        return None

    if name == "/help":
        return HELP_TEXT

    if name == "/stats":
        stats = await memory.stats()
        return (
            f"Backend: {stats.backend}\n"
            f"Total memories: {stats.total_records}\n"
            f"Dimension: {stats.dimension}"
        )

    if name == "/memories":
        grouped = await memory.list_memories(owner_id)
        lines = []
        for category, records in grouped.items():
            if not records:
                continue
            lines.append(f"{category} ({len(records)}):")
            for record in records:
                lines.append(f"  - [{record.metadata.role}] {record.text}")
        return "\n".join(lines) if lines else "No memories stored yet."

    if name == "/duplicates":
        pairs = await memory.find_duplicates(owner_id)
        if not pairs:
            return "No duplicate memories found."
        lines = []
        for pair in pairs:
            first = await memory.get(pair.first_id)
            second = await memory.get(pair.second_id)
            lines.append(f"{pair.similarity * 100:.0f}% {pair.relationship}:")
            lines.append(f"  - {first.text}")
            lines.append(f"  - {second.text}")
        return "\n".join(lines)

    if name == "/forget":
        deleted = await memory.delete_for_owner(owner_id)
        return f"Forgot {deleted} memories."

    return f"Unknown command: {name} (try /help)"


async def chat(args: argparse.Namespace) -> bool:
    """
    Run the interactive loop until /exit or EOF.

    Returns:
        True if the session ended normally.
    """
    logger = config.setup_logging()

    # Validate configuration
    errors = config.validate()
    if errors:
        for error in errors:
            logger.error(f"Configuration error: {error}")
        return False

    memory = None
    orchestrator = None
    history: list[ChatMessage] = []
    try:
        memory = create_memory_service(config)
        orchestrator = build_orchestrator(config, memory)
        options = HandleOptions(
            conversation_id=args.conversation, store=not args.no_store, history=history
        )

        print(f"Chatting as '{args.user}'. Type /help for commands.\n")
        while True:
            try:
                user_input = (await asyncio.to_thread(input, "You: ")).strip()
            except EOFError:
                break
            if not user_input:
                continue

            if user_input.startswith("/"):
                try:
                    output = await run_command(user_input, memory, args.user)
                except Exception as e:
                    logger.error(f"Command {user_input} failed: {e}")
                    print(f"[error] {e}\n")
                    continue
                if output is None:
                    break
                print(output + "\n")
                continue

            try:
                result = await orchestrator.handle(user_input, args.user, options)
            except Exception as e:
                logger.error(f"Failed to answer: {e}")
                print(f"[error] {e}\n")
                continue

            history.append({"role": "user", "content": user_input})
            history.append({"role": "assistant", "content": result.reply})
            print(f"Assistant: {result.reply}")
            notes = [f"{result.memories_used} memories used"]
            if result.retrieval_degraded:
                notes.append("memory unavailable")
            if result.storage_decision and result.storage_decision.should_store:
                notes.append(f"remembered as {result.storage_decision.category}")
            print(f"  ({', '.join(notes)})\n")
        return True

    finally:
        if orchestrator is not None:
            await orchestrator.drain()
        if memory is not None:
            await memory.close()


def main():
    """Entry point for the application."""
    args = build_parser().parse_args()

    try:
        success = asyncio.run(chat(args))
        sys.exit(0 if success else 1)
    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        sys.exit(130)
    except Exception as e:
        print(f"\nFatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
