"""chatmemory - interactive demo of the memory engine."""

import asyncio
import json
import logging
import os
import uuid

from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

# Load environment variables from .env file
load_dotenv()

from src.chatmemory.context import SYSTEM_PROMPT
from src.chatmemory.core import MemoryManager, MemoryConfig
from src.chatmemory.llm import LLMProvider, LLMConfig
from src.chatmemory.memory import ConversationMetadata, Message, Role, StorageError


console = Console()


def setup_logging() -> None:
    level = logging.DEBUG if os.getenv("DEBUG") else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


class ChatSession:
    """One interactive conversation backed by the memory engine."""

    def __init__(self, memory: MemoryManager, llm: LLMProvider, user_id: str):
        self.memory = memory
        self.llm = llm
        self.user_id = user_id
        self.new_conversation()

    def new_conversation(self) -> None:
        self.conversation_id = str(uuid.uuid4())
        self.transcript: list[Message] = []
        self.last_context = None

    def metadata(self) -> ConversationMetadata:
        first = self.transcript[0].content if self.transcript else ""
        return ConversationMetadata(
            conversation_id=self.conversation_id,
            user_id=self.user_id,
            title=self.memory.prompt_builder.generate_conversation_title(first),
            tags=self.memory.prompt_builder.extract_tags(first),
            model_providers=[self.llm.provider],
            message_count=len(self.transcript),
        )

    async def turn(self, user_input: str) -> str:
        user_message = Message(
            conversation_id=self.conversation_id,
            user_id=self.user_id,
            content=user_input,
            role=Role.USER,
        )

        context = await self.memory.generate_conversation_context(
            self.conversation_id, self.user_id, user_input
        )
        self.last_context = context

        llm = self.llm
        if os.getenv("FOLLOW_RECOMMENDED_MODEL") and context.recommended_model:
            llm = self.llm.with_model(context.recommended_model.model_id)

        response = await llm.chat([
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": context.context_prompt},
        ])
        reply = response.content or ""

        assistant_message = Message(
            conversation_id=self.conversation_id,
            user_id=self.user_id,
            content=reply,
            role=Role.ASSISTANT,
            model_provider=llm.provider,
            model_id=llm.config.model,
            token_count=response.completion_tokens,
        )

        self.transcript.extend([user_message, assistant_message])
        await self.memory.process_message(user_message, self.metadata())
        await self.memory.process_message(assistant_message, self.metadata())
        return reply


def print_welcome(session: ChatSession):
    """Print welcome message."""
    provider_info = session.llm.get_provider_info()
    embedder_info = session.memory.get_stats()["embedder"]

    console.print(Panel.fit(
        "[bold blue]chatmemory[/bold blue] - Conversational Memory Demo\n"
        f"User: {session.user_id}\n"
        f"Provider: {provider_info['provider']}\n"
        f"Model: {provider_info['model']}\n"
        f"Embeddings: {embedder_info.get('model', 'custom')}\n"
        f"Store: {session.memory.config.store_backend}",
        title="Welcome"
    ))

    console.print(
        "\n[dim]Commands: 'quit', 'stats', 'health', 'context', 'search <query>', "
        "'finalize', 'settings', 'set <field>=<value>', 'reset', 'clear'[/dim]\n"
    )


def print_context(context) -> None:
    if context is None:
        console.print("[dim]No context assembled yet.[/dim]")
        return

    table = Table(title="Last Context")
    table.add_column("Item")
    table.add_column("Value")
    table.add_row("Recent turns", str(len(context.recent_messages)))
    table.add_row("Facts", str(len(context.relevant_semantic_memories)))
    table.add_row("Episodes", str(len(context.relevant_episodic_memories)))
    table.add_row("Memory tokens", str(context.memory_token_count))
    table.add_row("Total tokens", str(context.total_token_count))
    table.add_row("Degraded tiers", ", ".join(context.degraded_tiers) or "-")
    if context.recommended_model:
        table.add_row("Recommended model", context.recommended_model.model_id)
    console.print(table)
    console.print(Panel(context.context_prompt, title="Prompt"))


async def print_search(session: ChatSession, query: str) -> None:
    result = await session.memory.search_all_memories(session.user_id, query)

    console.print(f"\n[bold]{result.total_results} results[/bold] in {result.search_time_ms:.1f}ms")
    for msg in result.short_term_memories:
        console.print(f"  [cyan]recent[/cyan] {msg.format()}")
    for hit in result.semantic_memories:
        console.print(f"  [green]fact[/green] ({hit.similarity:.2f}) {hit.memory.content}")
    for hit in result.episodic_memories:
        console.print(f"  [magenta]episode[/magenta] ({hit.score:.2f}) {hit.memory.summary}")
    console.print()


async def update_setting(session: ChatSession, assignment: str) -> None:
    field, _, raw = assignment.partition("=")
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        value = raw

    try:
        settings = await session.memory.update_memory_settings(session.user_id, {field.strip(): value})
    except (ValueError, StorageError) as e:
        console.print(f"[red]{e}[/red]")
        return
    console.print(Panel(json.dumps(settings.to_dict(), indent=2), title="Settings"))


async def run_interactive(session: ChatSession):
    """Run interactive session."""
    memory = session.memory

    while True:
        try:
            user_input = Prompt.ask("[bold green]You[/bold green]")

            if not user_input.strip():
                continue

            cmd = user_input.strip()
            lowered = cmd.lower()

            if lowered in ("quit", "exit"):
                console.print("[dim]Goodbye![/dim]")
                break

            if lowered == "stats":
                stats = await memory.get_memory_usage_stats(session.user_id)
                console.print(Panel(json.dumps(stats.to_dict(), indent=2), title="Memory Usage"))
                continue

            if lowered == "health":
                health = await memory.get_memory_health(session.user_id)
                console.print(Panel(json.dumps(health, indent=2), title="Memory Health"))
                continue

            if lowered == "context":
                print_context(session.last_context)
                continue

            if lowered.startswith("search "):
                await print_search(session, cmd[len("search "):])
                continue

            if lowered == "finalize":
                episode = await memory.finalize_conversation(
                    session.conversation_id, session.user_id, session.transcript, session.metadata()
                )
                if episode:
                    console.print(Panel(episode.summary, title=f"Episode ({episode.category.value})"))
                else:
                    console.print("[dim]No episode stored (conversation too short or tier disabled).[/dim]")
                session.new_conversation()
                continue

            if lowered == "settings":
                settings = await memory.get_memory_settings(session.user_id)
                console.print(Panel(json.dumps(settings.to_dict(), indent=2), title="Settings"))
                continue

            if lowered.startswith("set "):
                await update_setting(session, cmd[len("set "):])
                continue

            if lowered == "reset":
                await memory.reset_conversation_context(session.conversation_id, session.user_id)
                console.print("[dim]Conversation context reset.[/dim]")
                continue

            if lowered == "clear":
                removed = await memory.clear_all_user_memories(session.user_id)
                console.print(f"[dim]Cleared all memories: {removed}[/dim]")
                session.new_conversation()
                continue

            reply = await session.turn(user_input)
            console.print("\n[bold blue]Assistant:[/bold blue]")
            console.print(Markdown(reply))
            console.print()

            if os.getenv("VERBOSE") and session.last_context:
                ctx = session.last_context
                console.print(f"[dim]Context tokens: ~{ctx.total_token_count}[/dim]\n")

        except KeyboardInterrupt:
            console.print("\n[dim]Interrupted. Type 'quit' to exit.[/dim]")
        except Exception as e:
            console.print(f"[red]Error: {e}[/red]")
            if os.getenv("DEBUG"):
                console.print_exception()


async def main():
    """Main entry point."""
    setup_logging()

    config = MemoryConfig.from_env()
    llm = LLMProvider(config.llm_config or LLMConfig(model=os.getenv("MODEL", "gpt-4o-mini")))
    memory = MemoryManager(config, generator=llm)
    await memory.initialize()

    session = ChatSession(memory, llm, user_id=os.getenv("USER_ID", "local"))

    try:
        # Single prompt mode
        prompt = os.getenv("PROMPT")
        if prompt:
            console.print(Markdown(await session.turn(prompt)))
            return

        print_welcome(session)
        await run_interactive(session)
    finally:
        await memory.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
