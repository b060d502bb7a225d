"""Engine orchestration: the MemoryManager facade and its master config.

Usage:
    from src.chatmemory.core import MemoryManager, MemoryConfig

    memory = MemoryManager(MemoryConfig.from_env())
    await memory.initialize()

    await memory.process_message(message)
    context = await memory.generate_conversation_context(conversation_id, user_id, prompt)
"""

from src.chatmemory.core.memory_manager import MemoryManager, MemoryConfig

__all__ = [
    "MemoryManager",
    "MemoryConfig",
]
