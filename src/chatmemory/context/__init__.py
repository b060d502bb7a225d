"""Context assembly: merges memory tiers into a budgeted prompt."""

from src.chatmemory.context.prompt_builder import PromptBuilder, SYSTEM_PROMPT, MODE_INSTRUCTIONS
from src.chatmemory.context.assembler import ContextAssembler, AssemblerConfig

__all__ = [
    "PromptBuilder",
    "SYSTEM_PROMPT",
    "MODE_INSTRUCTIONS",
    "ContextAssembler",
    "AssemblerConfig",
]
