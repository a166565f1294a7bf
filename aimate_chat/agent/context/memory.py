from typing import List

from aimate_chat.agent.structs import Memory

_SECTIONS = [
    ("preference", "User Preferences:"),
    ("fact", "Known Facts About User:"),
    ("context", "Relevant Context:"),
]


def build_memory_context(memories: List[Memory]) -> str:
    """
    Render remembered facts into the block appended to the system content.
    Returns "" when there is nothing to remember.
    """
    if not memories:
        return ""

    parts = ["\n\n--- USER MEMORIES ---\n"]
    for category, heading in _SECTIONS:
        items = [m for m in memories if m.category == category]
        if not items:
            continue
        parts.append(f"\n{heading}\n")
        parts.extend(f"- {m.content}\n" for m in items)
    parts.append("--- END USER MEMORIES ---\n")
    return "".join(parts)
