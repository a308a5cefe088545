"""Conversation history owned by a single session."""

import copy

import tiktoken

ROLES = ("system", "user", "assistant")

_encoder = tiktoken.get_encoding("cl100k_base")


def estimate_tokens(messages: list) -> int:
    """Count tokens across all messages using tiktoken."""
    total = 0
    for m in messages:
        total += len(_encoder.encode(m.get("content", "") or ""))
    # role and separator overhead
    total += 4 * len(messages)
    return total


class ConversationHistory:
    """Ordered, append-only message list.

    The leading system message, once installed, is only ever replaced in
    place by set_system() or dropped by reset().
    """

    def __init__(self, messages: list[dict] | None = None):
        self._messages: list[dict] = []
        for m in messages or []:
            self.append(m["role"], m["content"])

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self):
        return iter(self._messages)

    def append(self, role: str, content: str) -> dict:
        if role not in ROLES:
            raise ValueError(f"unknown role {role!r}")
        msg = {"role": role, "content": content}
        self._messages.append(msg)
        return msg

    def set_system(self, content: str) -> None:
        """Install or refresh the leading system message."""
        if self._messages and self._messages[0]["role"] == "system":
            self._messages[0]["content"] = content
        else:
            self._messages.insert(0, {"role": "system", "content": content})

    def has_system(self) -> bool:
        return bool(self._messages) and self._messages[0]["role"] == "system"

    def last_assistant(self) -> str | None:
        for m in reversed(self._messages):
            if m["role"] == "assistant":
                return m["content"]
        return None

    def messages(self) -> list[dict]:
        """Return a deep copy safe to hand to callers or the gateway."""
        return copy.deepcopy(self._messages)

    def reset(self) -> int:
        """Drop every message. Returns how many were removed."""
        dropped = len(self._messages)
        self._messages.clear()
        return dropped
