"""Chat request messages and prompt assembly."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from site_chat.config import ChatConfig

_ROLES = ("user", "assistant")
_IN_SCOPE_RULE = "Only answer using the provided documents. If they do not cover the question, say so."


class RequestMessage(BaseModel):
    """One turn of the conversation sent by the client."""

    role: str
    content: str = Field(min_length=1)

    @field_validator("role")
    @classmethod
    def _check_role(cls, value: str) -> str:
        role = value.lower()
        if role not in _ROLES:
            raise ValueError("Role must be either 'assistant' or 'user'")
        return role

    @field_validator("content")
    @classmethod
    def _check_content(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Message must be set")
        return value


def build_prompt_messages(
    config: ChatConfig, messages: list[RequestMessage]
) -> list[dict[str, str]]:
    """Prepend the system message to the client's conversation."""
    system = config.role_information
    if config.in_scope:
        system = f"{system}\n\n{_IN_SCOPE_RULE}"
    prompt = [{"role": "system", "content": system}]
    prompt.extend({"role": m.role, "content": m.content} for m in messages)
    return prompt


def last_question(messages: list[RequestMessage]) -> str:
    for message in reversed(messages):
        if message.role == "user":
            return message.content
    return ""
