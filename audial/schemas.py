from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

GenerationMode = Literal["new", "edit"]


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    code: str | None = None

    model_config = ConfigDict(frozen=True, extra="ignore")


class GenerateRequest(BaseModel):
    """Inbound generation request as posted by the editor client."""

    prompt: str | None = None
    mode: GenerationMode = "new"
    current_code: str | None = Field(default=None, alias="currentCode")
    chat_history: tuple[ChatMessage, ...] = Field(default=(), alias="chatHistory")
    model: str | None = None
    api_key: str | None = Field(default=None, alias="apiKey", repr=False)

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    @property
    def effective_mode(self) -> GenerationMode:
        # Edit mode without code to edit degrades to a new composition.
        if self.mode == "edit" and self.current_code and self.current_code.strip():
            return "edit"
        return "new"
