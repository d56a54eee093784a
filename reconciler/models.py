"""Pydantic models matching the frontend TypeScript session types."""
from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

# ── Message variants ────────────────────────────────────────────────


class _MessageBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: int  # epoch milliseconds


class TextMessage(_MessageBase):
    type: Literal["text"] = "text"
    role: Literal["user", "assistant"]
    content: str = ""


class ToolUseMessage(_MessageBase):
    type: Literal["tool_use"] = "tool_use"
    role: Literal["assistant"] = "assistant"
    toolName: str
    toolId: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultMessage(_MessageBase):
    type: Literal["tool_result"] = "tool_result"
    role: Literal["tool"] = "tool"
    toolUseId: str = ""
    content: str = ""
    isError: bool = False


class SystemMessage(_MessageBase):
    type: Literal["system"] = "system"
    role: Literal["system"] = "system"
    content: str = ""


Message = Annotated[
    Union[TextMessage, ToolUseMessage, ToolResultMessage, SystemMessage],
    Field(discriminator="type"),
]


# ── Session state ───────────────────────────────────────────────────


class SessionState(BaseModel):
    sessionId: str
    projectPath: str
    name: str = "Session"
    messages: list[Message] = Field(default_factory=list)
    streamingText: str = ""
    isStreaming: bool = False
    isProcessing: bool = False
    costUsd: float = 0.0
    totalCostUsd: float = 0.0
    numTurns: int = 0
    model: Optional[str] = None
    claudeVersion: Optional[str] = None
    error: Optional[str] = None
    selectedModel: Optional[str] = None
    createdAt: int = 0
    worktreePath: Optional[str] = None
    worktreeBranch: Optional[str] = None
    worktreeSessionId: Optional[str] = None


class WorktreeInfo(BaseModel):
    worktreePath: Optional[str] = None
    worktreeBranch: Optional[str] = None
    worktreeSessionId: Optional[str] = None


# ── Parser output ───────────────────────────────────────────────────


class ThinkingInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    isLatest: bool = False


class ParseResult(BaseModel):
    messages: list[Message] = Field(default_factory=list)
    thinkingBlocks: list[ThinkingInfo] = Field(default_factory=list)
    lastEntryType: Optional[str] = None
    detectedModel: Optional[str] = None

    @property
    def latest_thinking(self) -> Optional[ThinkingInfo]:
        for block in reversed(self.thinkingBlocks):
            if block.isLatest:
                return block
        return None


# ── Terminal binding ────────────────────────────────────────────────


class TerminalBinding(BaseModel):
    id: str
    projectPath: str
    worktreePath: Optional[str] = None
    sessionId: Optional[str] = None

    @property
    def working_path(self) -> str:
        return self.worktreePath or self.projectPath
