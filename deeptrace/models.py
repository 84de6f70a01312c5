"""Pydantic models shared by the core and the HTTP surface."""
from __future__ import annotations
import json

from pydantic import BaseModel, Field, model_validator
from typing import Any, Literal, Optional, Generic, TypeVar

T = TypeVar("T")

class PaginatedResponse(BaseModel, Generic[T]):
    items: list[T]
    total: int
    offset: int
    limit: int
# ── Session index ───────────────────────────────────────────────────

class SessionRecord(BaseModel):
    sessionId: str
    key: str = ""
    provider: str
    label: str = ""
    title: Optional[str] = None
    preview: str = ""
    lastUpdated: int = 0  # epoch ms of the backing file's mtime
    startedAt: Optional[str] = None
    messageCount: int = 0
    compactionCount: int = 0
    parentSessionId: Optional[str] = None
    teamName: Optional[str] = None
    isSidechain: Optional[bool] = None
    isSubagent: bool = False
    hasSubagents: bool = False
    isActive: bool = False
    isDeleted: bool = False
    filePath: str = ""
    channel: str = ""
    chatType: str = ""
    model: Optional[str] = None
    cwd: Optional[str] = None


# ── Normalized messages ─────────────────────────────────────────────

ContentBlockType = Literal["text", "thinking", "tool_use", "tool_result", "image"]


class ContentBlock(BaseModel):
    type: ContentBlockType
    text: Optional[str] = None
    thinking: Optional[str] = None
    id: Optional[str] = None
    name: Optional[str] = None
    input: Optional[dict[str, Any]] = None
    tool_use_id: Optional[str] = None
    content: Optional[list[ContentBlock] | str] = None
    is_error: Optional[bool] = None
    source: Optional[dict[str, Any]] = None

    @model_validator(mode="after")
    def _check_payload(self) -> "ContentBlock":
        # Exactly one meaningful payload per tag.
        if self.type == "text" and self.text is None:
            raise ValueError("text block requires text")
        if self.type == "thinking" and self.thinking is None:
            raise ValueError("thinking block requires thinking")
        if self.type == "tool_use" and not (self.name or self.id):
            raise ValueError("tool_use block requires a name or id")
        if self.type == "tool_result" and not self.tool_use_id:
            raise ValueError("tool_result block requires tool_use_id")
        if self.type == "image" and not self.source:
            raise ValueError("image block requires source")
        return self


class MessageBody(BaseModel):
    role: str
    content: list[ContentBlock] | str = ""
    toolCallId: Optional[str] = None
    toolName: Optional[str] = None
    isError: Optional[bool] = None


class NormalizedMessage(BaseModel):
    type: str
    timestamp: Optional[str] = None
    message: Optional[MessageBody] = None
    # Side-channel fields for compaction / model-change / custom events
    summary: Optional[str] = None
    modelId: Optional[str] = None
    provider: Optional[str] = None
    thinkingLevel: Optional[str] = None
    customType: Optional[str] = None
    data: Optional[dict[str, Any]] = None
    teamName: Optional[str] = None
    isSidechain: Optional[bool] = None


# ── Change notification ─────────────────────────────────────────────

ChangeKind = Literal["connected", "session_updated", "sessions_index_updated", "ping"]


class ChangeEvent(BaseModel):
    kind: ChangeKind
    sessionId: Optional[str] = None
    provider: Optional[str] = None

    def to_frame(self) -> str:
        """Render as a server-sent-events frame."""
        payload: dict[str, Any] = {"event": self.kind}
        if self.sessionId:
            payload["sessionId"] = self.sessionId
        if self.provider:
            payload["provider"] = self.provider
        return f"data: {json.dumps(payload)}\n\n"


# ── Search / tree ───────────────────────────────────────────────────

class SearchHit(BaseModel):
    session: SessionRecord
    snippet: str


class SubagentEdge(BaseModel):
    label: str
    fullLabel: str
    childSessionId: Optional[str] = None
    toolCallId: Optional[str] = None
    resolvedBy: str = ""
    resolved: bool = False


class TurnNode(BaseModel):
    turnIndex: int
    messageIndex: int
    timestamp: Optional[str] = None
    preview: str = ""
    subagents: list[SubagentEdge] = Field(default_factory=list)


class SessionTreeNode(BaseModel):
    session: SessionRecord
    children: list[SessionTreeNode] = Field(default_factory=list)
    teams: dict[str, list[str]] = Field(default_factory=dict)


# ── Analytics ───────────────────────────────────────────────────────

class DayCount(BaseModel):
    date: str
    count: int = 0


class ProviderShare(BaseModel):
    provider: str
    count: int = 0
    pct: int = 0


class ToolCount(BaseModel):
    name: str
    count: int = 0


class TokenTotals(BaseModel):
    inputTokens: int = 0
    outputTokens: int = 0
    avgPerSession: int = 0


class LengthBucket(BaseModel):
    bucket: str
    count: int = 0


class HeatmapCell(BaseModel):
    dayOfWeek: int  # 0 = Monday
    hour: int
    count: int = 0


class AnalyticsData(BaseModel):
    period: str = "30d"
    agent: str = "all"
    sessionsPerDay: list[DayCount] = Field(default_factory=list)
    messagesPerDay: list[DayCount] = Field(default_factory=list)
    providerBreakdown: list[ProviderShare] = Field(default_factory=list)
    topTools: list[ToolCount] = Field(default_factory=list)
    tokenTotals: TokenTotals = Field(default_factory=TokenTotals)
    sessionLengthDist: list[LengthBucket] = Field(default_factory=list)
    hourOfDayHeatmap: list[HeatmapCell] = Field(default_factory=list)
    totalSessions: int = 0
    totalMessages: int = 0


# ── Provider / cache status ─────────────────────────────────────────

class ProviderStatus(BaseModel):
    id: str
    sessionsDir: str
    dirExists: bool = False
    isCustom: bool = False
    sessionCount: int = 0
    error: Optional[str] = None
