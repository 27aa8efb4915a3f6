"""
Request and response models for the advisor HTTP API.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, field_validator

MAX_MESSAGE_LENGTH = 4000


class ChatMessageRequest(BaseModel):
    message: str
    session_id: Optional[str] = None

    @field_validator('message')
    @classmethod
    def message_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('message cannot be empty')
        if len(v) > MAX_MESSAGE_LENGTH:
            raise ValueError(f'message cannot exceed {MAX_MESSAGE_LENGTH} characters')
        return v


class ChatMessageResponse(BaseModel):
    message: str
    session_id: str


class MessageModel(BaseModel):
    role: str
    content: str
    timestamp: str


class SessionSummary(BaseModel):
    id: str
    title: str
    created_at: str
    last_updated: str


class SessionListResponse(BaseModel):
    sessions: List[SessionSummary]


class SessionDetailResponse(BaseModel):
    id: str
    title: str
    messages: List[MessageModel]
    created_at: str
    last_updated: str


class ActionCreateRequest(BaseModel):
    action_type: str
    action_summary: str
    action_data: Dict[str, Any]

    @field_validator('action_type')
    @classmethod
    def action_type_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('action_type cannot be empty')
        return v.strip()


class ActionConfirmRequest(BaseModel):
    action_id: str


class ActionResponse(BaseModel):
    id: str
    action_type: str
    action_summary: str
    action_data: Dict[str, Any]
    state: str
    created_at: datetime
    expires_at: datetime
    executed_at: Optional[datetime] = None
    result_message: Optional[str] = None
    last_error: Optional[str] = None


class ActionListResponse(BaseModel):
    actions: List[ActionResponse]


class ActionResultResponse(BaseModel):
    message: str
    action_id: str
    state: str


class FeeBalance(BaseModel):
    id: str
    name: str
    expected: str
    paid: str
    remaining: str


class FeeTotals(BaseModel):
    expected: str
    paid: str
    remaining: str
    students: List[FeeBalance]


class SalaryTotals(BaseModel):
    expected: str
    paid: str
    remaining: str


class FinancialSnapshotResponse(BaseModel):
    as_of_date: str
    fees: FeeTotals
    salaries: SalaryTotals


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    generator: str
    generator_available: bool
    config_issues: List[str] = []
