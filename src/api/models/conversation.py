"""
Conversation data models

Request/response payloads for the conversation API and the
immutable end-of-conversation summary handed to persistence
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional


class ProblemPayload(BaseModel):
    """Problem statement and canonical answer supplied by the content layer"""
    problem_id: str = Field(..., description="Question identifier")
    statement: str = Field(..., min_length=1, description="Problem text shown to every participant")
    answer: str = Field("", description="Canonical answer used for feedback and scoring")


class StartConversationRequest(BaseModel):
    """Start conversation request"""
    mode: str = Field(..., description="solo, single, multi or group")
    participant_id: str = Field(..., min_length=1, description="Learner identifier")
    problem: ProblemPayload
    initial_answer: Optional[str] = Field(None, description="Learner's first answer that opens the discussion")
    persona_ids: Optional[List[str]] = Field(None, description="Explicit persona selection (default: by role)")
    seed: Optional[int] = Field(None, description="Seed for persona selection randomness")


class LearnerMessageRequest(BaseModel):
    """Learner utterance request"""
    text: str = Field(..., min_length=1)


class FinishConversationRequest(BaseModel):
    """Final answer submission"""
    final_answer: Optional[str] = None


class ConversationSummary(BaseModel):
    """Finalized per-conversation summary, handed off exactly once"""
    model_config = ConfigDict(frozen=True)

    conversation_id: str
    participant_id: str
    mode: str
    problem_id: str
    transcript: List[Dict[str, Any]]
    final_answer: str
    correctness: Optional[bool] = None
    duration_seconds: float
    timed_out: bool = False
