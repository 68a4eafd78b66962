"""
HumIQ Work Sessions - Pydantic Schemas
=======================================

Request and response schemas for API validation, plus the structured
shapes the generation collaborator must return.
"""

import enum
from datetime import datetime
from typing import Any, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from humiq.core.models import RoleTrack, SessionLevel, SessionStatus, StageName


# ==========================================================================
# Base Schemas
# ==========================================================================

class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


# ==========================================================================
# Collaborator Output Schemas
# ==========================================================================

class SignalTag(str, enum.Enum):
    """Fixed vocabulary of competency signals."""
    OWNERSHIP = "Ownership"
    JUDGMENT = "Judgment"
    EXECUTION = "Execution"
    COMMUNICATION = "Communication"
    PRODUCT_SENSE = "ProductSense"


class OpeningPrompt(BaseSchema):
    """First question of a stage."""

    next_prompt: str = Field(
        alias="nextPrompt",
        min_length=1,
        description="Exactly one short, non-trivia question for the candidate (1-2 sentences)",
    )


class NextPromptDecision(BaseSchema):
    """Classification of a candidate response plus the follow-up prompt."""

    next_prompt: str = Field(
        alias="nextPrompt",
        min_length=1,
        description="Brief acknowledgment and the next question (1-3 sentences)",
    )
    stage_complete: bool = Field(
        alias="stageComplete",
        description="Whether the current stage has enough signal to move on",
    )
    signal_tags: list[SignalTag] = Field(
        default_factory=list,
        alias="signalTags",
        description="1-2 signal tags observed in the candidate's latest response",
    )

    @field_validator("signal_tags", mode="before")
    @classmethod
    def normalize_tags(cls, v: Any) -> list[str]:
        """Keep known tags only, without duplicates, at most two."""
        if not isinstance(v, list):
            return []
        known = {tag.value for tag in SignalTag}
        tags: list[str] = []
        for tag in v:
            if tag in known and tag not in tags:
                tags.append(tag)
        return tags[:2]


class Strength(BaseSchema):
    signal: str = Field(min_length=1, description="The strength observed")
    evidence: str = Field(min_length=1, description="Specific transcript or work example")


class RiskOrUnknown(BaseSchema):
    signal: str = Field(min_length=1, description="The risk or unknown area")
    evidence_gap: str = Field(min_length=1, description="What evidence is missing")


class DecisionLogEntry(BaseSchema):
    decision: str = Field(min_length=1, description="A decision the candidate made")
    tradeoff: str = Field(min_length=1, description="The tradeoff they considered")
    example: str = Field(min_length=1, description="Quote or specific example")


class ExecutionObservation(BaseSchema):
    observation: str = Field(min_length=1, description="What was observed")
    example: str = Field(min_length=1, description="Specific example")


class SignalSynthesisEntry(BaseSchema):
    name: str
    level: Literal["high", "medium", "low"]
    evidence: str


class WorkArtifact(BaseSchema):
    """A notable piece of the candidate's public work."""

    id: str
    title: str = Field(description="Repository or project name")
    url: Optional[str] = None
    what_it_is: str = Field(alias="whatItIs")
    why_it_matters: str = Field(alias="whyItMatters")
    signals: list[str] = Field(
        default_factory=list,
        description="Signals this artifact demonstrates (Shipping, Ownership, Judgment, ...)",
    )


class ValidationPlan(BaseSchema):
    """One risk worth validating live, and what a strong answer sounds like."""

    risk_to_validate: str = Field(alias="riskToValidate")
    question: str
    strong_answer: str = Field(alias="strongAnswer")


class Recommendation(BaseSchema):
    verdict: Literal["interview", "caution", "pass"]
    reasons: list[str] = Field(description="2-3 key reasons for the recommendation")


class BriefRisk(BaseSchema):
    id: str
    description: str


class BriefRecommendation(BaseSchema):
    verdict: Literal["pass", "fail"]
    reasons: list[str] = Field(default_factory=list, max_length=2)


class CandidateBrief(BaseSchema):
    """
    Pre-analysis of public work evidence, produced once at session
    creation and folded into the Evidence Pack at completion.
    """

    candidate_name: str = Field(
        "",
        alias="candidateName",
        description="Name only if it appears in the work evidence, otherwise empty",
    )
    verdict: Literal["pass", "fail"]
    confidence: Literal["high", "medium", "low"]
    rationale: str = Field(description="One calm, specific sentence tied to evidence")
    work_artifacts: list[WorkArtifact] = Field(
        default_factory=list,
        alias="workArtifacts",
        max_length=3,
    )
    signal_synthesis: list[SignalSynthesisEntry] = Field(
        default_factory=list,
        alias="signalSynthesis",
    )
    risks_unknowns: list[BriefRisk] = Field(
        default_factory=list,
        alias="risksUnknowns",
        max_length=3,
    )
    validation_plan: Optional[ValidationPlan] = Field(None, alias="validationPlan")
    recommendation: BriefRecommendation


class EvidencePackSummary(BaseSchema):
    """Structured Evidence Pack. No numeric scores anywhere."""

    # Always overwritten from the session
    role_track: Optional[RoleTrack] = Field(None, alias="roleTrack")
    level_estimate: SessionLevel = Field(
        alias="levelEstimate",
        description="Estimated level based on observed signals",
    )
    confidence: Literal["high", "medium", "low"]
    strengths: list[Strength]
    risks_or_unknowns: list[RiskOrUnknown]
    decision_log: list[DecisionLogEntry]
    execution_observations: list[ExecutionObservation]
    recommended_next_step: str = Field(min_length=1)
    highlights: list[str] = Field(description="3-5 key highlights for quick scanning")

    verdict: Optional[Literal["interview", "caution", "pass"]] = None
    rationale: Optional[str] = None
    candidate_name: Optional[str] = Field(None, alias="candidateName")
    github_summary: Optional[str] = None
    signal_synthesis: list[SignalSynthesisEntry] = Field(
        default_factory=list,
        alias="signalSynthesis",
    )
    work_artifacts: list[WorkArtifact] = Field(
        default_factory=list,
        alias="workArtifacts",
        description="Notable work artifacts from the public work evidence",
    )
    recommendation: Optional[Recommendation] = Field(
        None,
        description="Final recommendation for the hiring manager",
    )
    validation_plan: Optional[ValidationPlan] = Field(None, alias="validationPlan")


# ==========================================================================
# Work Session Schemas
# ==========================================================================

class JobContext(BaseSchema):
    """Job requirement context folded into prompt generation."""

    title: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = None
    requirements: Optional[str] = None
    tech_stack: Optional[Union[list[str], str]] = None


class CreateWorkSessionRequest(BaseSchema):
    """Enum and range checks happen in the engine so both surfaces agree."""

    evidence_source_ref: str = Field(min_length=1, max_length=2000)
    role_track: str
    level: str
    duration_minutes: int
    job_posting_id: Optional[str] = None
    job_context: Optional[JobContext] = None


class CreateWorkSessionResponse(BaseSchema):
    session_id: UUID
    evidence_available: bool


class RecordEventRequest(BaseSchema):
    event_type: str = Field(description="RESPONSE or CODE_SNAPSHOT")
    text: Optional[str] = None
    code: Optional[str] = None
    language: Optional[str] = Field(None, max_length=50)
    stage_name: Optional[str] = Field(None, description="Defaults to the open stage")


class RecordEventResponse(BaseSchema):
    event_id: UUID
    deduplicated: bool = False


class NextPromptRequest(BaseSchema):
    current_stage: str
    candidate_response: Optional[str] = None


class NextPromptResponse(BaseSchema):
    next_prompt: str
    stage_complete: bool
    signal_tags: list[str]
    current_stage: Optional[StageName] = Field(
        None, description="Open stage after this call; null once the last stage closed"
    )
    fallback: bool = False


class CompleteSessionResponse(BaseSchema):
    evidence_pack_id: UUID
    share_id: str


class StageResponse(BaseSchema):
    stage_name: StageName
    started_at: datetime
    ended_at: Optional[datetime] = None


class WorkSessionResponse(BaseSchema):
    id: UUID
    evidence_source_ref: str
    role_track: RoleTrack
    level: SessionLevel
    duration_minutes: int
    status: SessionStatus
    started_at: datetime
    ended_at: Optional[datetime] = None


class WorkSessionStateResponse(WorkSessionResponse):
    evidence_available: bool
    current_stage: Optional[StageName] = None
    stage_plan: list[StageName]
    stages: list[StageResponse]
    event_count: int
    completion_eligible: bool


class EvidencePackResponse(BaseSchema):
    id: UUID
    session_id: UUID
    share_id: str
    summary: dict[str, Any]
    generated_at: datetime
    session: WorkSessionResponse


# ==========================================================================
# Common Response Schemas
# ==========================================================================

class ErrorResponse(BaseSchema):
    """Error response schema."""

    error: str
    detail: Optional[str] = None
    code: Optional[str] = None


class HealthResponse(BaseSchema):
    """Health check response."""

    status: str
    version: str
    environment: str
    database: str
