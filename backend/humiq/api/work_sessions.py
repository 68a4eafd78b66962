"""
Work Session API Routes.

REST endpoints for running a work session interview and reading its
Evidence Pack.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, status

from humiq.api.deps import (
    get_lifecycle_manager,
    get_prompt_policy,
    get_synthesis_pipeline,
)
from humiq.core.config import settings
from humiq.core.models import EvidencePack, WorkSession
from humiq.core.schemas import (
    CompleteSessionResponse,
    CreateWorkSessionRequest,
    CreateWorkSessionResponse,
    EvidencePackResponse,
    NextPromptRequest,
    NextPromptResponse,
    RecordEventRequest,
    RecordEventResponse,
    StageResponse,
    WorkSessionResponse,
    WorkSessionStateResponse,
)
from humiq.core.work_session import (
    EvidenceSynthesisPipeline,
    PromptGenerationPolicy,
    SessionLifecycleManager,
)

router = APIRouter(prefix=f"{settings.API_V1_PREFIX}/work-sessions", tags=["work-sessions"])
packs_router = APIRouter(prefix=f"{settings.API_V1_PREFIX}/evidence-packs", tags=["evidence-packs"])


def _pack_response(pack: EvidencePack, session: WorkSession) -> EvidencePackResponse:
    return EvidencePackResponse(
        id=pack.id,
        session_id=pack.session_id,
        share_id=pack.public_share_id,
        summary=pack.summary_json,
        generated_at=pack.generated_at,
        session=WorkSessionResponse.model_validate(session),
    )


# ==========================================================================
# Endpoints
# ==========================================================================

@router.post("", response_model=CreateWorkSessionResponse, status_code=status.HTTP_201_CREATED)
async def create_work_session(
    request: CreateWorkSessionRequest,
    manager: SessionLifecycleManager = Depends(get_lifecycle_manager),
):
    """
    Create a work session.

    Fetches public work evidence best-effort and opens the first stage.
    """
    created = await manager.create_session(
        evidence_source_ref=request.evidence_source_ref,
        role_track=request.role_track,
        level=request.level,
        duration_minutes=request.duration_minutes,
        job_posting_id=request.job_posting_id,
        job_context=request.job_context.model_dump(exclude_none=True) if request.job_context else None,
    )
    return CreateWorkSessionResponse(
        session_id=created.session_id,
        evidence_available=created.evidence_available,
    )


@router.get("/{session_id}", response_model=WorkSessionStateResponse)
async def get_work_session(
    session_id: UUID,
    manager: SessionLifecycleManager = Depends(get_lifecycle_manager),
):
    """Get session state with its stages and the current stage."""
    state = await manager.get_state(session_id)
    base = WorkSessionResponse.model_validate(state.session)
    return WorkSessionStateResponse(
        **base.model_dump(),
        evidence_available=state.evidence_available,
        current_stage=state.current_stage,
        stage_plan=state.stage_plan,
        stages=[StageResponse.model_validate(s) for s in state.stages],
        event_count=state.event_count,
        completion_eligible=state.completion_eligible,
    )


@router.post(
    "/{session_id}/events",
    response_model=RecordEventResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_event(
    session_id: UUID,
    request: RecordEventRequest,
    manager: SessionLifecycleManager = Depends(get_lifecycle_manager),
):
    """Record a candidate RESPONSE or CODE_SNAPSHOT."""
    recorded = await manager.record_event(
        session_id,
        event_type=request.event_type,
        text=request.text,
        code=request.code,
        language=request.language,
        stage_name=request.stage_name,
    )
    return RecordEventResponse(event_id=recorded.event_id, deduplicated=recorded.deduplicated)


@router.post("/{session_id}/next-prompt", response_model=NextPromptResponse)
async def next_prompt(
    session_id: UUID,
    request: NextPromptRequest,
    policy: PromptGenerationPolicy = Depends(get_prompt_policy),
):
    """
    Get the next interviewer prompt.

    Records the candidate response (if given), decides whether the stage
    is complete and advances to the next stage when it is.
    """
    decision = await policy.next_prompt(
        session_id,
        current_stage=request.current_stage,
        candidate_response=request.candidate_response,
    )
    return NextPromptResponse(
        next_prompt=decision.next_prompt,
        stage_complete=decision.stage_complete,
        signal_tags=decision.signal_tags,
        current_stage=decision.current_stage,
        fallback=decision.fallback,
    )


@router.post("/{session_id}/complete", response_model=CompleteSessionResponse)
async def complete_work_session(
    session_id: UUID,
    pipeline: EvidenceSynthesisPipeline = Depends(get_synthesis_pipeline),
):
    """Synthesize the Evidence Pack and complete the session."""
    result = await pipeline.complete_session(session_id)
    return CompleteSessionResponse(
        evidence_pack_id=result.evidence_pack_id,
        share_id=result.share_id,
    )


@router.get("/{session_id}/evidence-pack", response_model=EvidencePackResponse)
async def get_session_evidence_pack(
    session_id: UUID,
    pipeline: EvidenceSynthesisPipeline = Depends(get_synthesis_pipeline),
):
    """Get the Evidence Pack of a completed session."""
    pack, session = await pipeline.get_pack(session_id=session_id)
    return _pack_response(pack, session)


@packs_router.get("/{share_id}", response_model=EvidencePackResponse)
async def get_shared_evidence_pack(
    share_id: str,
    pipeline: EvidenceSynthesisPipeline = Depends(get_synthesis_pipeline),
):
    """Get an Evidence Pack by its public share id."""
    pack, session = await pipeline.get_pack(share_id=share_id)
    return _pack_response(pack, session)
