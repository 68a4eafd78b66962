"""
Instructions, output schemas and context builders for the generation
collaborator.

Wording lives here only; the engine depends on the schema names and the
shapes in `humiq.core.schemas`, never on prompt text.
"""

from collections.abc import Sequence
from typing import Optional

from humiq.core.schemas import (
    CandidateBrief,
    EvidencePackSummary,
    NextPromptDecision,
    OpeningPrompt,
)
from humiq.core.work_session.generation import StructuredSchema


# ==========================================================================
# System Instructions
# ==========================================================================

INTERVIEWER_INSTRUCTIONS = """You are a calm, supportive teammate conducting a real-work technical conversation for HumIQ.

CRITICAL RULES:
- Ask exactly 1 question at a time
- Be conversational, not interrogative
- Base prompts on the candidate's public work when available
- Focus on real work: requirements, tradeoffs, execution, testing, observability
- No trivia, no gotchas, no leetcode-style puzzles
- If evidence is missing, ask questions that can reveal it
- Keep questions SHORT and concise (1-2 sentences max)

STAGE GUIDELINES:
- framing: understanding the problem and key requirements
- approach: solution design or architecture choice
- build: implementation approach or key code decisions
- review: testing, edge cases, or deployment

SIGNAL TAGS (use 1-2 per candidate response):
- Ownership: takes responsibility, drives to completion
- Judgment: makes good tradeoffs, prioritizes well
- Execution: ships working code, unblocks self
- Communication: explains clearly, asks good questions
- ProductSense: understands user impact, business context"""


EVIDENCE_PACK_INSTRUCTIONS = """You are HumIQ generating an Evidence Pack that combines public work evidence and interview insights.

CRITICAL RULES:
- Only claim what was observed in the work evidence or the transcript/code
- Every strength and risk must cite a specific example from the transcript or work evidence
- Explicitly list gaps in evidence; never silently omit an unknown
- Avoid generic praise
- No numeric scores anywhere
- Make it skimmable in 5 minutes

The report should help a hiring manager quickly understand:
1. What real work the candidate has produced
2. How they performed in the interview conversation
3. What is still unknown or risky
4. A clear recommended next step"""


BRIEF_INSTRUCTIONS = """You are HumIQ reviewing a candidate's public work before a work session.

CRITICAL RULES:
- Use ONLY the text inside RAW_WORK_EVIDENCE
- Do not infer, guess or invent information; links are reference only
- If the evidence is thin, say so clearly
- Cite actual repository names
- No resumes, no buzzwords, no hype
- No numeric scores"""


# ==========================================================================
# Output Schemas
# ==========================================================================

OPENING_PROMPT_SCHEMA = StructuredSchema.from_model(
    OpeningPrompt,
    name="generate_opening_prompt",
    description="Generate the opening question for the current interview stage",
)

NEXT_PROMPT_SCHEMA = StructuredSchema.from_model(
    NextPromptDecision,
    name="generate_next_prompt",
    description="Classify the candidate's latest response and generate the next interview prompt",
)

EVIDENCE_PACK_SCHEMA = StructuredSchema.from_model(
    EvidencePackSummary,
    name="generate_evidence_pack",
    description="Generate an Evidence Pack combining work evidence and interview insights",
)

CANDIDATE_BRIEF_SCHEMA = StructuredSchema.from_model(
    CandidateBrief,
    name="generate_candidate_brief",
    description="Generate a structured candidate brief based only on the raw work evidence",
)

FALLBACK_QUESTION = "Thanks for sharing. Could you walk me through the next step of your thinking?"

NO_EVIDENCE_GAP = "No public work evidence was available for this candidate."


# ==========================================================================
# Context Builders
# ==========================================================================

def format_job_context(job_context: Optional[dict]) -> str:
    if not job_context:
        return ""

    lines = ["JOB CONTEXT:"]
    if job_context.get("title"):
        lines.append(f"- Title: {job_context['title']}")
    if job_context.get("description"):
        lines.append(f"- Description: {job_context['description']}")
    if job_context.get("requirements"):
        lines.append(f"- Requirements: {job_context['requirements']}")
    tech_stack = job_context.get("tech_stack")
    if isinstance(tech_stack, str):
        tech_stack = [tech_stack]
    if tech_stack:
        lines.append(f"- Tech stack: {', '.join(str(item) for item in tech_stack)}")
    return "\n".join(lines) if len(lines) > 1 else ""


def build_prompt_context(
    *,
    role_track: str,
    level: str,
    duration_minutes: int,
    is_demo: bool,
    stage_name: str,
    conversation: Sequence[tuple[str, str]],
    candidate_response: Optional[str],
    evidence: Optional[str],
    job_context: Optional[dict],
    evidence_chars: int,
) -> str:
    """
    Conversation context for the interviewer.

    Args:
        conversation: (speaker, text) pairs of earlier PROMPT/RESPONSE events
        candidate_response: Latest answer; None when asking the opening question
    """
    mode = "DEMO MODE - 1 question per stage" if is_demo else "standard"
    sections = [
        "SESSION CONTEXT:\n"
        f"Role Track: {role_track}\n"
        f"Level: {level}\n"
        f"Duration: {duration_minutes} minutes ({mode})\n"
        f"Current Stage: {stage_name}"
    ]

    if evidence:
        sections.append(f"WORK EVIDENCE (use to tailor questions):\n{evidence[:evidence_chars]}")
    else:
        sections.append("NO WORK EVIDENCE AVAILABLE - ask questions that can reveal it.")

    job = format_job_context(job_context)
    if job:
        sections.append(job)

    history = "\n\n".join(f"{speaker}: {text}" for speaker, text in conversation)
    sections.append(f"CONVERSATION SO FAR:\n{history or '(Starting conversation)'}")

    if candidate_response:
        sections.append(f"CANDIDATE'S LATEST RESPONSE:\n{candidate_response}")
        sections.append(
            f"Tag the response with 1-2 signals, say whether the {stage_name} stage "
            "has enough signal, and ask the next question."
        )
    else:
        sections.append(f"Generate the opening question for the {stage_name} stage.")

    return "\n\n".join(sections)


def build_brief_context(evidence: str) -> str:
    """Raw work evidence for the candidate brief pre-analysis."""
    return (
        "TASK:\n"
        "Based ONLY on RAW_WORK_EVIDENCE, generate a Work Evidence Brief that helps "
        "a hiring manager decide whether to interview this candidate.\n\n"
        f"RAW_WORK_EVIDENCE:\n<<<\n{evidence}\n>>>\n\n"
        "Generate the candidate brief now. Be specific, cite actual repository "
        "names, and note any gaps."
    )


def format_work_brief(brief: dict) -> str:
    """Render a stored CandidateBrief for the synthesis context."""
    lines = [
        "PRE-COMPUTED WORK EVIDENCE ANALYSIS (use this data directly in the merged report):",
        f"- Candidate Name: {brief.get('candidateName') or 'Unknown'}",
        f"- Evidence Verdict: {brief.get('verdict')}",
        f"- Evidence Confidence: {brief.get('confidence')}",
        f"- Rationale: {brief.get('rationale')}",
        "",
        "Work Artifacts:",
    ]
    for i, artifact in enumerate(brief.get("workArtifacts") or [], start=1):
        lines.append(f"{i}. {artifact.get('title')}")
        lines.append(f"   - What it is: {artifact.get('whatItIs')}")
        lines.append(f"   - Why it matters: {artifact.get('whyItMatters')}")
        lines.append(f"   - Signals: {', '.join(artifact.get('signals') or [])}")
        lines.append(f"   - URL: {artifact.get('url') or 'N/A'}")

    lines.extend(["", "Signal Synthesis:"])
    for signal in brief.get("signalSynthesis") or []:
        level = str(signal.get("level")).upper()
        lines.append(f"- {signal.get('name')}: {level} - {signal.get('evidence')}")

    lines.extend(["", "Risks/Unknowns:"])
    for risk in brief.get("risksUnknowns") or []:
        lines.append(f"- {risk.get('description')}")

    recommendation = brief.get("recommendation") or {}
    lines.append("")
    lines.append(f"Evidence Recommendation: {recommendation.get('verdict')}")
    lines.append(f"Reasons: {'; '.join(recommendation.get('reasons') or [])}")
    return "\n".join(lines)


def build_synthesis_context(
    *,
    role_track: str,
    level: str,
    duration_minutes: int,
    evidence_source_ref: str,
    evidence: Optional[str],
    transcript: str,
    signal_tags: Sequence[str],
    evidence_chars: int,
    work_brief: Optional[dict] = None,
) -> str:
    """
    Transcript, evidence and recorded tags for the Evidence Pack.

    A stored candidate brief stands in for the raw evidence.
    """
    sections = [
        "Generate the Evidence Pack for this work session.",
        "SESSION INFO:\n"
        f"- Role Track: {role_track}\n"
        f"- Target Level: {level}\n"
        f"- Duration: {duration_minutes} minutes\n"
        f"- Evidence Source: {evidence_source_ref}",
    ]

    if work_brief:
        sections.append(format_work_brief(work_brief))
    elif evidence:
        sections.append(f"WORK EVIDENCE:\n{evidence[:evidence_chars]}")
    else:
        sections.append("NO WORK EVIDENCE AVAILABLE - note this as a gap in risks_or_unknowns.")

    sections.append(
        f"SESSION TRANSCRIPT:\n{transcript or '(No transcript available - state this as a gap)'}"
    )
    sections.append(
        f"OBSERVED SIGNAL TAGS: {', '.join(signal_tags) if signal_tags else 'None recorded'}"
    )
    return "\n\n".join(sections)
