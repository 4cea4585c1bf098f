"""Structured brainstorming prompts."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from .client import AskResult, CodexClient
from .errors import BridgeError
from .executor import ProgressCallback, notify_progress
from .models import BrainstormMethodology, BuildOptions

logger = logging.getLogger(__name__)

DEFAULT_IDEA_COUNT = 12

_METHODOLOGY_INSTRUCTIONS = {
    BrainstormMethodology.DIVERGENT: (
        "**Divergent Thinking Approach:**\n"
        "- Generate maximum quantity of ideas without self-censoring\n"
        "- Build on wild or seemingly impractical ideas\n"
        "- Combine unrelated concepts for unexpected solutions\n"
        "- Use \"Yes, and...\" thinking to expand each concept\n"
        "- Postpone evaluation until all ideas are generated"
    ),
    BrainstormMethodology.CONVERGENT: (
        "**Convergent Thinking Approach:**\n"
        "- Focus on refining and improving existing concepts\n"
        "- Synthesize related ideas into stronger solutions\n"
        "- Apply critical evaluation criteria\n"
        "- Prioritize based on feasibility and impact\n"
        "- Develop implementation pathways for top ideas"
    ),
    BrainstormMethodology.SCAMPER: (
        "**SCAMPER Creative Triggers:**\n"
        "- **Substitute:** What can be substituted or replaced?\n"
        "- **Combine:** What can be combined or merged?\n"
        "- **Adapt:** What can be adapted from other domains?\n"
        "- **Modify:** What can be magnified, minimized, or altered?\n"
        "- **Put to other use:** How else can this be used?\n"
        "- **Eliminate:** What can be removed or simplified?\n"
        "- **Reverse:** What can be rearranged or reversed?"
    ),
    BrainstormMethodology.DESIGN_THINKING: (
        "**Human-Centered Design Thinking:**\n"
        "- **Empathize:** Consider user needs, pain points, and contexts\n"
        "- **Define:** Frame problems from user perspective\n"
        "- **Ideate:** Generate user-focused solutions\n"
        "- **Consider Journey:** Think through complete user experience\n"
        "- **Prototype Mindset:** Focus on testable, iterative concepts"
    ),
    BrainstormMethodology.LATERAL: (
        "**Lateral Thinking Approach:**\n"
        "- Make unexpected connections between unrelated fields\n"
        "- Challenge fundamental assumptions\n"
        "- Use random word association to trigger new directions\n"
        "- Apply metaphors and analogies from other domains\n"
        "- Reverse conventional thinking patterns"
    ),
}


@dataclass
class BrainstormRequest:
    challenge: str
    methodology: BrainstormMethodology | str = BrainstormMethodology.AUTO
    domain: str | None = None
    constraints: str | None = None
    existing_context: str | None = None
    idea_count: int = DEFAULT_IDEA_COUNT
    include_analysis: bool = True


def methodology_instructions(
    methodology: BrainstormMethodology | str,
    domain: str | None = None,
) -> str:
    try:
        methodology = BrainstormMethodology(methodology)
    except ValueError:
        logger.warning("Unknown methodology %r, using auto", methodology)
        methodology = BrainstormMethodology.AUTO
    if methodology in _METHODOLOGY_INSTRUCTIONS:
        return _METHODOLOGY_INSTRUCTIONS[methodology]

    lead = (
        f"Given the {domain} domain, apply the most effective combination of:"
        if domain else "Combine multiple methodologies:"
    )
    return (
        "**Mixed Approach:**\n"
        f"{lead}\n"
        "- Divergent exploration with domain-specific knowledge\n"
        "- SCAMPER triggers and lateral thinking\n"
        "- Human-centered perspective for practical value"
    )


def build_brainstorm_prompt(request: BrainstormRequest) -> str:
    """Render *request* as a brainstorming prompt.

    Raises:
        BridgeError: the challenge is blank or idea_count is not positive.
    """
    challenge = request.challenge.strip()
    if not challenge:
        raise BridgeError("A brainstorming challenge or question is required")
    if request.idea_count < 1:
        raise BridgeError(f"idea_count must be positive, got {request.idea_count}")

    context = [
        f"{label}: {value}"
        for label, value in (
            ("Domain", request.domain),
            ("Constraints", request.constraints),
            ("Background", request.existing_context),
        )
        if value
    ]
    sections = [
        "# BRAINSTORMING SESSION",
        f"## Challenge: {challenge}",
        "## Framework\n" + methodology_instructions(request.methodology, request.domain),
    ]
    if context:
        sections.append("## Context\n" + "\n".join(context))
    sections.append(
        "## Requirements\n"
        f"Generate {request.idea_count} actionable ideas. "
        "Keep descriptions concise (2-3 sentences max)."
    )
    if request.include_analysis:
        sections.append(
            "## Analysis\nRate each: Feasibility (1-5), Impact (1-5), Innovation (1-5)"
        )
    idea_format = "## Format\n### Idea [N]: [Name]\nDescription: [2-3 sentences]"
    if request.include_analysis:
        idea_format += "\nRatings: F:[1-5] I:[1-5] N:[1-5]"
    sections.append(idea_format)
    sections.append("Begin:")
    return "\n\n".join(sections)


async def run_brainstorm(
    client: CodexClient,
    request: BrainstormRequest,
    options: BuildOptions | None = None,
    *,
    session_id: str | None = None,
    reset_session: bool = False,
    timeout: float | None = None,
    on_progress: ProgressCallback | None = None,
) -> AskResult:
    """Brainstorm through the normal ask flow, so follow-ups can resume it."""
    prompt = build_brainstorm_prompt(request)
    methodology = getattr(request.methodology, "value", request.methodology)
    logger.debug(
        "Brainstorm: methodology %s for domain %s",
        methodology, request.domain or "general",
    )
    await notify_progress(
        on_progress,
        f"Generating {request.idea_count} ideas via {methodology} methodology...",
    )
    return await client.ask(
        prompt,
        options,
        session_id=session_id,
        reset_session=reset_session,
        timeout=timeout,
        on_progress=on_progress,
    )
