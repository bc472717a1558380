"""Steering presets: reusable caller context appended to prompts.

Steering never replaces an operation's instruction; it is appended under a
fixed heading so the structural contract stays intact.
"""

from schemaflow.constants import STEERING_HEADING


def append_context(base: str, *contexts: str) -> str:
    """Append non-blank ``contexts`` verbatim to ``base`` under the steering heading."""
    extra = [c for c in contexts if c and c.strip()]
    if not extra:
        return base
    block = "\n".join(extra)
    if not base:
        return f"{STEERING_HEADING}\n{block}"
    return f"{base}\n\n{STEERING_HEADING}\n{block}"


class SteeringPresets:
    """Ready-made steering text for common situations."""

    # --- tone ---
    BUSINESS_TONE = (
        "Use a professional business tone. Be concise and precise, and prefer "
        "formal vocabulary."
    )
    CASUAL_TONE = "Use a friendly, conversational tone. Plain words over jargon."
    TECHNICAL_TONE = (
        "Use precise technical language. Keep terminology consistent and do "
        "not simplify domain concepts."
    )

    # --- scoring ---
    URGENCY_SCORE = (
        "Score by urgency: imminent deadlines and blocking issues score high; "
        "items that can wait score low."
    )
    IMPORTANCE_SCORE = (
        "Score by importance: long-term impact and consequences of neglect "
        "matter more than time pressure."
    )
    QUALITY_SCORE = (
        "Score by quality: completeness, correctness and clarity of the input."
    )

    # --- sorting ---
    PRIORITY_SORT = "Order by priority, most pressing first."
    EFFORT_SORT = "Order by estimated effort, quickest items first."
    DEADLINE_SORT = "Order by deadline, earliest first; items without one go last."

    # --- situational context ---
    WORK_CONTEXT = "The user is at work; favour professional and time-bound items."
    HOME_CONTEXT = "The user is at home; favour personal and household items."
    MOBILE_CONTEXT = "The user is on a mobile device; keep any text short."

    # --- extraction ---
    STRICT_EXTRACTION = (
        "Only extract values stated explicitly in the input. Leave fields "
        "empty rather than guessing."
    )
    FLEXIBLE_EXTRACTION = (
        "Infer reasonable values from context when they are implied but not "
        "stated."
    )
    DETAILED_EXTRACTION = (
        "Capture as much detail as the schema allows, including optional fields."
    )

    @classmethod
    def combine(cls, *presets: str) -> str:
        """Join several presets into one steering string."""
        return "\n".join(p.strip() for p in presets if p and p.strip())
