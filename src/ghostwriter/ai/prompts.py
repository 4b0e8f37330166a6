"""Prompt construction for continuations and selection actions.

Every function here is pure: the controllers hand over raw document text and
receive plain strings back from the client, they never see these prompts.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Mapping

__all__ = [
    "WritingType",
    "WRITING_TYPES",
    "SELECTION_ACTIONS",
    "resolve_instructions",
    "continuation_messages",
    "selection_messages",
]


@dataclass(slots=True, frozen=True)
class WritingType:
    id: str
    name: str
    description: str
    instructions: str


WRITING_TYPES: Mapping[str, WritingType] = {
    item.id: item
    for item in (
        WritingType(
            "general",
            "General",
            "General purpose writing with balanced tone and style",
            "Provide balanced, neutral suggestions that maintain the user's style and tone.",
        ),
        WritingType(
            "email",
            "Email",
            "Professional email communication",
            "Suggest concise, clear, and professional language appropriate for email communication. "
            "Focus on clarity and directness while maintaining appropriate formality.",
        ),
        WritingType(
            "journal",
            "Journal",
            "Personal journal or diary entries",
            "Offer reflective, introspective suggestions that maintain a personal and authentic voice. "
            "Emphasize emotional expression and self-reflection.",
        ),
        WritingType(
            "academic",
            "Academic",
            "Scholarly writing for academic purposes",
            "Provide formal, precise language with academic terminology. "
            "Focus on logical structure, evidence-based arguments, and proper citation style.",
        ),
        WritingType(
            "business",
            "Business",
            "Professional business documents",
            "Suggest clear, concise business language with appropriate terminology. "
            "Focus on actionable points, data-driven insights, and professional tone.",
        ),
        WritingType(
            "creative",
            "Creative",
            "Creative writing and storytelling",
            "Offer imaginative, vivid language that enhances narrative elements. "
            "Focus on descriptive details, character development, and engaging storytelling.",
        ),
        WritingType(
            "custom",
            "Custom",
            "Custom writing style with your own instructions",
            "",
        ),
    )
}

_CONTINUATION_SYSTEM_PROMPT = (
    "You are a writing assistant. When asked to continue text, provide only the new suggested text, "
    "NOT the original input. Keep suggestions concise and relevant to the context."
)

SELECTION_ACTIONS: Mapping[str, tuple[str, str]] = {
    "expand": (
        "Expand on the provided text with additional relevant details and insights.",
        "Expand on this text",
    ),
    "rewrite": (
        "Rewrite the provided text to improve clarity and flow while maintaining the original meaning.",
        "Rewrite this text",
    ),
    "improve": (
        "Enhance the provided text to improve clarity, flow, and impact while maintaining the original "
        "meaning and voice.",
        "Enhance this text",
    ),
}


def resolve_instructions(writing_type: str | None, custom_instructions: str | None) -> str:
    """Return the style instructions for ``writing_type`` plus any custom text."""

    entry = WRITING_TYPES.get(writing_type or "general", WRITING_TYPES["general"])
    parts = [entry.instructions] if entry.instructions else []
    custom = (custom_instructions or "").strip()
    if custom:
        parts.append(custom)
    return " ".join(parts)


def continuation_messages(
    context: str,
    *,
    writing_type: str | None = None,
    custom_instructions: str | None = None,
) -> List[dict[str, str]]:
    system_prompt = _CONTINUATION_SYSTEM_PROMPT
    instructions = resolve_instructions(writing_type, custom_instructions)
    if instructions:
        system_prompt = f"{system_prompt} {instructions}"
    user_prompt = (
        "Continue the following text with a suggestion. Return ONLY the new content, "
        f"not the original text:\n\n{context}"
    )
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_prompt},
    ]


def selection_messages(
    action: str,
    selected_text: str,
    *,
    before: str = "",
    after: str = "",
    writing_type: str | None = None,
    custom_instructions: str | None = None,
) -> List[dict[str, str]]:
    """Build the chat messages for an expand/rewrite/improve request.

    The surrounding text is included so the replacement reads naturally in
    place, but the model is told to return only the replacement.
    """

    try:
        action_prompt, verb = SELECTION_ACTIONS[action]
    except KeyError as exc:
        raise ValueError(f"Unknown selection action '{action}'") from exc
    label = WRITING_TYPES.get(writing_type or "general", WRITING_TYPES["general"]).name.lower()
    system_prompt = f"You are an expert writing assistant specializing in {label} writing. {action_prompt}"
    instructions = resolve_instructions(writing_type, custom_instructions)
    if instructions:
        system_prompt = f"{system_prompt} {instructions}"

    sections: list[str] = []
    if before or after:
        sections.append(
            "The text appears in this context (the selection is marked with <<< >>>):\n\n"
            f"{before}<<<{selected_text}>>>{after}"
        )
    sections.append(f"{verb}:\n\n{selected_text}")
    sections.append("Provide only the replacement text without explanations.")
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": "\n\n".join(sections)},
    ]
