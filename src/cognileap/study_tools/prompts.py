"""Prompt templates for study-tool generation."""

from __future__ import annotations

from dataclasses import dataclass

from cognileap.generation.tiers import ArtifactType

_SYSTEM = {
    ArtifactType.SUMMARY: (
        "You are an expert educator who writes concise, accurate summaries of study "
        "material. Capture the main ideas, key terms and conclusions in well organized "
        "Markdown."
    ),
    ArtifactType.NOTES: (
        "You are an expert note-taker. Turn study material into thorough, structured "
        "Markdown notes with headings, bullet points and highlighted key terms."
    ),
    ArtifactType.GUIDE: (
        "You are an expert tutor. Build a complete study guide in Markdown: learning "
        "objectives, explained concepts, worked examples and review questions."
    ),
    ArtifactType.FLASHCARDS: (
        "You create study flashcards. Respond with a JSON array only, no prose and no "
        "code fences. Each element is an object with string fields \"id\", \"question\" "
        "and \"answer\"."
    ),
}

_USER = {
    ArtifactType.SUMMARY: "Summarize \"{title}\".\n\n{content}",
    ArtifactType.NOTES: "Write study notes for \"{title}\".\n\n{content}",
    ArtifactType.GUIDE: "Create a study guide for \"{title}\".\n\n{content}",
    ArtifactType.FLASHCARDS: (
        "Create {number_of_cards} flashcards at {difficulty} difficulty for \"{title}\".\n"
        "Additional instructions: {custom_instructions}\n\n{content}"
    ),
}

_TITLES = {
    ArtifactType.SUMMARY: "Smart Summary",
    ArtifactType.NOTES: "Smart Notes",
    ArtifactType.GUIDE: "Study Guide",
    ArtifactType.FLASHCARDS: "Generated flashcards",
}


@dataclass
class FlashcardOptions:
    number_of_cards: str = "10"
    difficulty: str = "medium"
    custom_instructions: str | None = None


def build_prompts(
    artifact_type: ArtifactType,
    content: str,
    title: str,
    flashcard_options: FlashcardOptions | None = None,
) -> tuple[str, str]:
    """Return ``(system_prompt, user_prompt)`` for an artifact."""
    options = flashcard_options or FlashcardOptions()
    user = _USER[artifact_type].format(
        title=title,
        content=content,
        number_of_cards=options.number_of_cards,
        difficulty=options.difficulty,
        custom_instructions=options.custom_instructions or "No specific instructions provided.",
    )
    return _SYSTEM[artifact_type], user


def output_title(artifact_type: ArtifactType, source_title: str) -> str:
    return f"{_TITLES[artifact_type]}: {source_title}"
