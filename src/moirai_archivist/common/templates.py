"""Prompt templating helpers."""
from __future__ import annotations
from importlib import resources
from pathlib import Path
from typing import Mapping

# shipped as package data under moirai_archivist/prompts/
TEMPLATE_PACKAGE = "moirai_archivist"
TEMPLATE_NAME = "prompt_template.txt"

SYSTEM_TAG = "<|system|>"
USER_TAG = "<|user|>"
DEFAULT_SYSTEM_PROMPT = (
    "You are the Archivist of Moirai, a philosophical AI that generates "
    "short narrative fragments."
)
# Used when the template has no user section; carries every placeholder
DEFAULT_USER_PROMPT = (
    "The SECRET_TAG for this fragment is: {{secretTag}}.\n"
    "The setting of the fragment is: {{genre}}.\n"
    "The current difficulty is Tier {{difficultyTier}}. {{subtlety}}"
)


def load_template(path: str | Path | None = None) -> str:
    """
    Load a prompt template file.

    Args:
        path: Path to template. The template bundled with the package when omitted.
    """
    if path is None:
        bundled = resources.files(TEMPLATE_PACKAGE).joinpath("prompts").joinpath(TEMPLATE_NAME)
        return bundled.read_text(encoding="utf-8")
    return Path(path).read_text(encoding="utf-8")


def render_prompt(template: str, values: Mapping[str, object]) -> str:
    """
    Render values into the template.

    Args:
        template: Template content containing ``{{name}}`` placeholders.
        values: Placeholder name to value. Unknown placeholders are left as-is.

    Returns:
        Rendered prompt.
    """
    out = template
    for name, value in values.items():
        out = out.replace("{{" + name + "}}", str(value))
    return out


def extract_system(template: str) -> str:
    """Extract system prompt between <|system|> and <|user|>.

    Falls back to a concise default if tags are missing.
    """
    if SYSTEM_TAG in template and USER_TAG in template:
        start = template.index(SYSTEM_TAG) + len(SYSTEM_TAG)
        end = template.find(USER_TAG, start)
        if end != -1:
            return template[start:end].strip()
    return DEFAULT_SYSTEM_PROMPT


def extract_user(template: str) -> str:
    """Return the user section of the template, or the whole template if untagged."""
    if USER_TAG in template:
        return template[template.index(USER_TAG) + len(USER_TAG):].strip()
    return template.strip()


def subtlety_instruction(difficulty_tier: int) -> str:
    """Extra writing-style constraint for higher difficulty tiers."""
    if difficulty_tier >= 5:
        return (
            "The deception must be highly complex. A false causal force should "
            "dominate the narrative, and only a latent, non-obvious clue may "
            "point to the true one."
        )
    if difficulty_tier >= 2:
        return (
            "The narrative deception must be subtle. A false causal force should "
            "be suggested, and the true one revealed by a single nuanced detail."
        )
    return ""
