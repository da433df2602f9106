from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional


DEFAULT_TRANSLATION_PROMPT = """Translate the following subtitles while:

1. Preserving the timing and structure exactly as given
2. Maintaining natural dialogue flow and colloquialisms appropriate to the target language
3. Keeping the same number of lines and line breaks
4. Preserving any formatting tags or special characters
5. Ensuring translations are contextually accurate for film/TV dialogue

Translate to {target_language}.

Do NOT include acknowledgements, explanations, notes or alternative translations.

Output ONLY the translated content, nothing else."""

THINKING_RULE = "Do NOT overthink. Do NOT overplan."

CHAT_SYSTEM_MESSAGE = "You are a subtitle translation engine."

# Regional codes that deserve an explicit display name in prompts
_VARIANT_CODES = {
    "pob": "Portuguese (Brazilian)",
    "ptbr": "Portuguese (Brazilian)",
    "pt-br": "Portuguese (Brazilian)",
    "pt-pt": "Portuguese (Portugal)",
    "spn": "Spanish (Latin America)",
    "es-419": "Spanish (Latin America)",
    "es-la": "Spanish (Latin America)",
    "es-latam": "Spanish (Latin America)",
    "es-mx": "Spanish (Latin America)",
    "zht": "Chinese (Traditional)",
    "zh-hant": "Chinese (Traditional)",
    "zh-tw": "Chinese (Traditional)",
    "zhs": "Chinese (Simplified)",
    "zh-hans": "Chinese (Simplified)",
    "zh-cn": "Chinese (Simplified)",
}

_VARIANT_NAMES = (
    (re.compile(r"^brazilian portuguese$", re.I), "Portuguese (Brazilian)"),
    (re.compile(r"^portuguese\s*\(brazil(ian)?\)$", re.I), "Portuguese (Brazilian)"),
    (re.compile(r"^portuguese\s*\(portugal\)$", re.I), "Portuguese (Portugal)"),
    (re.compile(r"^european portuguese$", re.I), "Portuguese (Portugal)"),
    (re.compile(r"^spanish\s*\(latin america\)$", re.I), "Spanish (Latin America)"),
    (re.compile(r"^latin american spanish$", re.I), "Spanish (Latin America)"),
    (re.compile(r"^chinese\s*\(traditional\)$", re.I), "Chinese (Traditional)"),
    (re.compile(r"^chinese\s*\(simplified\)$", re.I), "Chinese (Simplified)"),
)


def normalize_target_name(name: Optional[str]) -> str:
    """Display name for the target language as it should appear in a prompt."""
    raw = (name or "").strip()
    if not raw:
        return "target language"
    code = re.sub(r"[\s_]", "-", raw.lower())
    if code in _VARIANT_CODES:
        return _VARIANT_CODES[code]
    for pattern, display in _VARIANT_NAMES:
        if pattern.match(raw):
            return display
    return raw


@dataclass(frozen=True, slots=True)
class Prompt:
    system: str
    user: str
    target: str


def build_prompt(
    content: str,
    target_language: str,
    custom_template: Optional[str] = None,
    *,
    thinking: bool = False,
) -> Prompt:
    target = normalize_target_name(target_language)
    system = (custom_template or DEFAULT_TRANSLATION_PROMPT).replace("{target_language}", target)
    if thinking:
        system = f"{system}\n\n{THINKING_RULE}"
    user = f"{system}\n\nContent to translate:\n\n{content}"
    return Prompt(system=system, user=user, target=target)
