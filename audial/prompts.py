"""Prompt templates for new compositions, edits and corrective retries."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from .policy import MAX_FAST_FACTOR, MAX_GAIN, ValidationPolicy, resolve_policy
from .references import ReferenceLibrary, RetrievedReference
from .schemas import ChatMessage

_LOGGER = logging.getLogger("audial.prompts")

_RULE = "=" * 67
_REFERENCE_TOP_K = 3
_REFERENCE_DIVERSE = 1
_STYLE_PRIOR_BULLETS = 6

_SYSTEM_INTRO = """You are a composition system that writes Strudel live-coding patterns for \
experimental, melodic electronic music.

<musical_direction>
- Balance intricate, polyrhythmic drums with warm, layered melodic voices.
- Interweave 3-4 melodic voices like counterpoint; give each its own .slow() value.
- Favour spacious atmosphere and slow organic drift over busy ornament.
- Taste is restraint plus intention: every voice and effect should serve the mood.
</musical_direction>

"""


def _technical_constraints(policy: ValidationPolicy) -> str:
    room = f"{policy.max_room_size:g}"
    feedback = f"{policy.max_delay_feedback:g}"
    return f"""<technical_constraints>
1. Start with setcpm(bpm), tempo between 60 and 140.
2. Use exactly one fenced code block (```javascript ... ```).
3. Declare voices with $: - at least 1, at most {policy.max_voices}.
4. At most {policy.max_effects_per_voice} effects per voice.
5. At most {policy.max_random_usage} randomness operations \
(perlin, rand, irand, sometimes, rarely, ...).
6. No external or localhost samples; never call samples() with a URL.
7. .delayfeedback() <= {feedback}, .room() <= {room}, .gain() <= {MAX_GAIN}, \
.fast() <= {MAX_FAST_FACTOR}.
8. Do not use .euclidean() (not available in this build), .resonance() (use .lpq()) \
or .note() as a method (use note(...)).
9. Never call methods on string literals; wrap them in a pattern function first.
10. Balance parentheses, brackets and braces, and balance < > inside every pattern string.
</technical_constraints>

"""


_SYSTEM_OUTRO = """<available_sounds>
- Drums: "bd", "sd", "hh", "oh", "cp", "rim", "perc"
- Synths: "sawtooth", "square", "triangle", "sine"
- Tonal samples: "piano", "jazz", "wind"
</available_sounds>

<mini_notation>
- Sequence: "bd sd hh"; rest: "~"; subdivision: "[bd [sd sd]] hh"
- Layers: "{bd sd hh, perc perc}"; repetition: "bd!3"; alternation: "<bd sd>"
</mini_notation>

<output_format>
Return ONLY the Strudel code in a single fenced javascript block. No prose before or after.
</output_format>

<example>
```javascript
setcpm(85)

// primary melody - warm, evolving
$: note("d3 f3 g3 a3 c4").slow(4)
  .s("sawtooth")
  .lpf(perlin.range(700, 1400).slow(8))
  .lpq(6)
  .delay(0.375)
  .delayfeedback(0.4)
  .room(0.85)
  .gain(0.7)

// kick
$: s("bd ~ bd ~ ~ bd ~ bd")
  .gain(1.3)
  .shape(0.3)

// hats - textural
$: s("hh").fast(4)
  .degradeBy(0.2)
  .gain(0.4)
```
</example>"""

RETRY_REMINDER = (
    'IMPORTANT: do not call methods on strings (e.g., "1 0 1".euclidean(...)); apply transforms '
    "to patterns, not string literals. Do not use .euclidean() (not available in this build)."
)


def build_system_prompt(policy: ValidationPolicy | None = None) -> str:
    """Fixed instructions with the numeric limits of ``policy`` filled in."""
    return _SYSTEM_INTRO + _technical_constraints(resolve_policy(policy)) + _SYSTEM_OUTRO


SYSTEM_PROMPT = build_system_prompt()


def _format_reference(ref: RetrievedReference) -> str:
    song = ref.song
    author = f" by {song.author}" if song.author else ""
    lines = [
        f"[{song.title}{author}]",
        f"Genres: {', '.join(song.genres) or 'none'}",
        f"Moods: {', '.join(song.moods) or 'none'}",
        f"Techniques: {', '.join(song.techniques[:3]) or 'none'}",
    ]
    if song.bpm:
        lines.append(f"BPM: {song.bpm:g}")
    lines.append(f"\nSnippet:\n{song.snippet()}\n")
    return "\n".join(lines) + "\n"


def _reference_section(user_request: str, references: ReferenceLibrary) -> str:
    retrieved = references.retrieve(user_request, _REFERENCE_TOP_K, _REFERENCE_DIVERSE)
    priors = references.style_priors()
    bullets = list(priors.summary_bullets[:_STYLE_PRIOR_BULLETS]) if priors else []
    if not retrieved and not bullets:
        return ""

    parts = [
        f"\n\n{_RULE}\nREFERENCE DATASET (strudel songs)\n{_RULE}\n\n",
        "Use these as inspiration only. Do not copy verbatim. Borrow structure, groove and "
        "arrangement ideas.\n\n",
    ]
    if bullets:
        parts.append("Style priors (from dataset):\n")
        parts.extend(f"- {bullet}\n" for bullet in bullets)
        parts.append("\n")

    top = [ref for ref in retrieved if not ref.diverse]
    exemplars = [ref for ref in retrieved if ref.diverse]
    if top:
        parts.append("Top references:\n\n")
        parts.extend(_format_reference(ref) for ref in top)
    if exemplars:
        parts.append("Diverse exemplar (different style):\n\n")
        parts.extend(_format_reference(ref) for ref in exemplars)

    parts.append(
        "Rules:\n"
        "- Do not copy more than 1-2 consecutive lines from any reference snippet\n"
        "- Change melody, rhythm and harmony; references are structural inspiration only\n"
        f"\n{_RULE}\n\n"
    )
    return "".join(parts)


def build_new_prompt(user_request: str, references: ReferenceLibrary | None = None) -> str:
    reference_section = ""
    if references is not None:
        try:
            reference_section = _reference_section(user_request, references)
        except Exception as exc:
            # Reference data is optional enrichment and never blocks generation.
            _LOGGER.debug("Reference lookup failed; omitting references: %s", exc, exc_info=True)
            reference_section = ""

    return f"""create a strudel composition based on this request:

{user_request}
{reference_section}before writing code, decide:
1. what should the listener feel in their body?
2. what mood are you placing them in?
3. what should stay constant vs. evolve?

then write:
- single javascript code block only
- setcpm(...) at the start
- 3-6 voices with $:
- comments that describe intent, not mechanics
- taste = restraint + intention
- no external samples"""


def truncate_chat_history(
    chat: Sequence[ChatMessage],
    max_messages: int = 10,
) -> list[ChatMessage]:
    """Keep the first message for context plus the most recent ones."""
    if len(chat) <= max_messages:
        return list(chat)
    if max_messages <= 1:
        return [chat[0]]
    return [chat[0], *chat[-(max_messages - 1) :]]


def format_chat_history(chat: Sequence[ChatMessage]) -> str:
    if not chat:
        return ""
    formatted = "\n".join(
        f"{message.role}: "
        + (
            "[generated strudel code]"
            if message.role == "assistant" and message.code
            else message.content
        )
        for message in chat
    )
    return f"\nprevious conversation:\n{formatted}\n"


def build_edit_prompt(
    current_code: str,
    user_request: str,
    chat_history: Sequence[ChatMessage] = (),
    *,
    history_limit: int = 6,
) -> str:
    history = format_chat_history(truncate_chat_history(chat_history, history_limit))
    return f"""you are editing an existing strudel composition. here is the current code:

```javascript
{current_code}
```

modify this code according to the user's request. return the FULL updated script, not a diff \
or patch. preserve the overall structure unless the user explicitly asks to change it.

user request: {user_request}

requirements:
- output the complete modified code
- keep setcpm(...) at the start
- maintain 3-6 voices with $:
- preserve what works, change what's requested
- single javascript code block only{history}"""


def build_retry_prompt(user_request: str, issues: Sequence[str]) -> str:
    issue_list = "\n".join(f"- {issue}" for issue in issues)
    return f"""{user_request}

your previous attempt had issues:
{issue_list}

{RETRY_REMINDER}

return to first principles:
1. what should the listener feel? (be specific)
2. what is the musical intention? (not the technique)

then simplify:
- reduce to 3-6 voices
- remove randomness that doesn't serve the mood
- remove effects that don't serve the feeling
- subtraction is a sign of taste"""
