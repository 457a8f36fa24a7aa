"""Per-segment generation directives for extended videos.

The video model keeps no memory between calls, so every directive carries the
full continuity contract in text. Segment 1 establishes a ``VisualBaseline``;
every later segment restates it attribute by attribute.

Drafting falls through three tiers and never raises:

1. schema-validated structured generation,
2. free-text generation parsed tolerantly, with one repair round-trip,
3. a deterministic template script.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from duration_planner import SegmentPlan
from errors import ScriptGenerationFailure
from llm import TextGenerator
from schemas import ContentIdea, DraftSegment, ScriptDraft, TimeSlotContext, VisualBaseline

logger = logging.getLogger(__name__)

DEFAULT_TONE = "Professional and engaging"
DEFAULT_VOICE_ACCENT = "American"

_ORIENTATION = {"9:16": "vertical", "16:9": "horizontal", "1:1": "square"}

_MIDDLE_ACTIONS = (
    "Continue the action with natural progression.",
    "Build towards the key moment or message.",
    "Deepen the moment with a new detail while the action keeps flowing.",
)


@dataclass(frozen=True)
class SegmentScript:
    segment_number: int
    duration: int
    prompt: str

    def to_dict(self) -> Dict[str, Any]:
        return {"segment_number": self.segment_number, "duration": self.duration, "prompt": self.prompt}


@dataclass(frozen=True)
class ComposedScript:
    baseline: VisualBaseline
    segments: List[SegmentScript]
    source: str  # structured | text | template


# --- Tolerant JSON parsing (last-resort path for free-text model output) ---

_QUOTE_TRANSLATION = str.maketrans({
    "“": '"', "”": '"', "„": '"', "″": '"',
    "‘": "'", "’": "'", "′": "'",
})


def _strip_code_fences(text: str) -> str:
    return re.sub(r"```(?:json)?", "", text).strip()


def _outer_json(text: str) -> str:
    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if not starts:
        return text
    start = min(starts)
    end = max(text.rfind("}"), text.rfind("]"))
    return text[start:end + 1] if end > start else text[start:]


def _scan(text: str, comments: bool = False, trailing_commas: bool = False) -> str:
    out = []
    i, n = 0, len(text)
    in_string = False
    while i < n:
        ch = text[i]
        if in_string:
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue
        if ch == '"':
            in_string = True
        elif comments and text.startswith("//", i):
            end = text.find("\n", i)
            i = n if end == -1 else end
            continue
        elif comments and text.startswith("/*", i):
            end = text.find("*/", i + 2)
            i = n if end == -1 else end + 2
            continue
        elif trailing_commas and ch == ",":
            j = i + 1
            while j < n and text[j].isspace():
                j += 1
            if j < n and text[j] in "}]":
                i += 1
                continue
        out.append(ch)
        i += 1
    return "".join(out)


def repair_json_text(text: str) -> str:
    """Normalize quotes, then strip comments and trailing commas outside strings."""
    text = text.translate(_QUOTE_TRANSLATION)
    text = _scan(text, comments=True)
    return _scan(text, trailing_commas=True)


def loads_tolerant(text: str) -> Any:
    candidate = _outer_json(_strip_code_fences(text))
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        return json.loads(repair_json_text(candidate))


def _segment_prompt(raw: Dict[str, Any]) -> str:
    if raw.get("visuals") and isinstance(raw.get("audio"), dict):
        audio = raw["audio"]
        return f"{raw['visuals']}\n\nAudio: {audio.get('music', '')}\nVoiceover: {audio.get('voiceover', '')}"
    prompt = raw.get("prompt")
    if isinstance(prompt, str):
        return prompt.strip()
    return json.dumps(prompt) if prompt else ""


def parse_script_draft(text: str, expected_count: int, default_baseline: VisualBaseline) -> ScriptDraft:
    """Parse free-text model output into a draft of exactly ``expected_count`` segments."""
    data = loads_tolerant(text)

    baseline_data: Dict[str, Any] = {}
    if isinstance(data, list):
        raw_segments = data
    elif isinstance(data, dict):
        raw_segments = data.get("segments")
        if isinstance(data.get("baseline"), dict):
            baseline_data = data["baseline"]
    else:
        raw_segments = None

    if not isinstance(raw_segments, list):
        raise ScriptGenerationFailure("Script JSON has no segment list")
    if len(raw_segments) != expected_count:
        raise ScriptGenerationFailure(f"Expected {expected_count} segments, got {len(raw_segments)}")

    numbered: List[Tuple[int, str]] = []
    for index, raw in enumerate(raw_segments):
        if not isinstance(raw, dict):
            raise ScriptGenerationFailure(f"Segment {index + 1} is not an object")
        prompt = _segment_prompt(raw)
        if not prompt:
            raise ScriptGenerationFailure(f"Segment {index + 1} has no prompt")
        number = raw.get("segment_number") or raw.get("segmentNumber") or index + 1
        numbered.append((int(number), prompt))
    numbered.sort(key=lambda item: item[0])

    merged = default_baseline.model_dump()
    for key, value in baseline_data.items():
        if key in merged and isinstance(value, str) and value.strip():
            merged[key] = value.strip()

    return ScriptDraft(
        baseline=VisualBaseline(**merged),
        segments=[DraftSegment(segment_number=i, prompt=prompt) for i, (_, prompt) in enumerate(numbered, start=1)],
    )


# --- Baseline and directive builders ---

def _tone(time_slot: Optional[TimeSlotContext]) -> str:
    return (time_slot.tone if time_slot and time_slot.tone else None) or DEFAULT_TONE


def _accent(time_slot: Optional[TimeSlotContext]) -> str:
    return (time_slot.preferred_voice_accent if time_slot and time_slot.preferred_voice_accent else None) or DEFAULT_VOICE_ACCENT


def describe_aspect_ratio(aspect_ratio: str) -> str:
    orientation = _ORIENTATION.get(aspect_ratio)
    return f"{aspect_ratio} {orientation}" if orientation else aspect_ratio


def baseline_from_idea(
    idea: ContentIdea,
    time_slot: Optional[TimeSlotContext],
    aspect_ratio: str,
    content_type: str = "reel",
) -> VisualBaseline:
    """Deterministic baseline derived from the content idea alone."""
    if idea.character:
        who = ", ".join(part for part in (idea.character.name, idea.character.age) if part)
        character = f"{who}: {idea.character.appearance}" if who else idea.character.appearance
    else:
        character = f"the main subject of '{idea.title}', shown consistently from the first frame"

    if idea.setting:
        parts = [idea.setting.location, idea.setting.time_of_day, idea.setting.atmosphere]
        setting = ", ".join(part for part in parts if part)
        if idea.setting.specific_details:
            setting += f" with {', '.join(idea.setting.specific_details)}"
        lighting = " ".join(part for part in (idea.setting.time_of_day, idea.setting.weather) if part) or "soft natural"
        lighting = f"{lighting} lighting"
    else:
        elements = ", ".join(idea.visual_elements) if idea.visual_elements else idea.title
        setting = f"a {idea.mood} setting featuring {elements}"
        lighting = "soft, even natural lighting"

    movement = "slow, intimate handheld-style" if content_type == "story" else "smooth, steady"
    return VisualBaseline(
        character=character,
        setting=setting,
        lighting=lighting,
        camera=f"{movement} {idea.style} camera movement with consistent framing",
        color_palette=f"{idea.mood} color palette with natural contrast",
        music=f"{idea.mood} background music at a steady tempo",
        voice=f"{_tone(time_slot).lower()} voiceover with a {_accent(time_slot)} accent",
        aspect_ratio=describe_aspect_ratio(aspect_ratio),
        quality="high quality, professional cinematography",
    )


def build_single_segment_directive(prompt: str, baseline: VisualBaseline, duration: int) -> str:
    return f"""Create a high-quality, engaging {duration}-second video.

CONTENT: {prompt}

LOOK AND SOUND:
- Character: {baseline.character}
- Setting: {baseline.setting}
- Lighting: {baseline.lighting}
- Camera: {baseline.camera}
- Color palette: {baseline.color_palette}
- Music: {baseline.music}
- Voice: {baseline.voice}
- Aspect ratio: {baseline.aspect_ratio}
- Quality: {baseline.quality}

STRUCTURE:
- Strong opening hook (0-2 seconds)
- Smooth middle development (2-6 seconds)
- Satisfying conclusion (6-{duration} seconds)
- English language only, no text overlays"""


def build_first_segment_directive(prompt: str, baseline: VisualBaseline, total: int, duration: int) -> str:
    return f"""Generate a {duration}-second video segment that establishes the complete visual and audio foundation for one continuous video.

CONTENT: {prompt}

VISUAL FOUNDATION (establish exactly, later segments will keep it):
- Character appearance: {baseline.character}
- Setting/background: {baseline.setting}
- Lighting: {baseline.lighting}
- Camera style: {baseline.camera}
- Color palette: {baseline.color_palette}
- Aspect ratio: {baseline.aspect_ratio}
- Video quality: {baseline.quality}

AUDIO FOUNDATION:
- Music style and tempo: {baseline.music}
- Voiceover tone and accent: {baseline.voice}
- Set the audio baseline that all subsequent segments will maintain

STORY FOUNDATION:
- Engaging opening that hooks viewers in the first 2 seconds
- Establish the story's tone and energy level
- End mid-motion so the next segment can continue seamlessly

This is segment 1 of {total} segments that will be joined into one seamless video. English language only, no text overlays."""


def build_continuation_directive(
    prompt: str,
    baseline: VisualBaseline,
    segment_number: int,
    total: int,
    duration: int,
) -> str:
    closing = ""
    if total > 2 and segment_number == total:
        closing = """
CLOSING:
- This is the final segment: build to the key message, then end with a clear closing statement or call-to-action
- Leave viewers with a sense of completion
"""
    return f"""Generate a {duration}-second video segment that continues seamlessly from the previous segment.

CONTENT: {prompt}

SEAMLESS FLOW:
- This is NOT a new video, it is the next {duration} seconds of the SAME continuous video
- Continue IMMEDIATELY from the reference image (last frame of the previous segment)
- NO visual breaks, jumps, or transitions

VISUAL CONTINUITY:
- Maintain IDENTICAL character appearance: {baseline.character}
- Maintain IDENTICAL setting/background: {baseline.setting}
- Maintain IDENTICAL lighting: {baseline.lighting}
- Maintain IDENTICAL camera style: {baseline.camera}
- Maintain IDENTICAL color palette: {baseline.color_palette}
- Maintain IDENTICAL aspect ratio: {baseline.aspect_ratio}
- Maintain IDENTICAL video quality: {baseline.quality}

AUDIO CONTINUITY:
- Maintain IDENTICAL music: continue the SAME {baseline.music}
- Maintain IDENTICAL voice: {baseline.voice}
- Voiceover continues as one narration with no pauses or gaps
- Music continues without any change of style, tempo, or key, with no silences between segments
{closing}
This is segment {segment_number} of {total}. English language only, no text overlays."""


def build_script_request(
    idea: ContentIdea,
    count: int,
    time_slot: Optional[TimeSlotContext],
    content_type: str,
    aspect_ratio: str,
) -> str:
    lines = [
        f"You are an expert video script writer. Write a {count * 8}-second {content_type} script split into "
        f"{count} segments of 8 seconds each that play as ONE continuous video.",
        "",
        "VIDEO CONCEPT:",
        f"- Title: {idea.title}",
        f"- Description: {idea.description}",
        f"- Visual Style: {idea.style}",
        f"- Mood: {idea.mood}",
        f"- Visual Elements: {', '.join(idea.visual_elements) or 'N/A'}",
        f"- Target Audience: {idea.target_audience}",
        f"- Aspect Ratio: {describe_aspect_ratio(aspect_ratio)}",
        f"- Tone: {_tone(time_slot)}",
        f"- Voice Accent: {_accent(time_slot)}",
    ]
    if idea.character:
        lines.append(f"- Character: {idea.character.appearance}. {idea.character.personality}".rstrip(". "))
    if idea.setting:
        lines.append(f"- Setting: {idea.setting.location}, {idea.setting.time_of_day}, {idea.setting.atmosphere}")
    if idea.story_arc:
        lines.append(f"- Story: {idea.story_arc.beginning} / {idea.story_arc.middle} / {idea.story_arc.end}")
    if time_slot and time_slot.caption:
        lines.append(f"- Caption to support: {time_slot.caption}")
        if time_slot.hashtags:
            lines.append(f"- Hashtags: {', '.join(time_slot.hashtags)}")
    if content_type == "story":
        lines.append("- Story format: intimate, personal, few cuts, continuous camera")

    lines += [
        "",
        "REQUIREMENTS:",
        "- 'baseline' fixes character, setting, lighting, camera, color_palette, music, voice, aspect_ratio and quality",
        "- Segment 1 opens with a strong visual hook and establishes the baseline",
        "- Later segments continue the action naturally with continuous voiceover and music",
    ]
    if count > 2:
        lines.append("- The final segment ends with a memorable closing statement or call-to-action")
    lines += [
        "",
        "Respond with ONLY valid JSON:",
        '{"baseline": {"character": "...", "setting": "...", "lighting": "...", "camera": "...", '
        '"color_palette": "...", "music": "...", "voice": "...", "aspect_ratio": "...", "quality": "..."}, '
        '"segments": [{"segment_number": 1, "prompt": "..."}]}',
    ]
    return "\n".join(lines)


def build_repair_request(bad_output: str, error: str, count: int) -> str:
    return (
        f"The following text was supposed to be JSON with a 'baseline' object and a 'segments' list of "
        f"exactly {count} items, but parsing failed with: {error}\n\n"
        f"Return ONLY the corrected JSON, nothing else.\n\n{bad_output}"
    )


class ScriptComposer:
    def __init__(self, text_generator: Optional[TextGenerator] = None):
        self.text_generator = text_generator

    def compose(
        self,
        idea: ContentIdea,
        plan: Sequence[SegmentPlan],
        time_slot: Optional[TimeSlotContext] = None,
        content_type: str = "reel",
        aspect_ratio: str = "9:16",
    ) -> ComposedScript:
        """Return one directive per planned segment. Never raises for model failures."""
        if not plan:
            raise ValueError("Segment plan is empty")

        count = len(plan)
        fallback_baseline = baseline_from_idea(idea, time_slot, aspect_ratio, content_type)
        draft, source = self._draft(idea, count, time_slot, content_type, aspect_ratio, fallback_baseline)
        baseline = draft.baseline

        segments = []
        for planned, drafted in zip(plan, draft.segments):
            if count == 1:
                directive = build_single_segment_directive(drafted.prompt, baseline, planned.duration)
            elif planned.segment_number == 1:
                directive = build_first_segment_directive(drafted.prompt, baseline, count, planned.duration)
            else:
                directive = build_continuation_directive(
                    drafted.prompt, baseline, planned.segment_number, count, planned.duration,
                )
            segments.append(SegmentScript(planned.segment_number, planned.duration, directive))

        logger.info("Composed %d segment directives from %s script", count, source)
        return ComposedScript(baseline=baseline, segments=segments, source=source)

    def _draft(self, idea, count, time_slot, content_type, aspect_ratio, fallback_baseline) -> Tuple[ScriptDraft, str]:
        if self.text_generator is not None:
            request = build_script_request(idea, count, time_slot, content_type, aspect_ratio)
            try:
                draft = self.text_generator.generate_structured(request, ScriptDraft)
                return self._validate_structured(draft, count), "structured"
            except Exception as exc:
                logger.warning("Structured script generation failed, trying free text: %s", exc)
            try:
                return self._draft_from_text(request, count, fallback_baseline), "text"
            except Exception as exc:
                logger.warning("Free-text script generation failed, using template: %s", exc)

        return self.template_draft(idea, count, fallback_baseline), "template"

    def _validate_structured(self, draft: ScriptDraft, count: int) -> ScriptDraft:
        if len(draft.segments) != count:
            raise ScriptGenerationFailure(f"Expected {count} segments, got {len(draft.segments)}")
        ordered = sorted(draft.segments, key=lambda s: s.segment_number)
        if any(not s.prompt.strip() for s in ordered):
            raise ScriptGenerationFailure("Structured script contains an empty prompt")
        return ScriptDraft(
            baseline=draft.baseline,
            segments=[DraftSegment(segment_number=i, prompt=s.prompt.strip()) for i, s in enumerate(ordered, start=1)],
        )

    def _draft_from_text(self, request: str, count: int, fallback_baseline: VisualBaseline) -> ScriptDraft:
        text = self.text_generator.generate_text(request)
        try:
            return parse_script_draft(text, count, fallback_baseline)
        except (ValueError, ValidationError, ScriptGenerationFailure) as exc:
            logger.info("Script output did not parse (%s), asking the model to repair it", exc)
            repaired = self.text_generator.generate_text(build_repair_request(text, str(exc), count))
            return parse_script_draft(repaired, count, fallback_baseline)

    def template_draft(self, idea: ContentIdea, count: int, baseline: VisualBaseline) -> ScriptDraft:
        """Deterministic script that always yields ``count`` valid segments."""
        elements = f" Include these elements: {', '.join(idea.visual_elements)}." if idea.visual_elements else ""
        opening = idea.story_arc.beginning if idea.story_arc else idea.description
        prompts = [
            f"{opening}. Visual style: {idea.style}. Mood: {idea.mood}.{elements} "
            "Start with a compelling visual hook, establish the character and location, "
            "and build momentum for what comes next."
        ]
        for number in range(2, count + 1):
            if number == count:
                ending = f"{idea.story_arc.end}. " if idea.story_arc else ""
                prompts.append(
                    f"{ending}Build to the key message of '{idea.title}', then conclude with a satisfying "
                    "ending or call-to-action."
                )
            elif idea.story_arc and number == 2:
                prompts.append(f"{idea.story_arc.middle}. Continue the action with natural progression.")
            else:
                prompts.append(_MIDDLE_ACTIONS[(number - 2) % len(_MIDDLE_ACTIONS)])

        return ScriptDraft(
            baseline=baseline,
            segments=[DraftSegment(segment_number=i, prompt=p) for i, p in enumerate(prompts, start=1)],
        )
