from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any, List, Optional

from soundtrack.models.domain import InlineMedia, MediaRef, MediaUrl

SYSTEM_INSTRUCTION = (
    "You are a professional film score composer.\n"
    "You will receive:\n"
    "- Optionally: a video (movie clip / short video).\n"
    "- Optionally: a script or description of the video.\n"
    "\n"
    "Your goal is to create a SINGLE, cohesive music generation prompt\n"
    "that acts as the soundtrack for the entire video.\n"
    "\n"
    "Output JSON with the following fields:\n"
    "1. summary: A brief 1-sentence summary of the video's content.\n"
    "2. mood: 2-3 words describing the emotional tone (e.g., \"Melancholic, Hopeful\").\n"
    "3. title: A creative title for the soundtrack.\n"
    "4. music_prompt: A detailed description for an AI music generator,\n"
    "   focusing on instruments, tempo, genre, and atmosphere.\n"
    "   - Do NOT include lyrics.\n"
    "   - Keep it under 450 characters."
)

EMPTY_SCRIPT_PLACEHOLDER = "(No script text provided. Infer as much as possible from the video alone.)"

DESCRIBE_INSTRUCTION = (
    "Analyze this video in detail. Describe the scenes, emotions, colour palette, pacing, "
    "the main subjects and their actions, and the overall atmosphere. Finish with one concise "
    "prompt suitable for generating background music."
)

ANALYSIS_FIELDS = ("summary", "mood", "title", "music_prompt")


@dataclass(frozen=True)
class RequestParts:
    parts: List[dict[str, Any]] = field(default_factory=list)

    def text_parts(self) -> List[dict[str, Any]]:
        return [part for part in self.parts if "text" in part]

    def media_parts(self) -> List[dict[str, Any]]:
        return [part for part in self.parts if "inlineData" in part or "fileData" in part]

    def contents(self) -> List[dict[str, Any]]:
        return [{"role": "user", "parts": list(self.parts)}]


class PayloadBuilder:
    """Assembles the multimodal request sent to the analysis model.

    Media (if any) goes first, followed by the fixed instruction and the
    script text. Inline bytes are base64-encoded with their MIME type kept;
    URL references are forwarded untouched as a file reference.
    """

    def __init__(self, default_mime_type: str = "video/mp4") -> None:
        self.default_mime_type = default_mime_type

    def build(self, script_text: str | None, media: Optional[MediaRef] = None) -> RequestParts:
        parts: List[dict[str, Any]] = []
        if media is not None:
            parts.append(self.media_part(media))
        parts.append({"text": SYSTEM_INSTRUCTION})
        parts.append({"text": f"SCRIPT_OR_DESCRIPTION:\n{self._script_for_model(script_text)}"})
        return RequestParts(parts=parts)

    def build_description(self, media: MediaRef) -> RequestParts:
        return RequestParts(parts=[self.media_part(media), {"text": DESCRIBE_INSTRUCTION}])

    def media_part(self, media: MediaRef) -> dict[str, Any]:
        mime_type = media.mime_type or self.default_mime_type
        if isinstance(media, InlineMedia):
            return {
                "inlineData": {
                    "mimeType": mime_type,
                    "data": base64.b64encode(media.data).decode("ascii"),
                }
            }
        if isinstance(media, MediaUrl):
            return {"fileData": {"mimeType": mime_type, "fileUri": media.url}}
        raise TypeError(f"unsupported media reference: {type(media).__name__}")

    @staticmethod
    def response_schema() -> dict[str, Any]:
        return {
            "type": "OBJECT",
            "properties": {name: {"type": "STRING"} for name in ANALYSIS_FIELDS},
            "required": list(ANALYSIS_FIELDS),
        }

    def _script_for_model(self, script_text: str | None) -> str:
        if script_text and script_text.strip():
            return script_text
        return EMPTY_SCRIPT_PLACEHOLDER
