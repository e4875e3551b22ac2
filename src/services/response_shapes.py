"""Decoding of generation responses into a single ``GenerationResult``.

The upstream answers in one of several JSON layouts. Each layout has a
matcher that receives the flattened list of response parts and returns a
result, or ``None`` when the parts are not in that layout. Matchers are tried
in ``SHAPE_MATCHERS`` order and the first hit wins.
"""

import json
import re
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from src.core.exceptions import NoImageReturnedError
from src.schemas.tryon import GenerationResult

Part = Mapping[str, Any]
ShapeMatcher = Callable[[Sequence[Part]], GenerationResult | None]

DEFAULT_WRAPPED_MIME_TYPE = "image/png"

_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def to_data_url(mime_type: str, data: str) -> str:
    return f"data:{mime_type};base64,{data}"


def _inline_data(part: Part) -> Mapping[str, Any] | None:
    inline = part.get("inlineData") or part.get("inline_data")
    if isinstance(inline, Mapping) and inline.get("data"):
        return inline
    return None


def _text(part: Part) -> str | None:
    text = part.get("text")
    if isinstance(text, str) and text.strip():
        return text
    return None


def match_direct_parts(parts: Sequence[Part]) -> GenerationResult | None:
    image_url: str | None = None
    text: str | None = None
    for part in parts:
        inline = _inline_data(part)
        if inline is not None and image_url is None:
            mime_type = inline.get("mimeType") or inline.get("mime_type") or DEFAULT_WRAPPED_MIME_TYPE
            image_url = to_data_url(mime_type, inline["data"])
        elif text is None:
            text = _text(part)
    if image_url is None:
        return None
    return GenerationResult(image_url=image_url, text=text)


def _load_wrapped_document(text: str) -> Mapping[str, Any] | None:
    candidate = text.strip()
    fenced = _CODE_FENCE_RE.match(candidate)
    if fenced:
        candidate = fenced.group(1)
    if not candidate.startswith("{"):
        return None
    try:
        document = json.loads(candidate)
    except ValueError:
        return None
    return document if isinstance(document, Mapping) else None


def match_wrapped_json(parts: Sequence[Part]) -> GenerationResult | None:
    for part in parts:
        text = _text(part)
        if text is None:
            continue
        document = _load_wrapped_document(text)
        if document is None:
            continue
        generated = document.get("generatedImage")
        if not isinstance(generated, Mapping) or not generated.get("imageBytes"):
            continue
        mime_type = generated.get("mimeType") or DEFAULT_WRAPPED_MIME_TYPE
        commentary = document.get("commentary")
        return GenerationResult(
            image_url=to_data_url(mime_type, generated["imageBytes"]),
            text=commentary if isinstance(commentary, str) and commentary else None,
        )
    return None


SHAPE_MATCHERS: tuple[ShapeMatcher, ...] = (match_direct_parts, match_wrapped_json)


def _candidates(payload: Mapping[str, Any]) -> list[Any]:
    candidates = payload.get("candidates")
    return candidates if isinstance(candidates, list) else []


def collect_parts(payload: Mapping[str, Any]) -> list[Part]:
    parts: list[Part] = []
    for candidate in _candidates(payload):
        if not isinstance(candidate, Mapping):
            continue
        content = candidate.get("content")
        if not isinstance(content, Mapping):
            continue
        content_parts = content.get("parts")
        if not isinstance(content_parts, list):
            continue
        parts.extend(part for part in content_parts if isinstance(part, Mapping))
    return parts


def _part_explanation(text: str) -> str:
    document = _load_wrapped_document(text)
    if document is not None:
        commentary = document.get("commentary")
        if isinstance(commentary, str) and commentary.strip():
            return commentary
    return text


def _explanation(payload: Mapping[str, Any], parts: Sequence[Part]) -> str | None:
    for part in parts:
        text = _text(part)
        if text is not None:
            return _part_explanation(text)

    feedback = payload.get("promptFeedback")
    if isinstance(feedback, Mapping) and feedback.get("blockReason"):
        return f"The request was blocked by the generation service ({feedback['blockReason']})."

    candidates = _candidates(payload)
    if candidates and isinstance(candidates[0], Mapping):
        finish_reason = candidates[0].get("finishReason")
        if finish_reason and finish_reason != "STOP":
            return f"The generation service stopped without an image ({finish_reason})."
    return None


def decode_response(
    payload: Any,
    matchers: Sequence[ShapeMatcher] = SHAPE_MATCHERS,
) -> GenerationResult:
    if not isinstance(payload, Mapping):
        raise NoImageReturnedError("The generation service returned an unexpected response.")

    parts = collect_parts(payload)
    for matcher in matchers:
        result = matcher(parts)
        if result is not None and result.image_url:
            return result

    explanation = _explanation(payload, parts)
    if explanation:
        raise NoImageReturnedError(f"No image was generated: {explanation}", text=explanation)
    raise NoImageReturnedError("No image was generated. Please try different photos.")
