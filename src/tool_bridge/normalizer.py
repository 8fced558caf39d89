# normalizer.py
# Turns screen-capture images into short text summaries.
#
# A raw screenshot costs far more context than a few sentences describing
# it. One auxiliary vision call per image produces that surrogate; the
# original bytes are dropped once the summary exists.

import base64
import binascii
import logging
import re
from typing import Any

from openai import AsyncOpenAI

from tool_bridge.models import ImageContent, TextContent

logger = logging.getLogger(__name__)

SUMMARY_MARKER = "[Screenshot summary]"

SUMMARY_INSTRUCTION = (
    "Describe the headings, links, interactive elements, and key visible "
    "content of this screenshot in 3-4 sentences."
)

PLACEHOLDER_TEXT = f"{SUMMARY_MARKER} capture taken but could not be summarized"

_DATA_URI = re.compile(r"^data:(?P<mime>[^;,]*)(?:;[^,]*)?,", re.IGNORECASE)


class NormalizationError(Exception):
    """Raised when an image cannot be decoded or summarized."""


def decode_image(data: str) -> tuple[bytes, str | None]:
    """
    Decode a base64 image payload, with or without a data-URI prefix.

    Returns (raw_bytes, mime_from_prefix). Raises NormalizationError if the
    payload is empty or not valid base64.
    """
    mime = None
    match = _DATA_URI.match(data)
    if match:
        mime = match.group("mime") or None
        data = data[match.end():]

    payload = "".join(data.split())
    if not payload:
        raise NormalizationError("Image payload is empty.")
    try:
        return base64.b64decode(payload, validate=True), mime
    except (binascii.Error, ValueError) as exc:
        raise NormalizationError(f"Image payload is not valid base64: {exc}") from exc


def _description(response: Any) -> str:
    """Text of the first choice, or "" when the response is missing any part of it."""
    choices = getattr(response, "choices", None) or []
    message = getattr(choices[0], "message", None) if choices else None
    content = getattr(message, "content", None)
    return content.strip() if isinstance(content, str) else ""


class ContentNormalizer:
    """
    Summarizes image content items through a single vision-model call each.

    Example:
        normalizer = ContentNormalizer(AsyncOpenAI(), model="gpt-4o-mini")
        text_item = await normalizer.normalize(image_item)
    """

    def __init__(self, client: AsyncOpenAI, model: str) -> None:
        self._client = client
        self._model = model

    @property
    def model(self) -> str:
        return self._model

    async def normalize(self, item: ImageContent) -> TextContent:
        raw, prefix_mime = decode_image(item.data)
        mime = prefix_mime or item.mime_type
        url = f"data:{mime};base64,{base64.b64encode(raw).decode('ascii')}"

        logger.debug("Summarizing %s image (%d bytes) with %s", mime, len(raw), self._model)
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": SUMMARY_INSTRUCTION},
                            {"type": "image_url", "image_url": {"url": url}},
                        ],
                    }
                ],
            )
        except Exception as exc:
            # SDK, transport or client failures alike cost only this one item.
            raise NormalizationError(f"Vision call failed: {exc}") from exc

        description = _description(response)
        if not description:
            raise NormalizationError("Vision model returned an empty description.")
        return TextContent(text=f"{SUMMARY_MARKER} {description}")
