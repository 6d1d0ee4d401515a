import json
import logging
import re
from typing import Any, Dict, List, Optional

import anthropic
from pydantic import ValidationError

from bitbybit.core import config
from bitbybit.core.errors import ConfigurationError, MalformedResponseError
from bitbybit.schemas.classification import SplitPagesInput, SplitPagesOutput

logger = logging.getLogger(__name__)

FIRST_BATCH_NOTE = "This is the first batch of pages in the book."

PROMPT_TEMPLATE = """You are analyzing pages {start_page} to {end_page} of the book "{book_title}".

{context_note}

Identify all logical sections/topics on these pages. A single page may contain multiple sections. A section may span multiple pages. Break the content into the smallest meaningful units a reader could study independently.

Respond with ONLY valid JSON in this exact format:
{{
  "sections": [
    {{
      "title": "Clear descriptive title for this section",
      "startPage": <page number where section starts>,
      "endPage": <page number where section ends>,
      "summary": "1-2 sentence summary of what this section covers"
    }}
  ]
}}"""

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")
_DATA_URL_PREFIX = re.compile(r"^data:image/\w+;base64,")


def context_note(previous_section_title: Optional[str]) -> str:
    if previous_section_title:
        return (
            f'The previous batch ended with a section titled "{previous_section_title}". '
            "Continue from where that left off."
        )
    return FIRST_BATCH_NOTE


def build_content(request: SplitPagesInput) -> List[Dict[str, Any]]:
    """Interleave page images with their extracted text, then the instructions."""
    content: List[Dict[str, Any]] = []
    for idx, image in enumerate(request.page_images):
        content.append(
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": "image/png",
                    "data": _DATA_URL_PREFIX.sub("", image),
                },
            }
        )
        text = request.page_texts[idx]
        if text and text.strip():
            content.append(
                {"type": "text", "text": f"[Page {request.start_page + idx} extracted text]: {text}"}
            )

    content.append(
        {
            "type": "text",
            "text": PROMPT_TEMPLATE.format(
                start_page=request.start_page,
                end_page=request.end_page,
                book_title=request.book_title,
                context_note=context_note(request.previous_section_title),
            ),
        }
    )
    return content


def parse_sections(text: str) -> SplitPagesOutput:
    """
    Pull the JSON object out of a model reply (prose and code fences are tolerated)
    and validate it. Anything else is a MalformedResponseError.
    """
    match = _JSON_OBJECT.search(text or "")
    if not match:
        raise MalformedResponseError("Classifier response did not contain JSON")
    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"Classifier response is not valid JSON: {e}") from e
    try:
        return SplitPagesOutput.model_validate(payload)
    except ValidationError as e:
        raise MalformedResponseError(f"Classifier response has the wrong shape: {e}") from e


class AIService:
    """
    Content classification capability backed by Claude vision.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        client: Optional[anthropic.AsyncAnthropic] = None,
    ) -> None:
        api_key = api_key or config.ANTHROPIC_API_KEY
        if client is None and not api_key:
            raise ConfigurationError("No Anthropic API key configured")
        self.client = client or anthropic.AsyncAnthropic(api_key=api_key)
        self.model = model or config.CLASSIFIER_MODEL
        self.max_tokens = max_tokens or config.CLASSIFIER_MAX_TOKENS

    async def split_pages_into_sections(self, request: SplitPagesInput) -> SplitPagesOutput:
        logger.info(
            "Classifying pages %s-%s of %r", request.start_page, request.end_page, request.book_title
        )
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": build_content(request)}],
            )
        except (anthropic.AuthenticationError, anthropic.PermissionDeniedError) as e:
            raise ConfigurationError(f"Anthropic rejected the API key: {e}") from e

        text = next((block.text for block in response.content if block.type == "text"), "")
        result = parse_sections(text)
        logger.info("Classifier returned %s sections", len(result.sections))
        return result
