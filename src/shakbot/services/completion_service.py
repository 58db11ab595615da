"""
Completion service backed by the OpenAI API.

Streams chat turns with the assistant persona and long-term memory, edits or
generates images, and serves the title and memory prompts used by background
enrichment.
"""

import base64
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import openai
from openai import AsyncOpenAI

from ..conversation.models import (
    DEFAULT_SESSION_TITLE,
    ErrorMessage,
    ImageAttachment,
    Message,
    Role,
)
from ..core.config import CompletionConfig
from ..core.exceptions import TransientServiceError
from ..core.protocols import EditResult
from .base_service import BaseService, handle_openai_error, to_service_error
from .prompts import (
    DEFAULT_EDIT_PROMPT,
    TITLE_PROMPT,
    build_memory_prompt,
    build_system_instruction,
)

logger = logging.getLogger(__name__)

_IMAGE_EXTENSIONS = {"image/png": "png", "image/jpeg": "jpg", "image/webp": "webp"}


def history_to_messages(history: Sequence[Message]) -> List[Dict[str, Any]]:
    """Map stored messages to chat messages, skipping error notices and empty turns."""
    messages = []
    for message in history:
        if isinstance(message, ErrorMessage) or not message.text.strip():
            continue
        role = "user" if message.role is Role.USER else "assistant"
        messages.append({"role": role, "content": message.text})
    return messages


class OpenAICompletionService(BaseService):
    """OpenAI chat, image and utility prompts."""

    def __init__(
        self,
        config: Optional[CompletionConfig] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        super().__init__(config, client)
        self.config = self.credentials

    def stream_turn(
        self,
        history: Sequence[Message],
        text: str,
        model_variant: str,
        memory: str,
    ) -> AsyncIterator[str]:
        """Stream a chat turn as text fragments."""

        async def _stream() -> AsyncIterator[str]:
            messages = [{"role": "system", "content": build_system_instruction(memory)}]
            messages.extend(history_to_messages(history))
            messages.append({"role": "user", "content": text})

            model = self.config.resolve_model(model_variant)
            logger.debug(f"Opening stream on {model} with {len(messages)} messages")
            try:
                stream = await self.client.chat.completions.create(
                    model=model,
                    messages=messages,
                    temperature=self.config.temperature,
                    stream=True,
                )
                async for chunk in stream:
                    if not chunk.choices:
                        continue
                    content = chunk.choices[0].delta.content
                    if content:
                        yield content
            except openai.OpenAIError as e:
                raise to_service_error(e, self.__class__.__name__) from e

        return _stream()

    @handle_openai_error
    async def edit_or_generate_image(
        self, prompt: str, image: Optional[ImageAttachment] = None
    ) -> EditResult:
        """Edit the attached image, or generate a new one from the prompt."""
        if image is not None:
            extension = _IMAGE_EXTENSIONS.get(image.mime_type, "png")
            response = await self.client.images.edit(
                model=self.config.image_model,
                image=(f"image.{extension}", image.data, image.mime_type),
                prompt=prompt or DEFAULT_EDIT_PROMPT,
            )
        else:
            response = await self.client.images.generate(
                model=self.config.image_model,
                prompt=prompt,
            )

        if not response.data:
            return EditResult()

        encoded = response.data[0].b64_json
        if not encoded:
            raise TransientServiceError(
                "Image response carried no image data", component="OpenAICompletionService"
            )
        return EditResult(
            image=ImageAttachment(data=base64.b64decode(encoded), mime_type="image/png")
        )

    @handle_openai_error
    async def _complete(self, prompt: str) -> str:
        response = await self.client.chat.completions.create(
            model=self.config.utility_model,
            messages=[{"role": "user", "content": prompt}],
        )
        return (response.choices[0].message.content or "").strip()

    async def summarize_title(self, text: str) -> str:
        title = await self._complete(TITLE_PROMPT.format(text=text))
        return title.strip('"\'') or DEFAULT_SESSION_TITLE

    async def refine_memory(
        self, current_memory: str, user_text: str, model_text: str
    ) -> str:
        refined = await self._complete(
            build_memory_prompt(current_memory, user_text, model_text)
        )
        return refined or current_memory
