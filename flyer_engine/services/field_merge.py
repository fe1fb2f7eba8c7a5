"""
Field-Value Merge Engine - full-document personalization through one completion.
"""
from typing import Mapping, Optional, Sequence, Union

from flyer_engine.config import settings
from flyer_engine.logging_config import logger
from flyer_engine.models import ImageRef, TemplateField
from flyer_engine.services.customization_prompts import (
    build_field_values_prompt,
    build_prompt_only,
    describe_field_values,
)
from flyer_engine.services.llm_response_handler import LLMResponseHandler
from flyer_engine.services.provider_gateway import ProviderGateway


class CustomizationValidationError(ValueError):
    """A required request input is missing; raised before any provider call."""


class FieldValueMergeEngine:
    """
    Regenerate the whole document from field values and/or an instruction.

    If any field carries a non-blank value the rule-laden field-value prompt
    is used; otherwise the lean free-text prompt. Provider failures propagate
    as ``ProviderError``. A degenerate completion (shorter than
    ``MIN_HTML_LENGTH``) is discarded and the input HTML is returned as is.
    """

    def __init__(self, gateway: ProviderGateway, min_length: int = None):
        self.gateway = gateway
        self.min_length = settings.MIN_HTML_LENGTH if min_length is None else min_length

    def build_instruction(
        self,
        html: str,
        fields: Sequence[TemplateField],
        values: Mapping[str, str],
        user_prompt: Optional[str] = None,
        image: Optional[ImageRef] = None,
    ) -> Optional[str]:
        """Return the instruction to send, or None when there is nothing to apply."""
        field_lines = describe_field_values(fields, values or {})

        if field_lines:
            return build_field_values_prompt(html, field_lines, user_prompt, image)

        if (user_prompt and user_prompt.strip()) or image:
            return build_prompt_only(html, user_prompt, image)

        return None

    async def apply(
        self,
        html: str,
        fields: Sequence[TemplateField],
        values: Mapping[str, str],
        user_prompt: Optional[str] = None,
        image: Union[ImageRef, str, None] = None,
    ) -> str:
        if not html or not html.strip():
            raise CustomizationValidationError("HTML content is required")

        if isinstance(image, str):
            image = ImageRef.parse(image) if image.strip() else None

        instruction = self.build_instruction(html, fields, values, user_prompt, image)
        if instruction is None:
            logger.info("Nothing to apply, returning HTML unchanged")
            return html

        completion = await self.gateway.complete(instruction, image)

        # Gateway already strips fences; strip again in case the model double-wrapped
        modified = LLMResponseHandler.clean_html(completion)

        if LLMResponseHandler.is_degenerate(modified, self.min_length):
            logger.warning(
                "AI returned empty or too short response, using original HTML",
                chars=len(modified),
            )
            return html

        logger.info("Template customized", input_chars=len(html), output_chars=len(modified))
        return modified
