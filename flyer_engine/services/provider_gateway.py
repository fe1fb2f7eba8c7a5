"""
Provider Gateway - one narrow interface over the Anthropic and OpenAI APIs.

Callers ask for a completion (optionally with an image) or for structured
tool invocations. The gateway resolves which vendor to use once per call from
the provider setting store, picks the text or vision model internally, and
returns fence-stripped text. Every SDK or transport failure surfaces as
``ProviderError``; deciding what to do about it is the caller's job.
"""
from dataclasses import dataclass, field
import json
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Union

from flyer_engine.config import settings as default_settings
from flyer_engine.logging_config import logger
from flyer_engine.models import ImageRef
from flyer_engine.services.llm_response_handler import LLMResponseHandler
from flyer_engine.services.provider_settings import (
    ProviderSettingsSource,
    StaticProviderSettings,
)


class ProviderError(Exception):
    """A provider call failed (network, non-2xx, or malformed response)."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


@dataclass(frozen=True)
class ToolInvocation:
    """A single tool call emitted by the model"""
    name: str
    input: Dict[str, Any] = field(default_factory=dict)


class LLMProvider(Protocol):
    name: str

    async def complete(self, prompt: str, image: Optional[ImageRef] = None) -> str: ...

    async def invoke_tools(
        self,
        system_prompt: str,
        user_prompt: str,
        tools: List[Dict[str, Any]],
    ) -> List[ToolInvocation]: ...

    def stream(self, prompt: str) -> AsyncIterator[str]: ...


class AnthropicProvider:
    name = "anthropic"

    def __init__(
        self,
        client,
        text_model: str,
        vision_model: str,
        tool_model: str,
        max_tokens: int = 16000,
        tool_max_tokens: int = 1024,
        stream_max_tokens: int = 8000,
    ):
        self.client = client
        self.text_model = text_model
        self.vision_model = vision_model
        self.tool_model = tool_model
        self.max_tokens = max_tokens
        self.tool_max_tokens = tool_max_tokens
        self.stream_max_tokens = stream_max_tokens

    @staticmethod
    def image_block(image: ImageRef) -> Dict[str, Any]:
        if image.is_remote:
            source = {"type": "url", "url": image.source}
        else:
            source = {
                "type": "base64",
                "media_type": image.media_type,
                "data": image.data,
            }
        return {"type": "image", "source": source}

    async def complete(self, prompt: str, image: Optional[ImageRef] = None) -> str:
        if image:
            model = self.vision_model
            content: Union[str, List[Dict[str, Any]]] = [
                self.image_block(image),
                {"type": "text", "text": prompt},
            ]
        else:
            model = self.text_model
            content = prompt

        response = await self.client.messages.create(
            model=model,
            max_tokens=self.max_tokens,
            messages=[{"role": "user", "content": content}],
        )
        return LLMResponseHandler.join_text_blocks(response.content)

    async def invoke_tools(
        self,
        system_prompt: str,
        user_prompt: str,
        tools: List[Dict[str, Any]],
    ) -> List[ToolInvocation]:
        response = await self.client.messages.create(
            model=self.tool_model,
            max_tokens=self.tool_max_tokens,
            system=system_prompt,
            tools=tools,
            messages=[{"role": "user", "content": user_prompt}],
        )

        return [
            ToolInvocation(name=block.name, input=dict(block.input or {}))
            for block in response.content
            if getattr(block, "type", None) == "tool_use" and isinstance(block.input or {}, dict)
        ]

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        async with self.client.messages.stream(
            model=self.text_model,
            max_tokens=self.stream_max_tokens,
            messages=[{"role": "user", "content": prompt}],
        ) as stream:
            async for text in stream.text_stream:
                yield text


class OpenAIProvider:
    name = "openai"

    def __init__(
        self,
        client,
        text_model: str,
        vision_model: str,
        tool_model: str,
        max_tokens: int = 16000,
        tool_max_tokens: int = 1024,
        stream_max_tokens: int = 8000,
    ):
        self.client = client
        self.text_model = text_model
        self.vision_model = vision_model
        self.tool_model = tool_model
        self.max_tokens = max_tokens
        self.tool_max_tokens = tool_max_tokens
        self.stream_max_tokens = stream_max_tokens

    @staticmethod
    def convert_tools(tools: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Convert Anthropic-style tool definitions to OpenAI function tools."""
        return [
            {
                "type": "function",
                "function": {
                    "name": tool["name"],
                    "description": tool.get("description", ""),
                    "parameters": tool.get("input_schema", {"type": "object", "properties": {}}),
                },
            }
            for tool in tools
        ]

    async def complete(self, prompt: str, image: Optional[ImageRef] = None) -> str:
        if image:
            model = self.vision_model
            content: Union[str, List[Dict[str, Any]]] = [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": image.source}},
            ]
        else:
            model = self.text_model
            content = prompt

        response = await self.client.chat.completions.create(
            model=model,
            max_tokens=self.max_tokens,
            messages=[{"role": "user", "content": content}],
        )

        if not response.choices:
            raise ProviderError(self.name, "Response contained no choices")
        return response.choices[0].message.content or ""

    async def invoke_tools(
        self,
        system_prompt: str,
        user_prompt: str,
        tools: List[Dict[str, Any]],
    ) -> List[ToolInvocation]:
        response = await self.client.chat.completions.create(
            model=self.tool_model,
            max_tokens=self.tool_max_tokens,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            tools=self.convert_tools(tools),
            tool_choice="auto",
        )

        if not response.choices:
            raise ProviderError(self.name, "Response contained no choices")

        invocations: List[ToolInvocation] = []
        for tool_call in response.choices[0].message.tool_calls or []:
            function = getattr(tool_call, "function", None)
            if function is None:
                continue
            try:
                arguments = json.loads(function.arguments or "{}")
            except json.JSONDecodeError:
                logger.warning("Skipping malformed tool call", tool=function.name)
                continue
            if not isinstance(arguments, dict):
                logger.warning("Skipping tool call with non-object arguments", tool=function.name)
                continue
            invocations.append(ToolInvocation(name=function.name, input=arguments))

        return invocations

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        stream = await self.client.chat.completions.create(
            model=self.text_model,
            max_tokens=self.stream_max_tokens,
            messages=[{"role": "user", "content": prompt}],
            stream=True,
        )
        async for chunk in stream:
            if not chunk.choices:
                continue
            content = chunk.choices[0].delta.content
            if content:
                yield content


class ProviderGateway:
    """Selects a provider per request and normalizes its output."""

    def __init__(
        self,
        providers: Dict[str, LLMProvider],
        settings_source: ProviderSettingsSource = None,
        default_provider: str = "anthropic",
    ):
        if not providers:
            raise ValueError("At least one LLM provider must be configured")
        self.providers = providers
        self.settings_source = settings_source or StaticProviderSettings(default_provider)
        self.default_provider = default_provider

    async def resolve_provider(self) -> LLMProvider:
        """Read the provider setting; any failure falls back to the default."""
        try:
            name = await self.settings_source.get_provider()
        except Exception as e:
            logger.warning("Failed to read AI provider setting, using default", error=str(e))
            name = None

        name = name or self.default_provider
        if name not in self.providers:
            logger.warning("AI provider not configured, using default", requested=name)
            name = self.default_provider

        if name not in self.providers:
            # Default vendor has no key configured; use whichever one does
            name = next(iter(self.providers))

        return self.providers[name]

    async def complete(
        self,
        prompt: str,
        image: Union[ImageRef, str, None] = None,
    ) -> str:
        """Run a completion and return fence-stripped text."""
        if isinstance(image, str):
            image = ImageRef.parse(image) if image.strip() else None

        provider = await self.resolve_provider()
        logger.info(
            "Calling LLM provider",
            provider=provider.name,
            capability="vision" if image else "text",
            prompt_chars=len(prompt),
        )

        try:
            raw = await provider.complete(prompt, image)
        except ProviderError:
            raise
        except Exception as e:
            logger.error("LLM provider call failed", provider=provider.name, error=str(e))
            raise ProviderError(provider.name, str(e)) from e

        return LLMResponseHandler.clean_html(raw)

    async def invoke_tools(
        self,
        system_prompt: str,
        user_prompt: str,
        tools: List[Dict[str, Any]],
    ) -> List[ToolInvocation]:
        """Ask the provider for structured tool invocations."""
        provider = await self.resolve_provider()
        logger.info("Calling LLM provider with tools", provider=provider.name, tools=len(tools))

        try:
            return await provider.invoke_tools(system_prompt, user_prompt, tools)
        except ProviderError:
            raise
        except Exception as e:
            logger.error("LLM tool call failed", provider=provider.name, error=str(e))
            raise ProviderError(provider.name, str(e)) from e

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        """Stream raw completion text chunks (no fence stripping)."""
        provider = await self.resolve_provider()
        try:
            async for chunk in provider.stream(prompt):
                yield chunk
        except ProviderError:
            raise
        except Exception as e:
            logger.error("LLM stream failed", provider=provider.name, error=str(e))
            raise ProviderError(provider.name, str(e)) from e


def build_gateway(
    config=None,
    settings_source: ProviderSettingsSource = None,
) -> ProviderGateway:
    """Construct provider clients once and wire them into a gateway."""
    config = config or default_settings
    providers: Dict[str, LLMProvider] = {}

    if config.ANTHROPIC_API_KEY:
        from anthropic import AsyncAnthropic

        providers["anthropic"] = AnthropicProvider(
            client=AsyncAnthropic(
                api_key=config.ANTHROPIC_API_KEY,
                timeout=config.LLM_TIMEOUT_SECONDS,
                max_retries=config.LLM_MAX_RETRIES,
            ),
            text_model=config.CLAUDE_TEXT_MODEL,
            vision_model=config.CLAUDE_VISION_MODEL,
            tool_model=config.CLAUDE_TOOL_MODEL,
            max_tokens=config.MAX_TOKENS,
            tool_max_tokens=config.TOOL_MAX_TOKENS,
            stream_max_tokens=config.STREAM_MAX_TOKENS,
        )

    if config.OPENAI_API_KEY:
        from openai import AsyncOpenAI

        providers["openai"] = OpenAIProvider(
            client=AsyncOpenAI(
                api_key=config.OPENAI_API_KEY,
                timeout=config.LLM_TIMEOUT_SECONDS,
                max_retries=config.LLM_MAX_RETRIES,
            ),
            text_model=config.OPENAI_TEXT_MODEL,
            vision_model=config.OPENAI_VISION_MODEL,
            tool_model=config.OPENAI_TOOL_MODEL,
            max_tokens=config.MAX_TOKENS,
            tool_max_tokens=config.TOOL_MAX_TOKENS,
            stream_max_tokens=config.STREAM_MAX_TOKENS,
        )

    logger.info("Provider gateway configured", providers=list(providers))
    return ProviderGateway(
        providers=providers,
        settings_source=settings_source,
        default_provider=config.DEFAULT_AI_PROVIDER,
    )
