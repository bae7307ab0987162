import logging
from typing import List, Dict, Optional
from openai import AsyncOpenAI
from langfuse.openai import openai as langfuse_openai

logger = logging.getLogger(__name__)


class OpenAIClient:
    """Async wrapper for OpenAI API with Langfuse monitoring."""

    def __init__(self, api_key: str, enable_langfuse: bool = True, model: str = "gpt-4o-mini"):
        self.api_key = api_key
        self.enable_langfuse = enable_langfuse
        self.model = model

        if enable_langfuse:
            self.client = langfuse_openai.AsyncOpenAI(api_key=api_key)
        else:
            self.client = AsyncOpenAI(api_key=api_key)

    async def generate_completion(
        self,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
        temperature: float = 0.0,
        response_format: Optional[Dict] = None
    ) -> str:
        """ Generate chat completion. """
        kwargs = {}
        if response_format:
            kwargs["response_format"] = response_format

        try:
            response = await self.client.chat.completions.create(
                model=model or self.model,
                messages=messages,
                temperature=temperature,
                **kwargs
            )
            return response.choices[0].message.content or ""

        except Exception as e:
            logger.error(f"OpenAI completion failed: {e}")
            raise
