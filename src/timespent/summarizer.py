"""
Summarizer

Send the assembled time-analysis prompt to an LLM and return its answer.
OpenAI is the default provider; Anthropic's Claude can be used instead.
"""

import logging
from typing import Optional

from anthropic import Anthropic
from openai import OpenAI

logger = logging.getLogger(__name__)

DEFAULT_MODELS = {
    "openai": "gpt-4.1-mini",
    "anthropic": "claude-3-5-sonnet-20241022",
}


class Summarizer:
    """Summarize text with OpenAI or Anthropic"""

    def __init__(self, api_key: str, provider: str = "openai", model: Optional[str] = None, temperature: float = 0.7):
        """
        Initialize summarizer

        Args:
            api_key: API key for the provider
            provider: "openai" or "anthropic"
            model: Model name (default depends on provider)
            temperature: Sampling temperature
        """
        if provider not in DEFAULT_MODELS:
            raise ValueError(f"Unknown summary provider: {provider}")
        if not api_key:
            raise ValueError(f"API key required for {provider}")

        self.provider = provider
        self.model = model or DEFAULT_MODELS[provider]
        self.temperature = temperature

        if provider == "anthropic":
            self.client = Anthropic(api_key=api_key)
        else:
            self.client = OpenAI(api_key=api_key)

        logger.info(f"Summarizer initialized ({provider} {self.model})")

    def summarize(self, prompt: str) -> str:
        """
        Run the prompt through the model

        Args:
            prompt: Complete prompt text

        Returns:
            The model's reply
        """
        logger.debug(f"Prompt length: {len(prompt)} chars")

        try:
            if self.provider == "anthropic":
                response = self.client.messages.create(
                    model=self.model,
                    max_tokens=4000,
                    temperature=self.temperature,
                    messages=[{"role": "user", "content": prompt}],
                )
                text = response.content[0].text
            else:
                response = self.client.chat.completions.create(
                    model=self.model,
                    messages=[{"role": "user", "content": prompt}],
                    temperature=self.temperature,
                )
                text = response.choices[0].message.content
        except Exception as e:
            logger.error(f"Error calling {self.provider} API: {e}")
            raise

        logger.debug(f"Response length: {len(text or '')} chars")
        return text or ""
