# query_advisor/core/agent/llm_client.py

import logging
from datetime import datetime
from typing import Optional, Any

import openai
from openai import OpenAI

from query_advisor.core.errors import ConfigurationError, EngineReplyMalformed, EngineUnavailable

logger = logging.getLogger(__name__)


def _token_count(usage: Any, name: str) -> int:
    value = getattr(usage, name, 0)
    return value if isinstance(value, int) else 0


class ReasoningEngineClient:
    """
    OpenAI chat-completions wrapper that asks for a JSON object and logs
    token usage for each call
    """

    def __init__(self, api_key: Optional[str], model: str = "gpt-4o-mini", temperature: float = 0.3,
                 timeout: float = 60.0, base_url: Optional[str] = None, client: Any = None):
        if not api_key:
            raise ConfigurationError("OpenAI API key not configured")

        self.model = model
        self.temperature = temperature
        self.timeout = timeout
        self.client = client or OpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0)

    def complete_json(self, prompt: str) -> str:
        """
        Send one user prompt and return the raw message content

        Raises:
            EngineUnavailable: the API call failed or timed out
            EngineReplyMalformed: the reply carried no content
        """
        start_time = datetime.now()
        logger.debug(f"Sending advisor prompt ({len(prompt)} chars) to {self.model}")

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.temperature,
                response_format={"type": "json_object"},
            )
        except openai.OpenAIError as e:
            logger.error(f"OpenAI API call failed: {e}")
            raise EngineUnavailable("Failed to analyze query", {"cause": type(e).__name__}) from e

        duration = (datetime.now() - start_time).total_seconds()

        content = None
        if response.choices:
            content = response.choices[0].message.content
        if not content or not content.strip():
            logger.error("OpenAI API returned an empty message")
            raise EngineReplyMalformed("Invalid AI response format", {"reason": "empty reply"})

        usage = getattr(response, "usage", None)
        input_tokens = _token_count(usage, "prompt_tokens")
        output_tokens = _token_count(usage, "completion_tokens")

        logger.info(
            f"OpenAI API response: model={self.model}, duration={duration:.2f}s, "
            f"tokens={input_tokens}+{output_tokens}"
        )
        return content
