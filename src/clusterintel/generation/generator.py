"""Text generation backends used for naming clusters."""

from abc import ABC, abstractmethod
from typing import Any


class TextGenerator(ABC):
    """Something that turns a system prompt and a user prompt into text."""

    @abstractmethod
    def generate(self, system_prompt: str, user_prompt: str) -> str:
        """Return the generated text."""


class ClaudeTextGenerator(TextGenerator):
    """Claude-backed text generation."""

    def __init__(self, api_key: str, model: str = "claude-sonnet-4-20250514", max_tokens: int = 50,
                 timeout: float | None = None):
        import anthropic
        self.client = anthropic.Anthropic(api_key=api_key, timeout=timeout)
        self.model = model
        self.max_tokens = max_tokens

    def generate(self, system_prompt: str, user_prompt: str) -> str:
        response = self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
        )
        return response.content[0].text


def get_text_generator(config: dict[str, Any]) -> TextGenerator | None:
    """Factory: Claude generator when an API key is configured, else None."""
    api_key = config.get("claude_api_key")
    if not api_key:
        return None
    return ClaudeTextGenerator(
        api_key=api_key,
        model=config.get("claude_model", "claude-sonnet-4-20250514"),
        timeout=config.get("timeouts", {}).get("text_generator"),
    )
