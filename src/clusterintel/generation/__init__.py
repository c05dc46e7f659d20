"""Optional text generation for cluster names."""

from .generator import ClaudeTextGenerator, TextGenerator, get_text_generator

__all__ = ["ClaudeTextGenerator", "TextGenerator", "get_text_generator"]
