"""Placement suggestions for collections."""

from .suggestions import SuggestionEngine

__all__ = ["SuggestionEngine"]
