"""Automated reply generation."""

from .completer import Completer, EchoCompleter, OpenAICompleter
from .responses import CompletionOptions

__all__ = ["Completer", "CompletionOptions", "EchoCompleter", "OpenAICompleter"]
