"""
LLM Flashdeck Plugin

A plugin for learning languages with flashcard decks, spaced repetition
acquisition sessions, and AI-generated explanations, translations and audio.
"""

from . import db
from . import scheduler
from . import session
from . import structured
from . import plugin

__version__ = "0.1.0"
__all__ = ["db", "scheduler", "session", "structured", "plugin"]
