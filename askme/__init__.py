"""ask-me: hand questions from an automation agent to a human through an editor."""

__version__ = "0.3.0"
