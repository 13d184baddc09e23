"""Command handlers and CLI for ask-me."""
