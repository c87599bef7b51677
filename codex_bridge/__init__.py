"""Codex Bridge: run the Codex CLI headless, streamed or in a terminal."""

__version__ = "0.1.0"
