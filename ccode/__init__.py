"""Profile switcher for Claude Code and claude-code-router."""

__version__ = "0.3.0"
