"""
Prompt templates, versioned by filename.

Prompts are never hardcoded in Python; edit the .md files instead.
"""

from app.prompts.loader import load_prompt, render_prompt

__all__ = ["load_prompt", "render_prompt"]
