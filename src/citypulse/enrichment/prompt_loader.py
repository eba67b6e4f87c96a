"""Prompt loading utilities."""

from __future__ import annotations

from pathlib import Path


PROMPTS_DIR = Path(__file__).resolve().parents[1] / "prompts"

PROMPT_TASKS: tuple[str, ...] = ("synthesize", "categorize", "sentiment", "severity")


def prompt_path(task: str, prompt_version: str) -> Path:
    """Resolve a prompt file path from a task and a version like 'v001'."""
    if task not in PROMPT_TASKS:
        raise ValueError(f"task must be one of {PROMPT_TASKS}")

    if not prompt_version.startswith("v"):
        raise ValueError("prompt_version must start with 'v'")

    return PROMPTS_DIR / task / f"{prompt_version}.md"


def load_prompt(task: str, prompt_version: str) -> str:
    """Load a prompt file as UTF-8 text."""
    path = prompt_path(task=task, prompt_version=prompt_version)
    if not path.exists():
        raise FileNotFoundError(f"Prompt file not found: {path}")
    return path.read_text(encoding="utf-8").strip()
