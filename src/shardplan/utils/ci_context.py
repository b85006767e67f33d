"""CI context detection and GitHub Actions step outputs."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path


class GitHubOutputError(RuntimeError):
    """Raised when GitHub Actions does not provide a step output file."""


@dataclass
class CIContext:
    """Detected CI execution context."""

    provider: str | None
    """CI provider name (github), or None when not detected."""

    github_output: str | None
    """Path of the GitHub Actions step output file, if any."""

    @property
    def is_github_actions(self) -> bool:
        """Return True when running under GitHub Actions."""
        return self.provider == "github"


def detect_ci_context() -> CIContext:
    """Detect the CI context from environment variables.

    ``GITHUB_OUTPUT`` is also honored outside GitHub Actions so local runs can opt in.
    """
    provider = "github" if os.getenv("GITHUB_ACTIONS") == "true" else None
    return CIContext(provider=provider, github_output=os.getenv("GITHUB_OUTPUT") or None)


def resolve_github_output(ci_context: CIContext) -> Path | None:
    """Return the step output file to append to, or None to skip writing.

    Raises:
        GitHubOutputError: Under GitHub Actions when ``GITHUB_OUTPUT`` is unset.
    """
    if ci_context.github_output:
        return Path(ci_context.github_output)
    if ci_context.is_github_actions:
        msg = "GITHUB_OUTPUT is not set although GITHUB_ACTIONS is true"
        raise GitHubOutputError(msg)
    return None


def write_github_output(path: Path, values: Mapping[str, str]) -> None:
    """Append ``key=value`` lines to a GitHub Actions step output file."""
    with path.open("a", encoding="utf-8") as fh:
        for key, value in values.items():
            fh.write(f"{key}={value}\n")
