"""Model quota scraping from the agent CLI's text output.

`parse_quota` is pure; `fetch_quota` is the only part that runs a process.
"""

from __future__ import annotations

import re
import shlex
import subprocess
from collections.abc import Iterable

from .utils import strip_ansi

# e.g. "gemini-3-pro-low 80% left ⏱3h 44m"
QUOTA_REGEX = re.compile(r"(\S+)\s+(\d+)%\s+left")
NOISE_NAMES = frozenset({"usage", "usage:", "left"})
UNMEASURED = -1


class QuotaError(RuntimeError):
    pass


def _looks_like_model(name: str) -> bool:
    if name in NOISE_NAMES or len(name) < 3:
        return False
    # Model names are usually provider-model; short bare words are table noise.
    return "-" in name or len(name) >= 10


def parse_quota(text: str, configured_models: Iterable[str] = ()) -> dict[str, int]:
    models: dict[str, int] = {}
    for match in QUOTA_REGEX.finditer(strip_ansi(text)):
        name = match.group(1)
        if _looks_like_model(name):
            models[name] = int(match.group(2))
    for name in configured_models:
        models.setdefault(name, UNMEASURED)
    return models


def fetch_quota(command: str, timeout_seconds: float = 30.0) -> str:
    try:
        process = subprocess.run(
            shlex.split(command),
            capture_output=True,
            text=True,
            check=False,
            timeout=timeout_seconds,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise QuotaError(f"{command} failed: {exc}") from exc
    if process.returncode != 0:
        output = process.stderr.strip() or process.stdout.strip()
        raise QuotaError(f"{command} failed: {output or 'exit code ' + str(process.returncode)}")
    return process.stdout + process.stderr
