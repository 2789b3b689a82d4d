# agent-wake-daemon - Wake-signal delivery for interactive agent CLIs
# Copyright (c) 2025 xnoto

"""Agent Wake - deliver wake signals into interactive agent CLI sessions."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("agent-wake-daemon")
except PackageNotFoundError:  # pragma: no cover - fallback for dev
    __version__ = "0.1.0"
