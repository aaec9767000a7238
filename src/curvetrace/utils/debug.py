from __future__ import annotations

_verbose = False


def set_verbose(enabled: bool) -> None:
    global _verbose
    _verbose = enabled


def is_verbose() -> bool:
    return _verbose


def log(message: str) -> None:
    if _verbose:
        print(message)


def log_if(enabled: bool, message: str) -> None:
    """Print when either the per-query flag or the global switch is on."""
    if enabled or _verbose:
        print(message)
