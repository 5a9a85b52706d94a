"""Shared process utilities."""

from scriptenv.utils.signals import child_exit_status, interrupts_forwarded

__all__ = [
    "child_exit_status",
    "interrupts_forwarded",
]
