"""Caller identity threaded through every pipeline entry point."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Caller:
    id: str
    role: str
