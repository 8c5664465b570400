"""Shared persistence utilities."""

from forge_cli.persistence._utils import atomic_write_json, atomic_write_text

__all__ = ["atomic_write_json", "atomic_write_text"]
