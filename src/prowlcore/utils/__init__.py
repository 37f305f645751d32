"""Utility helpers for prowlcore."""

from .object_pool import ObjectPool

__all__ = ["ObjectPool"]
