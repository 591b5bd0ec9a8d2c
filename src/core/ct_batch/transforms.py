"""Resolution of the injected MRI-to-CT transform.

A transform is any callable ``transform(data: bytes, source_format: str) ->
bytes``. It may raise :class:`~core.ct_batch.errors.ConversionError` (or any
other exception) to fail a single item, and may accept a ``cancel_event``
keyword to be told when its result is no longer wanted.
"""

from __future__ import annotations

import importlib

from .worker import Transform


def passthrough(data: bytes, source_format: str) -> bytes:
    """Development transform: return the input volume unchanged."""

    return data


def load_transform(import_path: str) -> Transform:
    """Import ``package.module:attribute`` and return the callable."""

    module_name, sep, attribute = import_path.partition(":")
    if not sep or not module_name or not attribute:
        raise ValueError(f"Transform must look like 'package.module:callable', got {import_path!r}")
    module = importlib.import_module(module_name)
    target = module
    for part in attribute.split("."):
        target = getattr(target, part)
    if not callable(target):
        raise TypeError(f"Transform {import_path!r} is not callable")
    return target


__all__ = ["load_transform", "passthrough"]
