"""Privacy policy for what is rendered into gateway prompts.

Only anonymized, typed snapshots (see
``carebook.domains.health.analysis.snapshot``) may be turned into prompt
context. Raw records never are: this module accepts dataclass instances of
those types and refuses anything else.
"""

from __future__ import annotations

import dataclasses
from typing import Any


def _round_floats(obj: Any, ndigits: int = 2) -> Any:
    if isinstance(obj, float):
        return round(obj, ndigits)
    if isinstance(obj, dict):
        return {k: _round_floats(v, ndigits=ndigits) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_round_floats(v, ndigits=ndigits) for v in obj]
    return obj


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _to_context(obj: Any) -> Any:
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {
            _camel(f.name): _to_context(getattr(obj, f.name))
            for f in dataclasses.fields(obj)
        }
    if isinstance(obj, (list, tuple)):
        return [_to_context(v) for v in obj]
    return obj


def build_llm_data_context(snapshot: Any) -> dict[str, Any]:
    """Build the JSON-safe prompt context for an anonymized snapshot or profile.

    Keys are camelCased to match the reply contract the prompts describe.

    Raises:
        TypeError: If ``snapshot`` is not a frozen snapshot dataclass.
    """
    if not dataclasses.is_dataclass(snapshot) or isinstance(snapshot, type):
        raise TypeError(f"Expected an anonymized snapshot, got {type(snapshot).__name__}")
    params = getattr(snapshot, "__dataclass_params__", None)
    if params is None or not params.frozen:
        raise TypeError(f"{type(snapshot).__name__} is not a frozen snapshot type")
    return _round_floats(_to_context(snapshot))
