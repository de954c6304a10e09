"""JSON helpers, using orjson when the speedups extra is installed."""

from __future__ import annotations

from typing import Any

try:
    import orjson

    def dumps(obj: Any, *, indent: bool = False) -> str:
        """Dump JSON, indented by two spaces when *indent* is set."""
        return orjson.dumps(
            obj, option=orjson.OPT_INDENT_2 if indent else None
        ).decode()

    loads = orjson.loads
except ImportError:
    import json

    def dumps(obj: Any, *, indent: bool = False) -> str:
        """Dump JSON, indented by two spaces when *indent* is set."""
        # Same output as orjson in both modes
        return json.dumps(
            obj,
            separators=(",", ": ") if indent else (",", ":"),
            indent=2 if indent else None,
            ensure_ascii=False,
        )

    loads = json.loads


try:
    from mashumaro.mixins.orjson import DataClassORJSONMixin

    DataClassJSONMixin = DataClassORJSONMixin
except ImportError:
    # mashumaro's orjson mixin needs orjson itself
    from mashumaro.mixins.json import DataClassJSONMixin as JSONMixin

    DataClassJSONMixin = JSONMixin  # type: ignore[assignment, misc]
