"""
Environment variable specs.

Each variable is declared once as an ``EnvVarSpec``; ``parse`` reads and
converts it, ``validate`` checks a list of specs at start-up and logs every
problem before the service refuses to start.  Secret values are never logged.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple

from pydantic import ValidationError, create_model

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnvVarSpec:
    id: str
    default: Optional[str] = None
    parse: Callable[[str], Any] = lambda x: x
    value_type: Tuple[type, Any] = (str, ...)
    is_optional: bool = False
    is_secret: bool = False


def _raw(spec: EnvVarSpec) -> Optional[str]:
    value = os.environ.get(spec.id)
    if value is None or value == "":
        return spec.default
    return value


def parse(spec: EnvVarSpec) -> Any:
    """Parsed value of the variable, or ``None`` when it is unset and has no default."""
    value = _raw(spec)
    if value is None:
        return None
    return spec.parse(value)


def _describe(spec: EnvVarSpec, value: Optional[str]) -> str:
    if spec.is_secret:
        return "<secret>"
    return repr(value)


def validate(specs: List[EnvVarSpec]) -> bool:
    ok = True
    fields = {}
    values = {}
    for spec in specs:
        raw = _raw(spec)
        if raw is None:
            if not spec.is_optional:
                logger.error(f"Missing required environment variable {spec.id}")
                ok = False
            continue
        try:
            values[spec.id] = spec.parse(raw)
        except Exception as e:
            # Parser messages usually echo the raw input
            reason = "" if spec.is_secret else f": {e}"
            logger.error(f"Could not parse {spec.id}={_describe(spec, raw)}{reason}")
            ok = False
            continue
        fields[spec.id] = spec.value_type

    if fields:
        model = create_model("EnvVars", **fields)
        try:
            model(**values)
        except ValidationError as e:
            for err in e.errors():
                name = err["loc"][0] if err["loc"] else "?"
                logger.error(f"Invalid value for {name}: {err['msg']}")
            ok = False
    return ok
