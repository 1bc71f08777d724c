"""
homelab/models/validator.py

Coerces loosely typed JSON (terraform outputs, GitHub API bodies) into
concrete Python types.
"""

from functools import lru_cache
from typing import Any, Type, TypeVar

from pydantic import TypeAdapter, ValidationError

T = TypeVar("T")


@lru_cache(maxsize=None)
def _adapter(expected_type: Any) -> TypeAdapter[Any]:
    return TypeAdapter(expected_type)


def validate_type(obj: Any, expected_type: Type[T], source: str = "value") -> T:
    """Return `obj` validated as `expected_type`.

    `source` names where the data came from and leads the error message,
    e.g. "terraform output 'talos_ips'".

    Raises:
        ValueError: If `obj` does not fit `expected_type`.
    """
    try:
        return _adapter(expected_type).validate_python(obj)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ValueError(f"{source} is not a valid {expected_type}: {problems}") from exc
