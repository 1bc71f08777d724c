"""
homelab/models/terraform.py

Typed views over the JSON that terraform prints.

'terraform output -json' becomes TerraformOutputs, which Layer 1 writes to
disk and every later layer reads host addresses from. 'terraform show -json'
becomes TerraformState, which destroy consults before asking for consent.
"""

from __future__ import annotations

from typing import Any, Dict, Iterator, List, Type, TypeVar, Union
from pydantic import BaseModel, Field, RootModel

from homelab.models.validator import validate_type

T = TypeVar("T")


class OutputValue(BaseModel):
    """One named output. `type` is terraform's own type expression,
    e.g. "string" or ["map", "string"]."""

    sensitive: bool = False
    value: Any
    type: Union[str, List[Any], None] = None


class TerraformOutputs(RootModel[Dict[str, OutputValue]]):
    def names(self) -> List[str]:
        return sorted(self.root)

    def get_output(self, output_name: str, output_type: Type[T]) -> T:
        """Return output `output_name` coerced to `output_type`.

        Raises:
            KeyError: No output by that name.
            ValueError: The value does not fit `output_type`.
        """
        try:
            entry = self.root[output_name]
        except KeyError:
            raise KeyError(
                f"terraform produced no output named '{output_name}' "
                f"(available: {', '.join(self.names()) or 'none'})"
            ) from None
        return validate_type(
            entry.value, output_type, source=f"terraform output '{output_name}'"
        )

    def get_address_map(self, output_name: str) -> Dict[str, str]:
        """Return a host -> IP mapping from a map-of-strings output.

        CIDR suffixes are stripped and hosts with a null or blank address are
        left out. An absent output gives {} so callers can list every missing
        host in one error.
        """
        if output_name not in self.root:
            return {}
        addresses: Dict[str, str] = {}
        for host, raw in self.get_output(output_name, Dict[str, Any]).items():
            ip = "" if raw is None else str(raw).partition("/")[0].strip()
            if ip:
                addresses[host] = ip
        return addresses


class StateValues(BaseModel):
    outputs: Dict[str, OutputValue] = Field(default_factory=dict)
    root_module: Dict[str, Any] = Field(default_factory=dict)


def _walk_resources(module: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
    """Yield every resource in `module` and its nested child modules."""
    for resource in module.get("resources") or []:
        if isinstance(resource, dict):
            yield resource
    for child in module.get("child_modules") or []:
        if isinstance(child, dict):
            yield from _walk_resources(child)


class TerraformState(BaseModel):
    """
    Parsed 'terraform show -json'.

    A state with nothing in it comes back without a 'values' block, so
    `values` defaults to an empty one.
    """

    format_version: str
    terraform_version: str = ""
    values: StateValues = Field(default_factory=StateValues)

    def resource_addresses(self) -> List[str]:
        return [
            str(resource.get("address", "?"))
            for resource in _walk_resources(self.values.root_module)
        ]

    def is_empty(self) -> bool:
        return next(_walk_resources(self.values.root_module), None) is None
