"""
Registrars - consumer-owned shared state managed by the engine

A registrar is created by the first `register` call for a name and
returned unchanged to every later caller. Its `data` and `functions`
mappings belong to the consumer; the engine only hands out references to
them (through placeholder tokens) and never writes to them.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional


@dataclass(frozen=True, eq=False)
class Registrar:
    """Named shared-state container. Slots are frozen, contents are not."""
    name: str
    data: Dict[str, Any] = field(default_factory=dict)
    functions: Dict[str, Any] = field(default_factory=dict)

    def __repr__(self) -> str:
        return f"Registrar(name={self.name!r}, data={sorted(self.data)}, functions={sorted(self.functions)})"


class RegistrarSet(Mapping):
    """
    name -> Registrar, first writer wins.

    This mapping is what compiled patches look registrars up in at
    execution time.
    """

    def __init__(self):
        self._registrars: Dict[str, Registrar] = {}

    def obtain(self, name: str, data: Optional[dict] = None,
               functions: Optional[dict] = None) -> Registrar:
        """Return the registrar for `name`, creating it on first use."""
        existing = self._registrars.get(name)
        if existing is not None:
            return existing
        registrar = Registrar(
            name=name,
            data=data if data is not None else {},
            functions=functions if functions is not None else {},
        )
        self._registrars[name] = registrar
        return registrar

    def adopt(self, registrar: Registrar) -> Registrar:
        """Add an existing registrar object; returns whichever one owns the name."""
        return self._registrars.setdefault(registrar.name, registrar)

    def __getitem__(self, name: str) -> Registrar:
        return self._registrars[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._registrars)

    def __len__(self) -> int:
        return len(self._registrars)

    def clear(self):
        self._registrars.clear()
