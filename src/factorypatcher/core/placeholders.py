"""
Placeholder tokens for patch authors.

Replacement text can reference a registrar's shared state before that
registrar (or even the engine) exists. Authors embed the tokens below;
they are swapped for real expressions only when a patch is baked into
the final factory source, and those expressions are evaluated when the
patched factory runs.
"""

import secrets
from dataclasses import dataclass


@dataclass(frozen=True)
class PlaceholderSet:
    """The three tokens of one engine instance plus the compiled-code binding name."""
    self: str
    functions: str
    data: str
    binding: str

    @classmethod
    def generate(cls, seed: str = "") -> "PlaceholderSet":
        """Create a fresh set. Two engines never share tokens."""
        seed = seed or secrets.token_hex(6)
        return cls(
            self=f"__FP_SELF_{seed}__",
            functions=f"__FP_FUNCTIONS_{seed}__",
            data=f"__FP_DATA_{seed}__",
            binding=f"_fp_{seed}_registrars",
        )

    def tokens(self):
        return (self.self, self.functions, self.data)

    def as_dict(self) -> dict:
        return {"self": self.self, "functions": self.functions, "data": self.data}


class PlaceholderResolver:
    """Replaces placeholder tokens with registrar lookups."""

    def __init__(self, placeholders: PlaceholderSet):
        self.placeholders = placeholders

    def expressions(self, registrar_name: str) -> dict:
        base = f"{self.placeholders.binding}[{registrar_name!r}]"
        return {
            self.placeholders.self: base,
            self.placeholders.functions: f"{base}.functions",
            self.placeholders.data: f"{base}.data",
        }

    def resolve(self, text: str, registrar_name: str) -> str:
        for token, expression in self.expressions(registrar_name).items():
            text = text.replace(token, expression)
        return text
