"""
Replacement Engine - applies ordered find/replace rules to factory source

Rules are chained: rule i+1 runs on the text produced by rule i. A rule
that substitutes nothing is logged and skipped. A patch where no rule
substituted anything is treated as a no-op failure: the base factory is
kept, so a broken pattern never ships a module that claims to be patched
but behaves exactly like the original.
"""

import logging
import time
from typing import Any, Callable, List, Mapping, Optional, Tuple

from ..errors import PatchCompileError
from .compiler import Compiler
from .patch_types import PatchOutcome, Replacement, as_pattern, is_literal
from .placeholders import PlaceholderResolver

logger = logging.getLogger(__name__)


def patch_label(registrar_name: str, module_id: Any) -> str:
    """Synthetic filename for patched factory text."""
    return f"<factorypatcher:{registrar_name or 'anonymous'}:{module_id}>"


def apply_rule(text: str, rule: Replacement) -> Tuple[str, int]:
    """
    Apply one replacement rule.

    Returns:
        (new_text, number_of_substitutions)
    """
    count = 0 if rule.replace_all else 1
    replace = rule.replace

    if is_literal(rule.match):
        occurrences = text.count(rule.match)
        if occurrences == 0:
            return text, 0
        if not callable(replace):
            limit = -1 if rule.replace_all else 1
            return text.replace(rule.match, replace, limit), (occurrences if rule.replace_all else 1)
        pieces = text.split(rule.match) if rule.replace_all else text.split(rule.match, 1)
        out = [pieces[0]]
        for piece in pieces[1:]:
            out.append(str(replace(rule.match)))
            out.append(piece)
        return "".join(out), len(pieces) - 1

    pattern = as_pattern(rule.match)
    if callable(replace):
        def substitute(m):
            return str(replace(m.group(0), *m.groups()))
        return pattern.subn(substitute, text, count=count)
    return pattern.subn(replace, text, count=count)


class ReplacementEngine:
    """Edits factory text and recompiles it through a pluggable Compiler."""

    def __init__(self, compiler: Compiler, resolver: PlaceholderResolver,
                 registrars: Mapping[str, Any], benchmark: bool = False):
        self.compiler = compiler
        self.resolver = resolver
        self.registrars = registrars
        self.benchmark = benchmark

    def edit(self, source_text: str, replacements: List[Replacement],
             module_id: Any = None) -> Tuple[str, int]:
        """
        Run every rule over the cumulative text.

        Returns:
            (edited_text, rules_that_substituted)
        """
        text = source_text
        applied = 0
        total = len(replacements)
        for i, rule in enumerate(replacements, start=1):
            started = time.perf_counter() if self.benchmark else 0.0
            text, substitutions = apply_rule(text, rule)
            if substitutions:
                applied += 1
            else:
                logger.warning(f"Replacement {i}/{total} skipped (no match) in module {module_id}")
            if self.benchmark:
                elapsed = (time.perf_counter() - started) * 1000
                state = "applied" if substitutions else "skipped"
                logger.debug(f"Replacement {i}/{total} {state} in {elapsed:.2f}ms")
        return text, applied

    def apply(self, source_text: str, replacements: List[Replacement], module_id: Any,
              registrar_name: str, base_factory: Optional[Callable] = None) -> PatchOutcome:
        """
        Edit, resolve placeholders and recompile.

        Args:
            source_text: Current (possibly already patched) factory text
            replacements: Ordered rules of one patch
            module_id: Module being patched (logging and label)
            registrar_name: Owner of the patch, target of placeholder tokens
            base_factory: Factory to keep on failure

        Returns:
            PatchOutcome; on failure `factory` is `base_factory` and
            `source` is `source_text`
        """
        started = time.perf_counter() if self.benchmark else 0.0
        outcome = PatchOutcome(
            factory=base_factory,
            source=source_text,
            success=False,
            rules_total=len(replacements),
        )

        try:
            edited, outcome.rules_applied = self.edit(source_text, replacements, module_id)
        except Exception as e:
            # A replace callback raised or a template referenced a missing group
            logger.error(f"Replacement rules raised in module {module_id}: {e!r}")
            outcome.error = repr(e)
            return outcome

        if outcome.rules_applied == 0:
            logger.warning(f"No replacements occurred in module {module_id}, keeping original factory")
            return outcome

        final = self.resolver.resolve(edited, registrar_name)
        label = patch_label(registrar_name, module_id)
        try:
            factory = self.compiler.compile(final, label, self.registrars, base_factory)
        except PatchCompileError as e:
            logger.error(f"Replacement based patching failed for module {module_id}: {e}")
            logger.debug(f"Patched code for module {module_id}:\n{final}")
            outcome.error = str(e)
            return outcome

        outcome.factory = factory
        outcome.source = final
        outcome.success = True
        if self.benchmark:
            elapsed = (time.perf_counter() - started) * 1000
            logger.debug(f"{outcome.rules_applied} replacement(s) applied to module {module_id} in {elapsed:.2f}ms")
        return outcome
