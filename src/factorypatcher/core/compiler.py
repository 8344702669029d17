"""
Compiler - turns edited factory text back into a callable

The edited text is wrapped in a binding function whose parameters are
the placeholder binding name and the original factory's free variables:

    def _fp_<seed>_bind(_fp_<seed>_registrars, <freevars...>):
        <edited factory text>
        return <factory>

Calling the binding once yields the new factory. The text itself is only
parsed here, as part of compiling it; it is never edited structurally.

Backends:
- ExecCompiler: runs in the original factory's globals and registers the
  text in linecache under a synthetic label (readable tracebacks).
- IsolatedCompiler: runs in a copy of the globals, no linecache entry.
"""

import ast
import linecache
import types
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from ..errors import PatchCompileError


def _free_variables(base_factory: Optional[Callable]) -> Tuple[Tuple[str, ...], Tuple[Any, ...]]:
    code = getattr(base_factory, "__code__", None)
    closure = getattr(base_factory, "__closure__", None)
    if code is None or not closure:
        return (), ()
    values = []
    for name, cell in zip(code.co_freevars, closure):
        try:
            values.append(cell.cell_contents)
        except ValueError:
            raise PatchCompileError("<closure>", f"free variable {name!r} is unbound") from None
    return tuple(code.co_freevars), tuple(values)


def _factory_name(body: list, preferred: str) -> Optional[str]:
    defs = [node.name for node in body
            if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef))]
    if preferred in defs:
        return preferred
    return defs[-1] if defs else None


class Compiler(ABC):
    """Compile capability used by the ReplacementEngine."""

    def __init__(self, binding: str):
        self.binding = binding

    def compile(self, source: str, label: str, registrars: Mapping[str, Any],
                base_factory: Optional[Callable] = None) -> Callable:
        """
        Compile edited factory text into a callable.

        Args:
            source: Final factory text (placeholders already resolved)
            label: Synthetic filename shown in tracebacks
            registrars: Mapping the placeholder binding name refers to
            base_factory: Factory being replaced (globals, free variables, name)

        Returns:
            The new factory, carrying `__source__`

        Raises:
            PatchCompileError: on syntax errors or when no callable results
        """
        free_names, free_values = _free_variables(base_factory)
        if self.binding in free_names:
            # Text patched earlier already closes over the registrar binding,
            # which the binding parameter supplies
            kept = [(n, v) for n, v in zip(free_names, free_values) if n != self.binding]
            free_names = tuple(n for n, _ in kept)
            free_values = tuple(v for _, v in kept)
        preferred = getattr(base_factory, "__name__", "")
        code = self._build(source, label, free_names, preferred)
        namespace: Dict[str, Any] = {}
        try:
            exec(code, self.globals_for(base_factory), namespace)
            factory = namespace[self.bind_name](registrars, *free_values)
        except Exception as e:
            raise PatchCompileError(label, f"binding failed: {e!r}", source) from e
        if not callable(factory):
            raise PatchCompileError(label, f"result is not callable ({type(factory).__name__})", source)
        try:
            factory.__source__ = source
        except (AttributeError, TypeError):
            pass
        self.after_compile(source, label)
        return factory

    @property
    def bind_name(self) -> str:
        return f"{self.binding}_bind"

    def _build(self, source: str, label: str, free_names: Tuple[str, ...], preferred: str) -> types.CodeType:
        try:
            tree = ast.parse(source, filename=label, mode="exec")
        except SyntaxError as e:
            raise PatchCompileError(label, f"syntax error at line {e.lineno}: {e.msg}", source) from None

        body = tree.body
        target = _factory_name(body, preferred)
        if target is not None:
            result = ast.Name(id=target, ctx=ast.Load())
        elif len(body) == 1 and isinstance(body[0], ast.Expr):
            # Bare expression, e.g. a lambda
            result = body[0].value
            body = []
        else:
            raise PatchCompileError(label, "no function definition or expression found", source)

        params = ", ".join((self.binding,) + free_names)
        wrapper = ast.parse(f"def {self.bind_name}({params}):\n    pass\n").body[0]
        wrapper.body = body + [ast.Return(value=result)]
        module = ast.Module(body=[wrapper], type_ignores=[])
        ast.fix_missing_locations(module)
        try:
            return compile(module, label, "exec")
        except (SyntaxError, ValueError) as e:
            raise PatchCompileError(label, f"compile failed: {e}", source) from None

    @abstractmethod
    def globals_for(self, base_factory: Optional[Callable]) -> Dict[str, Any]:
        """Globals the compiled text executes in."""

    def after_compile(self, source: str, label: str):
        pass


class ExecCompiler(Compiler):
    """Runs in the factory's own module globals; registers source with linecache."""

    def globals_for(self, base_factory: Optional[Callable]) -> Dict[str, Any]:
        module_globals = getattr(base_factory, "__globals__", None)
        if module_globals is None:
            module_globals = {"__builtins__": __builtins__}
        return module_globals

    def after_compile(self, source: str, label: str):
        lines = source.splitlines(keepends=True)
        # mtime None keeps checkcache() from discarding the entry
        linecache.cache[label] = (len(source), None, lines, label)


class IsolatedCompiler(Compiler):
    """Runs in a shallow copy of the factory's globals; leaves linecache alone."""

    def globals_for(self, base_factory: Optional[Callable]) -> Dict[str, Any]:
        module_globals = getattr(base_factory, "__globals__", None) or {}
        isolated = dict(module_globals)
        isolated.setdefault("__builtins__", __builtins__)
        return isolated


def get_compiler(use_eval: bool, binding: str) -> Compiler:
    if use_eval:
        return ExecCompiler(binding)
    return IsolatedCompiler(binding)
