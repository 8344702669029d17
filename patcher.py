#!/usr/bin/env python3
"""patcher.py - offline dry-run CLI for FactoryPatcher.

Checks patch definitions against a bundle of module factory sources
before they are shipped to a live host runtime.

Usage:
    python patcher.py match <bundle.json> <patches.py>
    python patcher.py apply <bundle.json> <patches.py> [--module ID ...] [--run] [--show-source]

Output formats (append to any command):
    --format table    (default, human-readable)
    --format json     (machine-readable)

A bundle is a JSON object mapping module ids to factory source text.
A patches file is Python defining NAME and PATCHES (optionally DATA and
FUNCTIONS). PLACEHOLDERS, Patch, Replacement and regex are predefined
while it executes.
"""

import sys
import json
import logging
import argparse
from pathlib import Path
from typing import Any, Dict

# Add FactoryPatcher src to path
_src_dir = Path(__file__).parent / "src"
if str(_src_dir) not in sys.path:
    sys.path.insert(0, str(_src_dir))

from factorypatcher import EngineConfig, PatcherEngine, Patch, Replacement, regex
from factorypatcher.core.pattern_matcher import matches
from factorypatcher.runtime.host import ModuleRuntime
from factorypatcher.runtime.source_text import factory_source


def module_key(raw: str) -> Any:
    """JSON keys are strings; numeric ids become ints."""
    return int(raw) if raw.lstrip("-").isdigit() else raw


def load_bundle(path: str) -> Dict[Any, str]:
    """Load a bundle file. Exits on failure."""
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        print(f"ERROR: Failed to load bundle {path}: {e}", file=sys.stderr)
        sys.exit(1)
    if not isinstance(raw, dict):
        print(f"ERROR: Bundle {path} must be a JSON object", file=sys.stderr)
        sys.exit(1)
    return {module_key(k): v for k, v in raw.items()}


def load_patch_file(path: str, engine: PatcherEngine) -> Dict[str, Any]:
    """Execute a patches file and collect NAME / PATCHES / DATA / FUNCTIONS."""
    namespace = {
        "__name__": "factorypatcher_patches",
        "__file__": path,
        "PLACEHOLDERS": engine.placeholders,
        "Patch": Patch,
        "Replacement": Replacement,
        "regex": regex,
    }
    try:
        code = compile(Path(path).read_text(encoding="utf-8"), path, "exec")
        exec(code, namespace)
    except Exception as e:
        print(f"ERROR: Failed to load patches {path}: {e}", file=sys.stderr)
        sys.exit(1)
    if "PATCHES" not in namespace:
        print(f"ERROR: {path} does not define PATCHES", file=sys.stderr)
        sys.exit(1)
    return {
        "name": namespace.get("NAME", Path(path).stem),
        "patches": namespace["PATCHES"],
        "data": namespace.get("DATA"),
        "functions": namespace.get("FUNCTIONS"),
    }


def build_engine(args) -> PatcherEngine:
    return PatcherEngine(EngineConfig(
        target_type=ModuleRuntime,
        benchmark=args.benchmark,
        use_eval=not args.isolated,
    ))


def register_file(engine: PatcherEngine, path: str):
    loaded = load_patch_file(path, engine)
    try:
        return engine.register(loaded["name"], loaded["patches"],
                               data=loaded["data"], functions=loaded["functions"])
    except ValueError as e:
        print(f"ERROR: Invalid patch definition: {e}", file=sys.stderr)
        sys.exit(1)


# ═══════════════════════════════════════════════════════════════════════════════
# COMMANDS
# ═══════════════════════════════════════════════════════════════════════════════

def cmd_match(args):
    """Show which patches activate on which modules."""
    engine = build_engine(args)
    register_file(engine, args.patches)
    # Matching needs no live runtime
    engine.stop()
    bundle = load_bundle(args.bundle)

    rows = []
    for patch in engine.patches:
        hits = [mid for mid, source in bundle.items() if matches(source, patch)]
        rows.append({"patch": patch.describe(), "rules": len(patch.replacements), "modules": hits})

    if args.format == "json":
        print(json.dumps(rows, indent=2, default=str))
        return

    print(f"Bundle: {args.bundle}  |  Modules: {len(bundle)}  |  Patches: {len(rows)}\n")
    print("PATCHES")
    print("─" * 50)
    for row in rows:
        targets = ", ".join(str(m) for m in row["modules"]) or "(no match)"
        print(f"  {row['patch']}")
        print(f"      {row['rules']} rule(s) -> {targets}")
        if len(row["modules"]) > 1:
            print("      WARN: matches more than one module")


def cmd_apply(args):
    """Patch modules of a bundle through the full engine."""
    engine = build_engine(args)
    try:
        _apply(engine, args)
    finally:
        engine.stop()


def _apply(engine: PatcherEngine, args):
    register_file(engine, args.patches)
    bundle = load_bundle(args.bundle)

    runtime = ModuleRuntime()
    if not engine.is_runtime_detected:
        print("ERROR: Reference runtime was not detected", file=sys.stderr)
        sys.exit(1)
    try:
        runtime.load_bundle(bundle)
    except Exception as e:
        print(f"ERROR: Bundle does not compile: {e}", file=sys.stderr)
        sys.exit(1)

    targets = [module_key(m) for m in args.module] if args.module else list(bundle)
    failures = []
    for module_id in targets:
        if module_id not in bundle:
            print(f"ERROR: No module {module_id!r} in bundle", file=sys.stderr)
            sys.exit(1)
        if args.run:
            try:
                runtime(module_id)
            except Exception as e:
                failures.append({"module": module_id, "error": repr(e)})
        else:
            engine.patch_now(module_id)

    records = {mid: engine.get_module(mid) for mid in targets}
    if args.format == "json":
        print(json.dumps({
            "summary": engine.summary(),
            "modules": {
                str(mid): {
                    "patched": rec.changed,
                    "applied": rec.applied,
                    "source": factory_source(rec.current) if args.show_source else None,
                }
                for mid, rec in records.items() if rec is not None
            },
            "failures": failures,
            "audit": json.loads(engine.export_audit_log()),
        }, indent=2, default=str))
        return

    summary = engine.summary()
    print(f"Modules attempted: {summary['modules_attempted']}  |  "
          f"patched: {summary['modules_patched']}  |  patches: {summary['patches']}\n")
    print("AUDIT")
    print("─" * 50)
    for audit in engine.get_history(limit=len(engine.history)):
        print(f"  [{audit.module_id}] {audit.result.value:<18} {audit.rules_applied}/{audit.rules_total}  "
              f"{audit.patch}")
        for note in audit.notes:
            print(f"      {note}")
    for failure in failures:
        print(f"  [{failure['module']}] raised {failure['error']}")

    if args.show_source:
        for mid, rec in records.items():
            if rec is not None and rec.changed:
                print(f"\nMODULE {mid}")
                print("─" * 50)
                print(factory_source(rec.current))


# ═══════════════════════════════════════════════════════════════════════════════
# CLI SETUP
# ═══════════════════════════════════════════════════════════════════════════════

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="patcher",
        description="Dry-run FactoryPatcher patches against a bundle of module sources.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--format", choices=["table", "json"],
                        default="table", help="Output format (default: table)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--benchmark", action="store_true", help="Log per-rule timings")
    parser.add_argument("--isolated", action="store_true",
                        help="Compile into isolated globals (use_eval=False)")

    sub = parser.add_subparsers(dest="command", help="Command to run")

    # match
    p = sub.add_parser("match", help="List which patches activate on which modules")
    p.add_argument("bundle", help="Path to bundle JSON")
    p.add_argument("patches", help="Path to patches .py file")

    # apply
    p = sub.add_parser("apply", help="Patch modules and print the audit log")
    p.add_argument("bundle", help="Path to bundle JSON")
    p.add_argument("patches", help="Path to patches .py file")
    p.add_argument("--module", "-m", action="append", help="Module id (repeatable, default: all)")
    p.add_argument("--run", action="store_true", help="Execute modules through require()")
    p.add_argument("--show-source", action="store_true", help="Print patched source")

    return parser


def main():
    parser = build_parser()
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="[%(levelname)s] %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        sys.exit(0)

    commands = {
        "match": cmd_match,
        "apply": cmd_apply,
    }

    cmd_func = commands.get(args.command)
    if cmd_func:
        cmd_func(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
