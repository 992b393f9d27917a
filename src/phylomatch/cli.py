from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from . import __version__
from .config import Settings, load_settings


def _parse_str_list(raw: str | None) -> list[str] | None:
    if raw is None:
        return None
    return [x.strip() for x in raw.split(",") if x.strip()]


def _write_json_file(path: str | Path, payload: Any) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2, sort_keys=True)
        handle.write("\n")


def _emit_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def _settings(args: argparse.Namespace) -> Settings:
    settings = load_settings(args.config)
    return settings.updated(
        key_column=getattr(args, "key", None),
        tree_format=getattr(args, "tree_format", None),
        delimiter=getattr(args, "delimiter", None),
        ultrametric_rtol=getattr(args, "rtol", None),
        ultrametric_atol=getattr(args, "atol", None),
        required_columns=_parse_str_list(getattr(args, "columns", None)),
        timeout_sec=getattr(args, "timeout", None),
    )


def _add_common(sub: argparse.ArgumentParser, *, tree: bool = False, data: bool = False) -> None:
    sub.add_argument("--config", default=None, metavar="YAML", help="Settings file (YAML or JSON).")
    if tree:
        sub.add_argument("--tree", required=True, metavar="FILE")
        sub.add_argument("--tree-format", choices=["newick", "nexus"], default=None)
    if data:
        sub.add_argument("--data", required=True, metavar="CSV")
        sub.add_argument("--key", default=None, metavar="COLUMN", help="Column holding tip labels.")
        sub.add_argument("--delimiter", default=None)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="phylomatch",
        description="phylomatch: match trait tables to phylogenies before comparative model fitting.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # check
    check = subparsers.add_parser("check", help="Report whether a tree is rooted, binary and ultrametric.")
    _add_common(check, tree=True)
    check.add_argument("--rtol", type=float, default=None)
    check.add_argument("--atol", type=float, default=None)
    check.add_argument("--json", action="store_true")

    # reconcile
    rec = subparsers.add_parser("reconcile", help="Prune tree and filter/reorder data to shared taxa.")
    _add_common(rec, tree=True, data=True)
    rec.add_argument("--out-tree", required=True, metavar="FILE")
    rec.add_argument("--out-data", required=True, metavar="CSV")
    rec.add_argument("--mismatch-json", default=None, metavar="JSON")
    rec.add_argument("--manifest", default=None, metavar="JSON")
    rec.add_argument("--strict", action="store_true", help="Exit with status 1 when tree and data disagree.")
    rec.add_argument("--json", action="store_true")

    # complete
    complete = subparsers.add_parser("complete", help="Keep rows with no missing value in required columns.")
    complete.add_argument("--config", default=None, metavar="YAML")
    complete.add_argument("--data", required=True, metavar="CSV")
    complete.add_argument("--key", default=None, metavar="COLUMN")
    complete.add_argument("--delimiter", default=None)
    complete.add_argument("--columns", default=None, metavar="A,B,...")
    complete.add_argument("--out", required=True, metavar="CSV")
    complete.add_argument("--json", action="store_true")

    # ultrametric
    ultra = subparsers.add_parser(
        "ultrametric",
        help="Explicitly coerce a tree known to be ultrametric (rounding repair only).",
    )
    _add_common(ultra, tree=True)
    ultra.add_argument("--out", required=True, metavar="FILE")
    ultra.add_argument("--method", choices=["extend", "mean"], default="extend")
    ultra.add_argument("--max-relative-spread", type=float, default=None)

    # fit
    fit = subparsers.add_parser(
        "fit",
        help="Reconcile, then run an external fitting command with {tree} {data} {workdir} placeholders.",
    )
    _add_common(fit, tree=True, data=True)
    fit.add_argument("--workdir", required=True, metavar="DIR")
    fit.add_argument("--timeout", type=int, default=None, metavar="SEC")
    fit.add_argument("--json", action="store_true")
    fit.add_argument("fit_command", nargs=argparse.REMAINDER, metavar="-- CMD ...")
    return parser


def _load_pair_inputs(args: argparse.Namespace, settings: Settings):
    from .io import read_table, read_tree

    tree = read_tree(args.tree, settings.tree_format)
    data = read_table(
        args.data,
        settings.key_column,
        delimiter=settings.delimiter,
        na_values=settings.na_values,
    )
    return tree, data


def _cmd_check(args: argparse.Namespace) -> int:
    from .checks import check_tree
    from .io import read_tree

    settings = _settings(args)
    tree = read_tree(args.tree, settings.tree_format)
    health = check_tree(tree, rtol=settings.ultrametric_rtol, atol=settings.ultrametric_atol)
    if args.json:
        _emit_json(health.to_dict())
    else:
        print(health.render())
    return 0 if (health.is_rooted and health.is_binary and health.is_ultrametric) else 1


def _cmd_reconcile(args: argparse.Namespace) -> int:
    from .io import write_table, write_tree
    from .provenance import build_manifest
    from .reconcile import reconcile

    settings = _settings(args)
    tree, data = _load_pair_inputs(args, settings)
    report, pair = reconcile(tree, data, settings.key_column)

    out_tree = write_tree(pair.tree, args.out_tree, settings.tree_format)
    out_data = write_table(pair.data, args.out_data, delimiter=settings.delimiter)
    if args.mismatch_json:
        _write_json_file(args.mismatch_json, report.to_dict())
    if args.manifest:
        manifest = build_manifest(
            command="reconcile",
            argv=args._argv,
            inputs=[args.tree, args.data, args.config],
            outputs=[out_tree, out_data, args.mismatch_json],
            summary={"settings": settings.to_dict(), "mismatch": report.to_dict()},
        )
        _write_json_file(args.manifest, manifest)

    if args.json:
        _emit_json(report.to_dict())
    else:
        print(report.render())
        print(f"Reconciled tree: {out_tree.resolve()}")
        print(f"Reconciled data: {out_data.resolve()}")
    return 1 if (args.strict and report.has_mismatch) else 0


def _cmd_complete(args: argparse.Namespace) -> int:
    from .io import read_table, write_table
    from .reconcile import subset_complete

    settings = _settings(args)
    if not settings.required_columns:
        raise ValueError("No required columns given; use --columns or required_columns in --config.")
    data = read_table(
        args.data,
        settings.key_column,
        delimiter=settings.delimiter,
        na_values=settings.na_values,
    )
    subset, report = subset_complete(data, settings.required_columns, key_column=settings.key_column)
    out = write_table(subset, args.out, delimiter=settings.delimiter)
    if args.json:
        _emit_json(report.to_dict())
    else:
        print(report.render())
        print(f"Complete-case data: {out.resolve()}")
    return 0


def _cmd_ultrametric(args: argparse.Namespace) -> int:
    from .checks import check_tree, force_ultrametric
    from .io import read_tree, write_tree

    settings = _settings(args)
    tree = read_tree(args.tree, settings.tree_format)
    before = check_tree(tree, rtol=settings.ultrametric_rtol, atol=settings.ultrametric_atol)
    fixed = force_ultrametric(
        tree,
        method=args.method,
        max_relative_spread=args.max_relative_spread,
    )
    out = write_tree(fixed, args.out, settings.tree_format)
    print(
        f"Root-to-tip range before: [{before.min_depth:.12g}, {before.max_depth:.12g}] "
        f"({before.n_tips} tips)"
    )
    print(f"Ultrametric tree ({args.method}): {out.resolve()}")
    return 0


def _cmd_fit(args: argparse.Namespace) -> int:
    from .external import run_external_fit
    from .reconcile import reconcile

    command = list(args.fit_command)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        raise ValueError("No fitting command given; pass it after '--'.")

    settings = _settings(args)
    tree, data = _load_pair_inputs(args, settings)
    report, pair = reconcile(tree, data, settings.key_column)
    if not args.json:
        print(report.render())
    result = run_external_fit(
        pair,
        command,
        args.workdir,
        timeout_sec=settings.timeout_sec,
        tree_format=settings.tree_format,
    )
    if args.json:
        _emit_json({"mismatch": report.to_dict(), "fit": result.to_dict()})
    else:
        print(result.render())
    return 0 if result.ok else 1


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    args._argv = list(argv if argv is not None else sys.argv[1:])
    try:
        if args.command == "check":
            return _cmd_check(args)
        if args.command == "reconcile":
            return _cmd_reconcile(args)
        if args.command == "complete":
            return _cmd_complete(args)
        if args.command == "ultrametric":
            return _cmd_ultrametric(args)
        if args.command == "fit":
            return _cmd_fit(args)
    except (ValueError, KeyError, OSError) as exc:
        message = exc.args[0] if isinstance(exc, KeyError) and exc.args else exc
        parser.exit(status=2, message=f"error: {message}\n")
    parser.exit(status=2, message="error: unknown command\n")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
