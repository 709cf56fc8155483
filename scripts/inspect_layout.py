#!/usr/bin/env python3
"""Load a GDS layout, flatten one root cell and answer point picks."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Tuple

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from gdsview import LayoutError, LoaderConfig, ViewerSession

logger = logging.getLogger("inspect_layout")


def _parse_point(text: str) -> Tuple[float, float]:
    try:
        x, y = (float(part) for part in text.split(","))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Expected X,Y but got {text!r}") from exc
    return x, y


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Flatten a GDS layout and report layers, roots and picks"
    )
    parser.add_argument("--gds", required=True, help="Path to input GDSII file")
    parser.add_argument(
        "--root", default=None, help="Structure to flatten (default: first root)"
    )
    parser.add_argument(
        "--list-roots", action="store_true", help="Only list root structures"
    )
    parser.add_argument(
        "--pick",
        type=_parse_point,
        action="append",
        default=[],
        metavar="X,Y",
        help="World point to pick (repeatable)",
    )
    parser.add_argument(
        "--chunk-size",
        type=int,
        default=100,
        help="Elements processed between progress reports",
    )
    parser.add_argument("--report", default=None, help="Write a JSON report here")
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logs"
    )
    return parser


def _write_json(path: Path, payload: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    session = ViewerSession(LoaderConfig(chunk_size=max(1, int(args.chunk_size))))
    started = time.perf_counter()
    try:
        for progress in session.load(args.gds):
            logger.info("%s (%.0f%%)", progress.phase, progress.percent)
        store = session.store
        roots = session.roots()

        if args.list_roots:
            for handle in roots:
                print(store.definition(handle).name)
            return 0

        session.select_root(args.root)
    except LayoutError as exc:
        logger.error("%s", exc)
        return 1
    elapsed = time.perf_counter() - started

    report = session.report()
    print(f"Roots: {', '.join(report['roots'])}")
    print(f"Selected root: {report['selected_root']}")
    print(f"Shape instances: {report['counts']['shape_instances']}")
    kinds = report["shape_kinds"]
    print(f"Shape definitions: {kinds['polygon']} polygons, {kinds['path']} paths")
    print(f"World bounds: {report['world_bounds']}")
    for layer in report["layers"]:
        print(
            f"Layer {layer['index']}: {layer['shape_instances']} shapes, "
            f"{layer['triangles']} triangles, bounds {layer['bounds']}"
        )

    picks = []
    for x, y in args.pick:
        hit = session.pick(x, y)
        if hit is None:
            print(f"Pick ({x:g}, {y:g}): none")
            picks.append({"point": [x, y], "hit": None})
            continue
        shape = store.shape_instance(hit)
        owner = store.cell_instance(shape.owning_instance)
        cell_name = store.definition(owner.definition).name
        print(f"Pick ({x:g}, {y:g}): shape {hit} on layer {shape.layer_index_snapshot} in '{cell_name}'")
        picks.append(
            {"point": [x, y], "hit": int(hit), "layer": shape.layer_index_snapshot, "cell": cell_name}
        )

    if args.report:
        report["elapsed_s"] = round(elapsed, 3)
        report["picks"] = picks
        _write_json(Path(args.report), report)
        print(f"Report: {args.report}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
