#!/usr/bin/env python3
"""turtle_scad.py

Compiles turtle-graphics pen strokes into OpenSCAD polygon() outlines.

Key features:
- JSON-based command list input.
- Turtle state tracker with pen width and end-cap resolution.
- Stroke outliner: faceted round end caps, mitered joins.
- Wrapper blocks (e.g. linear_extrude) around emitted polygons.

Run:
  python turtle_scad.py render drawing.json output.scad
  python turtle_scad.py validate drawing.json
  python turtle_scad.py --help
"""

from __future__ import annotations

import argparse
import contextlib
import json
import logging
import math
import os
import sys
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any, cast

Point = tuple[float, float]

logger = logging.getLogger(__name__)

DEFAULT_PEN_SIZE = 1.0
DEFAULT_END_CAP_SIDES = 60
DEFAULT_PRECISION = 6

# Relative tolerance on the line-intersection denominator (sine of the angle
# between the two lines).
_PARALLEL_TOL = 1e-9


# -------------------------
# Errors / Validation
# -------------------------


class ConfigError(ValueError):
    pass


class StrokeError(RuntimeError):
    """A finished stroke path broke the points == headings + 1 invariant."""


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigError(msg)


def _is_number(x: Any) -> bool:
    return isinstance(x, (int, float)) and not isinstance(x, bool)


def _as_float(x: Any, path: str) -> float:
    _require(_is_number(x), f"{path} must be a number")
    return float(x)


def _as_int(x: Any, path: str) -> int:
    _require(
        isinstance(x, int) and not isinstance(x, bool), f"{path} must be an integer"
    )
    return int(x)


def _as_str(x: Any, path: str) -> str:
    _require(isinstance(x, str), f"{path} must be a string")
    return cast(str, x)


def _as_dict(x: Any, path: str) -> dict[str, Any]:
    _require(isinstance(x, dict), f"{path} must be an object")
    return cast(dict[str, Any], x)


def _as_list(x: Any, path: str) -> list[Any]:
    _require(isinstance(x, list), f"{path} must be an array")
    return cast(list[Any], x)


# -------------------------
# Stroke model
# -------------------------


@dataclass(frozen=True)
class StrokePoint:
    x: float
    y: float
    thickness: float
    cap_facets: int


@dataclass
class StrokePath:
    """Centerline of one pen stroke.

    ``headings[i]`` is the direction of travel, in degrees, from ``points[i]``
    to ``points[i + 1]``.
    """

    points: list[StrokePoint]
    headings: list[float] = field(default_factory=list)

    def extend(self, point: StrokePoint, heading: float) -> None:
        self.points.append(point)
        self.headings.append(heading)

    def check(self) -> None:
        if not self.points or len(self.points) != len(self.headings) + 1:
            raise StrokeError(
                f"Bad stroke path: points={len(self.points)} "
                f"headings={len(self.headings)}"
            )


@dataclass(frozen=True)
class Polygon:
    """Closed outline of a stroke, as runs of vertices.

    The runs concatenate into one open, clockwise vertex list. A run boundary
    only marks where a writer breaks the line.
    """

    runs: tuple[tuple[Point, ...], ...]

    @property
    def points(self) -> list[Point]:
        return [p for run in self.runs for p in run]

    def __len__(self) -> int:
        return sum(len(run) for run in self.runs)


# -------------------------
# Stroke outliner
# -------------------------


def _deg_cos(deg: float) -> float:
    return math.cos(math.radians(deg))


def _deg_sin(deg: float) -> float:
    return math.sin(math.radians(deg))


def _offset(p: StrokePoint, heading_deg: float) -> Point:
    r = p.thickness / 2
    return (p.x + r * _deg_cos(heading_deg), p.y + r * _deg_sin(heading_deg))


def line_intersection(p1: Point, p2: Point, p3: Point, p4: Point) -> Point | None:
    """Intersect the line through p1, p2 with the line through p3, p4.

    Returns None for parallel lines and for zero-length segments.
    """
    x1, y1 = p1
    x2, y2 = p2
    x3, y3 = p3
    x4, y4 = p4
    denom = (x1 - x2) * (y3 - y4) - (y1 - y2) * (x3 - x4)
    scale = math.hypot(x1 - x2, y1 - y2) * math.hypot(x3 - x4, y3 - y4)
    if abs(denom) <= _PARALLEL_TOL * scale:
        return None
    a = x1 * y2 - y1 * x2
    b = x3 * y4 - y3 * x4
    x = (a * (x3 - x4) - (x1 - x2) * b) / denom
    y = (a * (y3 - y4) - (y1 - y2) * b) / denom
    return (x, y)


def join_vertex(path: StrokePath, i: int, d: int) -> Point:
    """Outline vertex where the pen strokes meeting at ``points[i]`` join.

    ``d`` is +1 while tracing the left edge (ascending indices) and -1 while
    tracing the right edge back to the start.
    """
    point = path.points[i]
    if d == 1:
        heading_prev, heading_next = path.headings[i - 1], path.headings[i]
    else:
        heading_prev, heading_next = path.headings[i], path.headings[i - 1]

    edge_prev = heading_prev + 90 * d
    if heading_prev == heading_next:
        # Both edges lie on the same offset line.
        return _offset(point, edge_prev)

    # Intersect the edge of the current pen stroke (1-2) with the edge of
    # the next one (3-4):
    #
    #       / .  4
    #   ----    /
    #   .   .  /
    #  1------x2
    #        3
    #
    edge_next = heading_next + 90 * d
    hit = line_intersection(
        _offset(path.points[i - d], edge_prev),
        _offset(point, edge_prev),
        _offset(point, edge_next),
        _offset(path.points[i + d], edge_next),
    )
    if hit is None:
        logger.debug("parallel stroke edges at point %d, joining as collinear", i)
        return _offset(point, edge_prev)
    return hit


def _half_cap(center: StrokePoint, start_deg: float) -> tuple[Point, ...]:
    step = 360 / center.cap_facets
    return tuple(
        _offset(center, start_deg - j * step)
        for j in range(center.cap_facets // 2 + 1)
    )


def outline_stroke(path: StrokePath) -> Polygon:
    """Trace the boundary of a stroke clockwise.

    Begin cap, left edge, end cap, then the right edge back towards the start.
    A single-point stroke is a full circle of ``cap_facets`` vertices.
    """
    path.check()
    points = path.points

    if len(points) == 1:
        p = points[0]
        dot = tuple(
            _offset(p, j * 360 / p.cap_facets) for j in range(p.cap_facets)
        )
        return Polygon(runs=(dot,))

    last = len(points) - 1
    begin_cap = _half_cap(points[0], path.headings[0] - 90)
    left_edge = tuple(join_vertex(path, i, 1) for i in range(1, last))
    end_cap = _half_cap(points[last], path.headings[last - 1] + 90)
    right_edge = tuple(join_vertex(path, i, -1) for i in range(last - 1, 0, -1))

    runs = tuple(r for r in (begin_cap, left_edge, end_cap, right_edge) if r)
    return Polygon(runs=runs)


# -------------------------
# Turtle state tracker
# -------------------------


class Turtle:
    """Pen-plotter style turtle that turns each pen-down stroke into a Polygon.

    Finished polygons go to ``on_polygon``; by default they are collected in
    ``self.polygons``.
    """

    def __init__(
        self,
        on_polygon: Callable[[Polygon], None] | None = None,
        *,
        pen_size: float = DEFAULT_PEN_SIZE,
        end_cap_sides: int = DEFAULT_END_CAP_SIDES,
    ) -> None:
        self.polygons: list[Polygon] = []
        self._on_polygon = (
            on_polygon if on_polygon is not None else self.polygons.append
        )
        self._x = 0.0
        self._y = 0.0
        self._heading = 0.0
        self._path: StrokePath | None = None
        self._pen_size = DEFAULT_PEN_SIZE
        self._end_cap_sides = DEFAULT_END_CAP_SIDES
        self.pensize(pen_size)
        self.end_cap_sides(end_cap_sides)

    def _point(self) -> StrokePoint:
        return StrokePoint(self._x, self._y, self._pen_size, self._end_cap_sides)

    def _move(self, x: float, y: float, heading: float) -> None:
        self._x = x
        self._y = y
        if self._path is not None:
            self._path.extend(self._point(), heading)

    # pen

    def pendown(self) -> None:
        if self._path is None:
            self._path = StrokePath(points=[self._point()])

    pd = down = pendown

    def penup(self) -> None:
        if self._path is None:
            return
        path, self._path = self._path, None
        path.check()
        polygon = outline_stroke(path)
        logger.debug(
            "stroke finished: %d points -> %d vertices", len(path.points), len(polygon)
        )
        self._on_polygon(polygon)

    pu = up = penup

    def isdown(self) -> bool:
        return self._path is not None

    def pensize(self, value: float | None = None) -> float | None:
        if value is None:
            return self._pen_size
        size = _as_float(value, "pensize")
        _require(size > 0, f"Invalid pensize value: {value}")
        self._pen_size = size
        return None

    width = pensize

    def end_cap_sides(self, value: int | None = None) -> int | None:
        if value is None:
            return self._end_cap_sides
        sides = _as_int(value, "end_cap_sides")
        _require(
            sides >= 2 and sides % 2 == 0, f"Invalid end_cap_sides value: {value}"
        )
        self._end_cap_sides = sides
        return None

    # motion

    def forward(self, distance: float) -> None:
        self._move(
            self._x + distance * _deg_cos(self._heading),
            self._y + distance * _deg_sin(self._heading),
            self._heading,
        )

    def _turn(self, angle: float, sign: int) -> None:
        self._heading += sign * angle

    def left(self, angle: float) -> None:
        self._turn(angle, 1)

    lt = left

    def right(self, angle: float) -> None:
        self._turn(angle, -1)

    rt = right

    def setpos(self, x: float, y: float) -> None:
        # The implied segment gets its own heading; the turtle's is untouched.
        heading = math.degrees(math.atan2(y - self._y, x - self._x))
        self._move(x, y, heading)

    setposition = setpos

    # queries

    def heading(self) -> float:
        return self._heading

    def position(self) -> Point:
        return (self._x, self._y)

    @property
    def path(self) -> StrokePath | None:
        return self._path


# -------------------------
# OpenSCAD writing
# -------------------------


def format_float(n: float, precision: int = DEFAULT_PRECISION) -> str:
    s = f"{n:.{precision}f}"
    if "." in s:
        s = s.rstrip("0").rstrip(".")
    if s == "-0":
        s = "0"
    return s


class ScadWriter:
    """Accumulates OpenSCAD source for polygons and the blocks around them."""

    def __init__(self, precision: int = DEFAULT_PRECISION, indent: str = "\t") -> None:
        self.precision = precision
        self.polygons: list[Polygon] = []
        self._indent = indent
        self._depth = 0
        self._lines: list[str] = []

    def _pad(self, extra: int = 0) -> str:
        return self._indent * (self._depth + extra)

    def _vertex(self, p: Point) -> str:
        x, y = p
        return f"[{format_float(x, self.precision)},{format_float(y, self.precision)}],"

    def polygon(self, polygon: Polygon) -> None:
        self.polygons.append(polygon)
        self._lines.append(f"{self._pad()}polygon(points = [")
        for run in polygon.runs:
            self._lines.append(self._pad(1) + " ".join(self._vertex(p) for p in run))
        self._lines.append(f"{self._pad()}]);")

    def begin_block(self, wrapper: str) -> None:
        self._lines.append(f"{self._pad()}{wrapper} {{")
        self._depth += 1

    def end_block(self) -> None:
        if self._depth == 0:
            raise RuntimeError("end_block() called without begin_block()")
        self._depth -= 1
        self._lines.append(f"{self._pad()}}}")

    @contextlib.contextmanager
    def block(self, wrapper: str) -> Iterator[None]:
        self.begin_block(wrapper)
        yield
        self.end_block()

    def getvalue(self) -> str:
        return "".join(line + "\n" for line in self._lines)


# -------------------------
# Command front end
# -------------------------


_ALIASES = {
    "pd": "pendown",
    "down": "pendown",
    "pu": "penup",
    "up": "penup",
    "width": "pensize",
    "lt": "left",
    "rt": "right",
    "setposition": "setpos",
}


def run_commands(
    commands: Iterable[Any],
    turtle: Turtle,
    writer: ScadWriter,
    *,
    path: str = "commands",
) -> None:
    """Drive ``turtle`` with a list of JSON command objects.

    Supported command types:
      - {"type":"pendown"} / {"type":"penup"}
      - {"type":"pensize", "width": <number>}
      - {"type":"end_cap_sides", "sides": <even integer >= 2>}
      - {"type":"forward", "distance": <number>}
      - {"type":"left"|"right", "angle": <degrees>}
      - {"type":"setpos", "x": <number>, "y": <number>}
      - {"type":"wrap", "wrapper": <scad text>, "commands": [...]}

    Aliases: pd, down, pu, up, width, lt, rt, setposition.
    """
    for n, raw in enumerate(commands):
        where = f"{path}[{n}]"
        cmd = _as_dict(raw, where)
        ctype = _as_str(cmd.get("type"), f"{where}.type")
        ctype = _ALIASES.get(ctype, ctype)

        if ctype == "pendown":
            turtle.pendown()
            continue

        if ctype == "penup":
            turtle.penup()
            continue

        if ctype == "pensize":
            try:
                turtle.pensize(_as_float(cmd.get("width"), f"{where}.width"))
            except ConfigError as e:
                raise ConfigError(f"{where}: {e}") from e
            continue

        if ctype == "end_cap_sides":
            try:
                turtle.end_cap_sides(_as_int(cmd.get("sides"), f"{where}.sides"))
            except ConfigError as e:
                raise ConfigError(f"{where}: {e}") from e
            continue

        if ctype == "forward":
            turtle.forward(_as_float(cmd.get("distance"), f"{where}.distance"))
            continue

        if ctype == "left":
            turtle.left(_as_float(cmd.get("angle"), f"{where}.angle"))
            continue

        if ctype == "right":
            turtle.right(_as_float(cmd.get("angle"), f"{where}.angle"))
            continue

        if ctype == "setpos":
            turtle.setpos(
                _as_float(cmd.get("x"), f"{where}.x"),
                _as_float(cmd.get("y"), f"{where}.y"),
            )
            continue

        if ctype == "wrap":
            wrapper = _as_str(cmd.get("wrapper"), f"{where}.wrapper")
            inner = _as_list(cmd.get("commands", []), f"{where}.commands")
            with writer.block(wrapper):
                run_commands(inner, turtle, writer, path=f"{where}.commands")
            continue

        raise ConfigError(f"Unknown command type '{ctype}' at {where}")


# -------------------------
# Config parsing
# -------------------------


@dataclass(frozen=True)
class DrawingConfig:
    name: str
    commands: list[dict[str, Any]]
    pen_size: float
    end_cap_sides: int
    precision: int


def parse_config(obj: dict[str, Any]) -> DrawingConfig:
    obj = _as_dict(obj, "root")

    name = _as_str(obj.get("name", "Drawing"), "name")

    turtle = _as_dict(obj.get("turtle", {}), "turtle")
    pen_size = _as_float(turtle.get("pen_size", DEFAULT_PEN_SIZE), "turtle.pen_size")
    _require(pen_size > 0, "turtle.pen_size must be > 0")
    end_cap_sides = _as_int(
        turtle.get("end_cap_sides", DEFAULT_END_CAP_SIDES), "turtle.end_cap_sides"
    )
    _require(
        end_cap_sides >= 2 and end_cap_sides % 2 == 0,
        "turtle.end_cap_sides must be an even integer >= 2",
    )

    scad = _as_dict(obj.get("scad", {}), "scad")
    precision = _as_int(scad.get("precision", DEFAULT_PRECISION), "scad.precision")
    _require(0 <= precision <= 10, "scad.precision must be between 0 and 10")

    _require("commands" in obj, "commands is required")
    commands_list = _as_list(obj["commands"], "commands")
    commands = [_as_dict(c, f"commands[{i}]") for i, c in enumerate(commands_list)]

    return DrawingConfig(
        name=name,
        commands=commands,
        pen_size=pen_size,
        end_cap_sides=end_cap_sides,
        precision=precision,
    )


def load_json(path: str) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        try:
            return cast(dict[str, Any], json.load(f))
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e


def compile_drawing(cfg: DrawingConfig) -> ScadWriter:
    writer = ScadWriter(precision=cfg.precision)
    turtle = Turtle(
        writer.polygon, pen_size=cfg.pen_size, end_cap_sides=cfg.end_cap_sides
    )
    run_commands(cfg.commands, turtle, writer)
    if turtle.isdown():
        logger.warning(
            "%s: pen still down after the last command, unfinished stroke dropped",
            cfg.name,
        )
    return writer


def _ensure_parent_dir(path: str) -> None:
    os.makedirs(os.path.dirname(os.path.abspath(path)) or ".", exist_ok=True)


# -------------------------
# CLI / Help
# -------------------------

HELP_EPILOG = r"""
INPUT JSON SYNTAX

  name: string (optional)
      A human-readable title, used in log messages and the validate summary.

  turtle: object (optional)
    turtle.pen_size: number > 0 (default 1)
        Initial pen width.
    turtle.end_cap_sides: even integer >= 2 (default 60)
        Initial number of facets of a full round end cap.

  scad: object (optional)
    scad.precision: integer 0..10 (default 6)
        Decimal places of emitted coordinates (trailing zeros are stripped).

  commands: array of command objects (required)

    { "type": "pendown" }                 aliases: pd, down
    { "type": "penup" }                   aliases: pu, up
        A pen-down/pen-up cycle produces one polygon() on pen up.
    { "type": "pensize", "width": 2 }     alias: width
    { "type": "end_cap_sides", "sides": 8 }
    { "type": "forward", "distance": 10 }
        Negative distances move backwards.
    { "type": "left", "angle": 90 }       alias: lt
    { "type": "right", "angle": 90 }      alias: rt
        Heading is in degrees; 0 = +X, counter-clockwise positive.
    { "type": "setpos", "x": 1, "y": 2 }  alias: setposition
        Moves in a straight line; the turtle heading is unchanged.
    { "type": "wrap", "wrapper": "linear_extrude(height = 2)", "commands": [...] }
        Wraps every polygon produced by the nested commands in
        "<wrapper> { ... }".

Example

    {
      "turtle": {"pen_size": 2, "end_cap_sides": 8},
      "commands": [
        {"type": "pendown"},
        {"type": "forward", "distance": 10},
        {"type": "left", "angle": 90},
        {"type": "forward", "distance": 10},
        {"type": "penup"}
      ]
    }
"""


def build_argparser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="turtle_scad.py",
        description="Compile turtle-graphics strokes into OpenSCAD polygons.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=HELP_EPILOG,
    )
    p.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging."
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    pr = sub.add_parser(
        "render",
        help="Compile a JSON drawing into OpenSCAD source.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    pr.add_argument("config", help="Path to the input JSON drawing.")
    pr.add_argument(
        "output",
        nargs="?",
        default="-",
        help="Path to write the OpenSCAD output (default: stdout).",
    )

    pv = sub.add_parser(
        "validate",
        help="Validate a JSON drawing and print a brief summary.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    pv.add_argument("config", help="Path to the input JSON drawing.")

    return p


# -------------------------
# Commands
# -------------------------


def cmd_render(config_path: str, output_path: str) -> None:
    cfg = parse_config(load_json(config_path))
    writer = compile_drawing(cfg)
    text = writer.getvalue()

    if output_path == "-":
        sys.stdout.write(text)
        return

    _ensure_parent_dir(output_path)
    with open(output_path, "w", encoding="utf-8") as f:
        f.write(text)
    logger.info("wrote %d polygons to %s", len(writer.polygons), output_path)


def cmd_validate(config_path: str) -> None:
    cfg = parse_config(load_json(config_path))
    writer = compile_drawing(cfg)

    print(f"name: {cfg.name}")
    print(f"commands: {len(cfg.commands)}")
    print(f"turtle: pen_size={cfg.pen_size} end_cap_sides={cfg.end_cap_sides}")
    print(f"scad: precision={cfg.precision}")
    print(f"polygons: {len(writer.polygons)}")
    print(f"vertices: {sum(len(p) for p in writer.polygons)}")
    if not writer.polygons:
        print("warning: drawing produces no polygons")


def main(argv: list[str] | None = None) -> int:
    ap = build_argparser()
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )

    try:
        if args.cmd == "render":
            cmd_render(args.config, args.output)
        elif args.cmd == "validate":
            cmd_validate(args.config)
        else:
            raise AssertionError("unreachable")
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 2
    except OSError as e:
        print(f"File error: {e}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
