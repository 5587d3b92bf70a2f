#!/usr/bin/env python3
"""lsys_svg.py

Lindenmayer System interpreter that lays out fractal curves and plants as
pages of SVG.

An L-system is a start string plus a set of rewriting rules. Each character
is either the name of a rule or one of the action characters:

  F  move forward one unit, drawing a line
  f  move forward one unit without drawing
  +  turn left by the turning angle
  -  turn right by the turning angle
  |  reverse direction (turn by 180 degrees)
  [  push the drawing state (direction and position)
  ]  pop the drawing state

Key features:
- Versioned JSON catalog of named L-systems; malformed entries are skipped.
- Post rules that map abstract non-terminals onto drawing actions.
- Turtle interpreter producing relative move/line actions and a bounding box.
- Area-matched fit of each shape into a named page layout box.
- Document -> page -> fragment output, enforced by a small state machine.

Run:
  python lsys_svg.py render example/lsys_examples.json lsys.svg
  python lsys_svg.py render example/lsys_examples.json dragon.svg --title dragon
  python lsys_svg.py validate example/lsys_examples.json
  python lsys_svg.py --help
"""

from __future__ import annotations

import argparse
import json
import logging
import math
import os
import sys
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, BinaryIO, Union, cast

LOGGER = logging.getLogger(__name__)

BBox = tuple[float, float, float, float]

# all possible actions; every other symbol is a non-terminal
ACTIONS = "Ff+-|[]"
_ACTION_SET = frozenset(ACTIONS)

DEFAULT_ORDERS: tuple[int, ...] = (1, 2, 3, 6)


# -------------------------
# Errors / Validation
# -------------------------


class ConfigError(ValueError):
    pass


class ActionError(ValueError):
    """An action string contains something the turtle cannot draw."""


class StackUnderflowError(ActionError):
    pass


class DocumentStateError(RuntimeError):
    pass


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigError(msg)


def _as_float(x: Any, path: str) -> float:
    _require(
        isinstance(x, (int, float))
        and not isinstance(x, bool)
        and math.isfinite(x),
        f"{path} must be a finite number",
    )
    return float(x)


def _as_int(x: Any, path: str) -> int:
    _require(
        isinstance(x, int) and not isinstance(x, bool), f"{path} must be an integer"
    )
    return int(x)


def _as_str(x: Any, path: str) -> str:
    _require(isinstance(x, str), f"{path} must be a string")
    return cast(str, x)


def _as_list(x: Any, path: str) -> list[Any]:
    _require(isinstance(x, list), f"{path} must be an array")
    return cast(list[Any], x)


def _as_dict(x: Any, path: str) -> dict[str, Any]:
    _require(isinstance(x, dict), f"{path} must be an object")
    return cast(dict[str, Any], x)


def _reject_unknown(obj: dict[str, Any], known: Iterable[str], path: str) -> None:
    unknown = sorted(set(obj) - set(known))
    _require(not unknown, f"{path} has unknown keys: {', '.join(unknown)}")


# -------------------------
# Page configuration
# -------------------------


@dataclass(frozen=True)
class PageConfig:
    """Tunable page parameters, constructed once per render.

    Lengths are inches, font sizes are points.
    """

    linewidth: float = 0.02
    pagewidth: float = 8.5
    pageheight: float = 11.0
    titlesize: float = 30.0
    attrsize: float = 12.0


_PAGE_KEYS = ("linewidth", "pagewidth", "pageheight", "titlesize", "attrsize")


def parse_page_config(obj: dict[str, Any]) -> PageConfig:
    obj = _as_dict(obj, "config")
    _reject_unknown(obj, _PAGE_KEYS, "config")

    defaults = PageConfig()
    values: dict[str, float] = {}
    for key in _PAGE_KEYS:
        v = _as_float(obj.get(key, getattr(defaults, key)), f"config.{key}")
        _require(v > 0, f"config.{key} must be > 0")
        values[key] = v
    return PageConfig(**values)


def load_json(path: str) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        try:
            return _as_dict(json.load(f), path)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e


def load_page_config(path: str | None) -> PageConfig:
    if path is None:
        return PageConfig()
    return parse_page_config(load_json(path))


# -------------------------
# Grammar model
# -------------------------


@dataclass(frozen=True)
class LSys:
    title: str
    start: str
    angle: float
    rules: Mapping[str, str] = field(default_factory=dict)
    post_rules: Mapping[str, str] = field(default_factory=dict)
    references: tuple[str, ...] = ()
    orders: tuple[int, ...] = DEFAULT_ORDERS

    @property
    def angle_radians(self) -> float:
        return math.radians(self.angle)


# -------------------------
# Expansion
# -------------------------


def expand(rules: Mapping[str, str], start: str, generations: int) -> str:
    """Rewrite ``start`` for ``generations`` passes.

    Each pass replaces every symbol by its rule, or keeps it when there is no
    rule. The whole string is materialized at every pass.
    """
    _require(generations >= 0, "generations must be >= 0")

    current = start
    for _ in range(generations):
        current = "".join([rules.get(ch, ch) for ch in current])
    return current


def minimize(s: str) -> str:
    """Remove all non-action characters."""
    return "".join([ch for ch in s if ch in _ACTION_SET])


def elaborate(lsys: LSys, order: int) -> str:
    """Produce the action string for ``lsys`` at ``order``.

    The post rules get exactly one pass after the main expansion, whatever the
    order. They let grammars written over abstract symbols (A, B, ...) draw
    with F.
    """
    basic = expand(lsys.rules, lsys.start, order)
    post = expand(lsys.post_rules, basic, 1)
    actions = minimize(post)
    LOGGER.debug(
        "%s order %d: %d symbols, %d actions",
        lsys.title,
        order,
        len(post),
        len(actions),
    )
    return actions


# -------------------------
# Turtle interpreter
# -------------------------


@dataclass(frozen=True)
class MoveTo:
    dx: float
    dy: float


@dataclass(frozen=True)
class LineTo:
    dx: float
    dy: float


DrawingAction = Union[MoveTo, LineTo]

_MIN_HALF_EXTENT = 0.1
# spans below this are float residue of cos/sin, e.g. cos(pi/2)
_DEGENERATE_SPAN = 1e-9


def _widen_axis(lo: float, hi: float) -> tuple[float, float]:
    if hi - lo >= _DEGENERATE_SPAN:
        return lo, hi
    mid = (lo + hi) / 2.0
    return mid - _MIN_HALF_EXTENT, mid + _MIN_HALF_EXTENT


def _widen_bbox(bbox: BBox) -> BBox:
    x0, y0, x1, y1 = bbox
    x0, x1 = _widen_axis(x0, x1)
    y0, y1 = _widen_axis(y0, y1)
    return (x0, y0, x1, y1)


def interpret(
    actions: Iterable[str], angle_radians: float
) -> tuple[list[DrawingAction], BBox]:
    """Convert an action string into drawing actions in abstract space.

    The turtle starts at (0,0) heading along +x, and every step is one unit.
    All emitted actions are relative to the position before them; the first
    one is always ``MoveTo(0, 0)``.

    Returns the actions and the bounding box in steps. A zero-size axis of the
    box is widened by 0.1 on each side.
    """
    stack: list[tuple[float, float, float]] = []
    dacts: list[DrawingAction] = [MoveTo(0.0, 0.0)]

    d = 0.0
    x = y = 0.0
    x0 = y0 = x1 = y1 = 0.0

    for pos, sym in enumerate(actions):
        if sym == "F" or sym == "f":
            dx = math.cos(d)
            dy = math.sin(d)
            x += dx
            y += dy
            dacts.append(LineTo(dx, dy) if sym == "F" else MoveTo(dx, dy))
        elif sym == "+":
            d += angle_radians
        elif sym == "-":
            d -= angle_radians
        elif sym == "|":
            d += math.pi
        elif sym == "[":
            stack.append((d, x, y))
        elif sym == "]":
            if not stack:
                raise StackUnderflowError(
                    f"pop ']' at position {pos} encountered with empty stack"
                )
            d, px, py = stack.pop()
            dacts.append(MoveTo(px - x, py - y))
            x, y = px, py
        else:
            raise ActionError(f"Unimplemented action {sym!r} at position {pos}")

        x0 = min(x0, x)
        y0 = min(y0, y)
        x1 = max(x1, x)
        y1 = max(y1, y)

    return dacts, _widen_bbox((x0, y0, x1, y1))


# -------------------------
# Fit to region
# -------------------------

_TOKENS_PER_LINE = 10


def _fmt(x: float) -> str:
    s = f"{x:.4f}"
    # never write "-0.0000"
    if s == "-0.0000":
        s = "0.0000"
    return s


def _box_area(box: BBox) -> float:
    x0, y0, x1, y1 = box
    return (x1 - x0) * (y1 - y0)


def fit(
    dacts: Sequence[DrawingAction],
    shape_bbox: BBox,
    target_box: BBox,
    *,
    legacy_origin: bool = False,
    unit: str = "in",
) -> str:
    """Scale and center drawing actions into ``target_box``, as path data.

    One uniform scale is used, chosen so the shape box has the same area as
    the target box. The shape box center lands on the target box center.

    Moves are emitted as absolute ``M`` tokens at the transformed endpoint and
    lines as relative ``l`` tokens. With ``legacy_origin`` every token instead
    repeats the pre-scale origin (``m x0 y0`` / ``l x0 y0``), which is what the
    earlier renderer wrote; use it only to reproduce that output exactly.

    A newline follows every 10 tokens.
    """
    shape_area = _box_area(shape_bbox)
    target_area = _box_area(target_box)
    _require(shape_area > 0, "shape bounding box must have positive area")
    _require(target_area > 0, "target box must have positive area")

    ax0, ay0, ax1, ay1 = shape_bbox
    px0, py0, px1, py1 = target_box
    scale = math.sqrt(target_area / shape_area)

    # page position of the abstract origin
    x0 = (px0 + px1) / 2.0 - scale * (ax0 + ax1) / 2.0
    y0 = (py0 + py1) / 2.0 - scale * (ay0 + ay1) / 2.0

    tokens: list[str] = []
    x, y = x0, y0
    for dact in dacts:
        op = "m" if isinstance(dact, MoveTo) else "l"
        if legacy_origin:
            tokens.append(f"{op} {_fmt(x0)}{unit} {_fmt(y0)}{unit}")
            continue
        sx = scale * dact.dx
        sy = scale * dact.dy
        x += sx
        y += sy
        if op == "m":
            tokens.append(f"M {_fmt(x)}{unit} {_fmt(y)}{unit}")
        else:
            tokens.append(f"l {_fmt(sx)}{unit} {_fmt(sy)}{unit}")

    lines: list[str] = []
    for i in range(0, len(tokens), _TOKENS_PER_LINE):
        chunk = tokens[i : i + _TOKENS_PER_LINE]
        lines.append("".join(t + " " for t in chunk) + "\n")
    return "".join(lines)


def _xml_escape(s: str) -> str:
    return s.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def _xml_comment(s: str) -> str:
    # "--" is not allowed inside XML comments
    while "--" in s:
        s = s.replace("--", "- -")
    return s


def path_element(path_data: str, config: PageConfig, comment: str) -> str:
    return (
        f"<!-- {_xml_comment(comment)} -->\n"
        "<path\n"
        f'    style="fill:none; stroke:black; '
        f'stroke-width:{_fmt(config.linewidth)}in"\n'
        f'    d="\n{path_data}"\n'
        "/>\n"
    )


# -------------------------
# Page layout
# -------------------------

# Named layout regions. The SVG page origin is top left, y grows downward.
#
#     +-----------------0-----------------+
#     |                top                |
#     +------------1---+------------------+
#     |       a        2        b         |
#     +----------+-2---+-----+------------+
#     0 left     1  center   3   right    4
#     +----------+-----3-----+------------+
#     |               main                |
#     +---------------4-------------------+

# all box edges as fraction of page size
#                0     1     2     3     4
_LAYOUT_XF = (0.05, 0.35, 0.50, 0.65, 0.95)
_LAYOUT_YF = (0.03, 0.14, 0.20, 0.42, 0.97)

# regions that hold drawings, smallest first
ORDER_SLOTS = ("left", "center", "right", "main")


def layout_boxes(config: PageConfig) -> dict[str, BBox]:
    x = [f * config.pagewidth for f in _LAYOUT_XF]
    y = [f * config.pageheight for f in _LAYOUT_YF]
    return {
        "main": (x[0], y[3], x[4], y[4]),
        "left": (x[0], y[2], x[1], y[3]),
        "center": (x[1], y[2], x[3], y[3]),
        "right": (x[3], y[2], x[4], y[3]),
        "a": (x[0], y[1], x[2], y[2]),
        "b": (x[2], y[1], x[4], y[2]),
        "top": (x[0], y[0], x[4], y[1]),
    }


def layout_boxes_markup(boxes: Mapping[str, BBox], config: PageConfig) -> str:
    parts: list[str] = []
    for name in sorted(boxes):
        x0, y0, x1, y1 = boxes[name]
        parts.append(
            f"<!-- box {name} -->\n"
            f'<rect x="{_fmt(x0)}in" y="{_fmt(y0)}in" rx="0.1in" ry="0.1in" '
            f'width="{_fmt(x1 - x0)}in" height="{_fmt(y1 - y0)}in"\n'
            f'    style="fill:none; stroke:black; '
            f'stroke-width:{_fmt(config.linewidth)}in" />\n'
        )
    return "".join(parts)


def _text_lines(
    lines: Sequence[str], box: BBox, size_pt: float, *, centered: bool = False
) -> list[str]:
    x0, y0, x1, y1 = box
    step = size_pt * 1.25 / 72.0
    # shrink line spacing and font together until the last baseline fits
    if lines and step * len(lines) > y1 - y0:
        fitted = (y1 - y0) / len(lines)
        size_pt *= fitted / step
        step = fitted
    x =(x0 + x1) / 2.0 if centered else x0
    anchor = "middle" if centered else "start"
    out: list[str] = []
    for i, line in enumerate(lines):
        y = y0 + step * (i + 1)
        out.append(
            f'<text x="{_fmt(x)}in" y="{_fmt(y)}in" font-size="{size_pt:g}pt" '
            f'text-anchor="{anchor}">{_xml_escape(line)}</text>\n'
        )
    return out


def grammar_summary(lsys: LSys) -> list[str]:
    lines = [
        f"angle: {lsys.angle:g}",
        f"start: {lsys.start}",
        f"orders: {', '.join(str(o) for o in lsys.orders)}",
    ]
    for sym in sorted(lsys.rules):
        lines.append(f"{sym} -> {lsys.rules[sym]}")
    for sym in sorted(lsys.post_rules):
        lines.append(f"post {sym} -> {lsys.post_rules[sym]}")
    return lines


def annotation_markup(
    lsys: LSys, boxes: Mapping[str, BBox], config: PageConfig
) -> str:
    """Title in the top box, references in box a, grammar in box b."""
    out: list[str] = []
    out += _text_lines([lsys.title], boxes["top"], config.titlesize, centered=True)
    out += _text_lines(list(lsys.references), boxes["a"], config.attrsize)
    out += _text_lines(grammar_summary(lsys), boxes["b"], config.attrsize)
    return "".join(out)


def order_slots(orders: Sequence[int]) -> list[tuple[str, int]]:
    """Assign up to four orders to drawing regions, the last one to main."""
    shown = list(orders[: len(ORDER_SLOTS)])
    slots = ORDER_SLOTS[len(ORDER_SLOTS) - len(shown) :]
    return list(zip(slots, shown))


def draw_page(
    lsys: LSys,
    config: PageConfig,
    *,
    legacy_origin: bool = False,
    outline: bool = False,
) -> list[str]:
    """Build the fragments for one page.

    Everything is computed before any output is started, so an ActionError
    leaves the document untouched.
    """
    boxes = layout_boxes(config)
    fragments = [annotation_markup(lsys, boxes, config)]
    for slot, order in order_slots(lsys.orders):
        dacts, bbox = interpret(elaborate(lsys, order), lsys.angle_radians)
        data = fit(dacts, bbox, boxes[slot], legacy_origin=legacy_origin)
        fragments.append(
            path_element(data, config, f"path: {lsys.title}, order {order}, {slot}")
        )
    if outline:
        fragments.append(layout_boxes_markup(boxes, config))
    return fragments


# -------------------------
# Output document
# -------------------------


class DocPhase(Enum):
    CLOSED = "closed"
    IN_DOCUMENT = "in document"
    IN_PAGE = "in page"


@dataclass(frozen=True)
class OpenDocument:
    path: str
    comment: str = ""


@dataclass(frozen=True)
class StartPage:
    comment: str = ""


@dataclass(frozen=True)
class AddFragment:
    content: str


@dataclass(frozen=True)
class EndPage:
    pass


@dataclass(frozen=True)
class CloseDocument:
    pass


DocAct = Union[OpenDocument, StartPage, AddFragment, EndPage, CloseDocument]


@dataclass(frozen=True)
class TransitionResult:
    ok: bool
    phase: DocPhase
    reason: str = ""


def _ensure_parent_dir(path: str) -> None:
    os.makedirs(os.path.dirname(os.path.abspath(path)) or ".", exist_ok=True)


class SvgDocument:
    """Collects page fragments and wraps them in document and page markup.

    Nesting is document -> page -> fragment. ``apply`` reports a violated
    precondition as a failed TransitionResult and leaves the state unchanged;
    the named methods raise DocumentStateError instead. Output is buffered
    and written to the sink at the end of every page and at close.
    """

    def __init__(self, config: PageConfig) -> None:
        self.config = config
        self.in_document = False
        self.in_page = False
        self.page_no = 0
        self.frag_no = 0
        self.buf = bytearray()
        self.sink: BinaryIO | None = None

    @property
    def phase(self) -> DocPhase:
        if self.in_page:
            return DocPhase.IN_PAGE
        if self.in_document:
            return DocPhase.IN_DOCUMENT
        return DocPhase.CLOSED

    def __enter__(self) -> SvgDocument:
        return self

    def __exit__(self, *exc: object) -> None:
        self.abort()

    # --- transitions

    def _precondition_failure(self, act: DocAct) -> str | None:
        if isinstance(act, OpenDocument):
            checks = [
                (not self.in_document, "a document is already open"),
                (not self.in_page, "a page is open"),
                (self.page_no == 0, "page counter is not zero"),
                (self.frag_no == 0, "fragment counter is not zero"),
                (not self.buf, "pending buffer is not empty"),
                (self.sink is None, "a sink is already open"),
            ]
        elif isinstance(act, StartPage):
            checks = [
                (self.in_document, "no document is open"),
                (not self.in_page, "a page is already open"),
            ]
        elif isinstance(act, AddFragment):
            checks = [(self.in_page, "no page is open")]
        elif isinstance(act, EndPage):
            checks = [
                (self.in_document, "no document is open"),
                (self.in_page, "no page is open"),
                (self.frag_no > 0, "page has no fragments"),
                (self.sink is not None, "no sink is open"),
            ]
        elif isinstance(act, CloseDocument):
            checks = [
                (self.in_document, "no document is open"),
                (not self.in_page, "a page is still open"),
                (self.page_no > 0, "document has no pages"),
                (not self.buf, "pending buffer is not empty"),
                (self.sink is not None, "no sink is open"),
            ]
        else:
            raise TypeError(f"Unknown document action {act!r}")

        for ok, reason in checks:
            if not ok:
                return reason
        return None

    def apply(self, act: DocAct) -> TransitionResult:
        reason = self._precondition_failure(act)
        if reason is not None:
            msg = (
                f"{type(act).__name__} rejected in state "
                f"'{self.phase.value}': {reason}"
            )
            LOGGER.debug("%s", msg)
            return TransitionResult(ok=False, phase=self.phase, reason=msg)

        if isinstance(act, OpenDocument):
            self._open(act)
        elif isinstance(act, StartPage):
            self._start_page(act)
        elif isinstance(act, AddFragment):
            self._add_fragment(act)
        elif isinstance(act, EndPage):
            self._end_page()
        else:
            self._close()
        return TransitionResult(ok=True, phase=self.phase)

    def _open(self, act: OpenDocument) -> None:
        _ensure_parent_dir(act.path)
        self.sink = open(act.path, "wb")
        cfg = self.config
        self._emit(
            f"<!-- {_xml_comment(act.path)}\n"
            f"     {_xml_comment(act.comment)} -->\n"
            "<svg\n"
            '    xmlns="http://www.w3.org/2000/svg"\n'
            '    version="1.2"\n'
            f'    width="{cfg.pagewidth:g}in"\n'
            f'    height="{cfg.pageheight:g}in"\n'
            ">\n"
            "<pageSet>\n"
            "\n"
        )
        self.in_document = True

    def _start_page(self, act: StartPage) -> None:
        self.page_no += 1
        self.frag_no = 0
        self._emit(
            "<page>\n"
            f"<!-- begin page {self.page_no}\n"
            f"     {_xml_comment(act.comment)} -->\n"
        )
        self.in_page = True

    def _add_fragment(self, act: AddFragment) -> None:
        self.frag_no += 1
        self._emit(f"\n<!-- page {self.page_no} fragment {self.frag_no} -->\n")
        # content is not checked
        self._emit(act.content)

    def _end_page(self) -> None:
        self.in_page = False
        self._emit(f"\n</page>\n<!-- end page {self.page_no} -->\n\n")
        self._flush()

    def _close(self) -> None:
        self._emit("</pageSet>\n</svg>\n")
        self._flush()
        sink = cast(BinaryIO, self.sink)
        os.fsync(sink.fileno())
        sink.close()
        self._reset()

    def _emit(self, text: str) -> None:
        self.buf += text.encode("utf-8")

    def _flush(self) -> None:
        sink = cast(BinaryIO, self.sink)
        sink.write(bytes(self.buf))
        sink.flush()
        self.buf.clear()

    def _reset(self) -> None:
        self.in_document = False
        self.in_page = False
        self.page_no = 0
        self.frag_no = 0
        self.buf.clear()
        self.sink = None

    def abort(self) -> None:
        """Release the sink without finishing the document."""
        if self.sink is not None:
            self.sink.close()
        self._reset()

    # --- raising forms

    def _run(self, act: DocAct) -> None:
        result = self.apply(act)
        if not result.ok:
            raise DocumentStateError(result.reason)

    def open_document(self, path: str, comment: str = "") -> None:
        self._run(OpenDocument(path, comment))

    def start_page(self, comment: str = "") -> None:
        self._run(StartPage(comment))

    def add_fragment(self, content: str) -> None:
        self._run(AddFragment(content))

    def end_page(self) -> None:
        self._run(EndPage())

    def close_document(self) -> None:
        self._run(CloseDocument())


# -------------------------
# Catalog
# -------------------------

CATALOG_SCHEMA = "lsys-catalog/1"

_ENTRY_KEYS = ("title", "refs", "start", "angle", "order", "rules", "post_rules")


def _parse_rules(x: Any, path: str) -> dict[str, str]:
    obj = _as_dict(x, path)
    rules: dict[str, str] = {}
    for k, v in obj.items():
        _require(
            isinstance(k, str) and len(k) == 1,
            f"{path} keys must be single-character strings",
        )
        rules[k] = _as_str(v, f"{path}['{k}']")
    return rules


def parse_lsys(obj: Any, path: str = "lsys") -> LSys:
    obj = _as_dict(obj, path)
    _reject_unknown(obj, _ENTRY_KEYS, path)

    _require("title" in obj, f"{path}.title is required")
    title = _as_str(obj["title"], f"{path}.title")

    _require("start" in obj, f"{path}.start is required")
    start = _as_str(obj["start"], f"{path}.start")
    _require(len(start) > 0, f"{path}.start must be non-empty")

    _require("angle" in obj, f"{path}.angle is required")
    angle = _as_float(obj["angle"], f"{path}.angle")

    refs = tuple(
        _as_str(r, f"{path}.refs[{i}]")
        for i, r in enumerate(_as_list(obj.get("refs", []), f"{path}.refs"))
    )

    orders_raw = _as_list(obj.get("order", list(DEFAULT_ORDERS)), f"{path}.order")
    _require(len(orders_raw) > 0, f"{path}.order must be non-empty")
    _require(
        len(orders_raw) <= len(ORDER_SLOTS),
        f"{path}.order has more than {len(ORDER_SLOTS)} entries",
    )
    orders = tuple(_as_int(o, f"{path}.order[{i}]") for i, o in enumerate(orders_raw))
    _require(all(o >= 0 for o in orders), f"{path}.order values must be >= 0")

    return LSys(
        title=title,
        start=start,
        angle=angle,
        rules=_parse_rules(obj.get("rules", {}), f"{path}.rules"),
        post_rules=_parse_rules(obj.get("post_rules", {}), f"{path}.post_rules"),
        references=refs,
        orders=orders,
    )


@dataclass(frozen=True)
class CatalogFailure:
    index: int
    reason: str


@dataclass
class CatalogLoad:
    lsystems: list[LSys]
    failures: list[CatalogFailure]

    @property
    def total(self) -> int:
        return len(self.lsystems) + len(self.failures)

    def summary(self) -> str:
        return f"Successfully loaded {len(self.lsystems)} of {self.total} lsyss"


def read_catalog(obj: dict[str, Any], source: str = "catalog") -> CatalogLoad:
    """Parse a catalog document, skipping entries that fail validation.

    A missing or wrong schema tag rejects the whole document.
    """
    obj = _as_dict(obj, source)
    schema = obj.get("schema")
    _require(
        schema == CATALOG_SCHEMA,
        f"{source}: unsupported schema {schema!r}, expected {CATALOG_SCHEMA!r}",
    )
    entries = _as_list(obj.get("lsystems", []), f"{source}.lsystems")

    loaded = CatalogLoad(lsystems=[], failures=[])
    for i, entry in enumerate(entries):
        try:
            loaded.lsystems.append(parse_lsys(entry, f"lsystems[{i}]"))
        except ConfigError as e:
            LOGGER.warning("%s: skipping entry %d: %s", source, i, e)
            loaded.failures.append(CatalogFailure(index=i, reason=str(e)))
    LOGGER.info("%s: %s", source, loaded.summary())
    return loaded


def load_catalog(path: str) -> CatalogLoad:
    return read_catalog(load_json(path), source=path)


def select_lsystems(
    lsystems: Sequence[LSys], titles: Sequence[str] | None
) -> list[LSys]:
    """Entries whose title contains any of ``titles`` (case-insensitive)."""
    if not titles:
        return list(lsystems)
    needles = [t.lower() for t in titles]
    chosen = [ls for ls in lsystems if any(n in ls.title.lower() for n in needles)]
    _require(len(chosen) > 0, f"No catalog entries match {', '.join(titles)}")
    return chosen


# -------------------------
# CLI / Help
# -------------------------

HELP_EPILOG = r"""
CATALOG JSON SYNTAX

  {
    "schema": "lsys-catalog/1",
    "lsystems": [ <entry>, ... ]
  }

Entry keys

  title: string (required)
  refs: array of strings (optional)
  start: non-empty string (required)
      The initial word.
  angle: number degrees (required)
      Turning angle for '+' and '-'.
  order: array of integers >= 0 (default [1, 2, 3, 6])
      Orders to draw, at most four. The last one goes in the large main
      region.
  rules: object mapping single character -> string (optional)
      Symbols without a rule rewrite to themselves.
  post_rules: object mapping single character -> string (optional)
      Applied once after the main rules, e.g. {"A": "F", "B": "F"}.

Entries that fail validation are skipped and reported; the rest still render.

ACTIONS

  F forward, drawing       f forward, not drawing
  + turn left              - turn right
  | turn 180 degrees       [ push state      ] pop state

All other symbols are removed before drawing.

PAGE CONFIG JSON (--config)

  {"linewidth": 0.02, "pagewidth": 8.5, "pageheight": 11.0,
   "titlesize": 30, "attrsize": 12}

Lengths are inches, font sizes points. All keys optional.
"""


def build_argparser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="lsys_svg.py",
        description="Render Lindenmayer System catalogs as paged SVG.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=HELP_EPILOG,
    )
    p.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Log progress (-v) or expansion details (-vv) to stderr.",
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    pr = sub.add_parser(
        "render",
        help="Render catalog entries to an SVG document, one page each.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    pr.add_argument("catalog", help="Path to the catalog JSON.")
    pr.add_argument("output", help="Path to write the SVG output.")
    pr.add_argument("--config", default=None, help="Path to a page config JSON.")
    pr.add_argument(
        "--title",
        action="append",
        default=None,
        help="Only render entries whose title contains this text. Repeatable.",
    )
    pr.add_argument(
        "--legacy-origin",
        action="store_true",
        help="Write the repeated-origin path data of the earlier renderer.",
    )
    pr.add_argument(
        "--outline", action="store_true", help="Draw the layout box outlines."
    )

    pv = sub.add_parser(
        "validate",
        help="Load a catalog and check every entry at its smallest order.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    pv.add_argument("catalog", help="Path to the catalog JSON.")

    return p


def _configure_logging(verbosity: int) -> None:
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


# -------------------------
# Commands
# -------------------------


def cmd_render(
    catalog_path: str,
    output_path: str,
    *,
    config_path: str | None = None,
    titles: Sequence[str] | None = None,
    legacy_origin: bool = False,
    outline: bool = False,
) -> int:
    config = load_page_config(config_path)
    catalog = load_catalog(catalog_path)
    print(catalog.summary())

    pages: list[tuple[LSys, list[str]]] = []
    failed = 0
    for lsys in select_lsystems(catalog.lsystems, titles):
        try:
            fragments = draw_page(
                lsys, config, legacy_origin=legacy_origin, outline=outline
            )
        except ActionError as e:
            failed += 1
            LOGGER.error("%s: not rendered: %s", lsys.title, e)
            continue
        pages.append((lsys, fragments))
    if not pages:
        raise ConfigError("No L-systems could be rendered")

    with SvgDocument(config) as doc:
        doc.open_document(output_path, f"{len(pages)} L-systems from {catalog_path}")
        for lsys, fragments in pages:
            doc.start_page(lsys.title)
            for frag in fragments:
                doc.add_fragment(frag)
            doc.end_page()
            LOGGER.info("page %d: %s", doc.page_no, lsys.title)
        doc.close_document()

    print(f"Rendered {len(pages)} of {len(pages) + failed} lsyss to {output_path}")
    return 2 if failed else 0


def cmd_validate(catalog_path: str) -> int:
    catalog = load_catalog(catalog_path)
    print(catalog.summary())

    errors = 0
    for lsys in catalog.lsystems:
        order = min(lsys.orders)
        print(f"{lsys.title}:")
        print(
            f"  angle={lsys.angle:g} orders={list(lsys.orders)} "
            f"rules={len(lsys.rules)} post_rules={len(lsys.post_rules)}"
        )
        try:
            actions = elaborate(lsys, order)
            dacts, (x0, y0, x1, y1) = interpret(actions, lsys.angle_radians)
        except ActionError as e:
            errors += 1
            print(f"  error at order {order}: {e}")
            continue
        print(
            f"  order {order}: {len(actions)} actions, {len(dacts)} drawing actions, "
            f"bbox=({x0:.3f}, {y0:.3f}, {x1:.3f}, {y1:.3f})"
        )

    for failure in catalog.failures:
        print(f"entry {failure.index}: {failure.reason}")
    return 2 if errors or catalog.failures else 0


def main(argv: list[str] | None = None) -> int:
    ap = build_argparser()
    args = ap.parse_args(argv)
    _configure_logging(args.verbose)

    try:
        if args.cmd == "render":
            return cmd_render(
                args.catalog,
                args.output,
                config_path=args.config,
                titles=args.title,
                legacy_origin=args.legacy_origin,
                outline=args.outline,
            )
        elif args.cmd == "validate":
            return cmd_validate(args.catalog)
        else:
            raise AssertionError("unreachable")
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 2
    except ActionError as e:
        print(f"Action error: {e}", file=sys.stderr)
        return 2
    except DocumentStateError as e:
        print(f"Document error: {e}", file=sys.stderr)
        return 2
    except OSError as e:
        print(f"File error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
