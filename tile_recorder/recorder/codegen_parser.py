"""Extract steps from scripts written by Playwright's codegen.

Parsing is line oriented. ``GRAMMAR`` is an ordered table of
``(pattern, builder)`` rows; the first row whose pattern matches a line
turns it into a ``RawEvent``. Lines that match nothing (comments, imports,
``expect`` assertions, browser setup) are skipped, so a script without any
recognised action yields an empty list.

Both the JavaScript and the Python flavours are understood::

    await page.goto('https://x.com');
    await page.click('#a');
    page.get_by_role("button", name="Save").click()
    await page.getByPlaceholder('Email').fill('a@b.c');
"""

from __future__ import annotations

import logging
import re
from typing import Callable, List, Optional, Tuple

from ..errors import MalformedStep
from ..models import RawEvent, Step, StepSource
from .normalizer import StepMerger, normalize

logger = logging.getLogger(__name__)

_STRING = r"""(?P<{name}>(?P<{name}_q>['"`])(?:\\.|(?!(?P={name}_q)).)*(?P={name}_q))"""
_LITERAL_RE = re.compile(r"""(?P<q>['"`])(?P<body>(?:\\.|(?!(?P=q)).)*)(?P=q)""")
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r"}

ACTION_ALIASES = {
    "click": "click",
    "fill": "fill",
    "type": "type",
    "press_sequentially": "type",
    "pressSequentially": "type",
    "press": "press",
    "check": "check",
    "uncheck": "uncheck",
    "select_option": "select",
    "selectOption": "select",
}

_ACTIONS = "|".join(sorted(ACTION_ALIASES, key=len, reverse=True))

GOTO_RE = re.compile(r"^(?:await\s+)?page\.goto\(\s*" + _STRING.format(name="url"))
DIRECT_RE = re.compile(
    r"^(?:await\s+)?page\.(?P<action>" + _ACTIONS + r")\(\s*" + _STRING.format(name="selector")
    + r"(?:\s*,\s*(?P<rest>.*))?\)\s*;?\s*$"
)
CHAIN_RE = re.compile(
    r"^(?:await\s+)?page\.(?P<chain>(?:locator|frame_locator|frameLocator|get_by_\w+|getBy\w+)\(.*?\)(?:\.\w+(?:\(.*?\))?)*?)"
    r"\.(?P<action>" + _ACTIONS + r")\((?P<args>.*)\)\s*;?\s*$"
)

# Playwright selector engines equivalent to the get_by_* helpers.
_GET_BY_ENGINES = {
    "text": 'text={text}',
    "label": 'internal:label={text}',
    "placeholder": '[placeholder={text}]',
    "alt_text": '[alt={text}]',
    "title": '[title={text}]',
    "test_id": '[data-testid={text}]',
}


def unquote(literal: str) -> str:
    body = literal[1:-1]
    return re.sub(r"\\(.)", lambda m: _ESCAPES.get(m.group(1), m.group(1)), body)


def _quoted(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _literals(text: str) -> List[str]:
    return [unquote(m.group(0)) for m in _LITERAL_RE.finditer(text or "")]


def _keyword(args: str, name: str) -> Optional[str]:
    match = re.search(r"\b" + name + r"\s*[=:]\s*" + _STRING.format(name="kw"), args)
    return unquote(match.group("kw")) if match else None


def _snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def split_chain(chain: str) -> List[str]:
    """Split ``a(x).b.c('y.z')`` on top-level dots, respecting quotes and parens."""

    parts: List[str] = []
    depth = 0
    quote: Optional[str] = None
    current: List[str] = []
    escaped = False
    for char in chain:
        if quote:
            current.append(char)
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == quote:
                quote = None
            continue
        if char in "'\"`":
            quote = char
        elif char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        elif char == "." and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        current.append(char)
    if current:
        parts.append("".join(current))
    return [p.strip() for p in parts if p.strip()]


def _segment_selector(segment: str) -> Optional[str]:
    match = re.match(r"^(?P<name>\w+)(?:\((?P<args>.*)\))?$", segment, re.DOTALL)
    if not match:
        return None
    name = _snake(match.group("name"))
    args = match.group("args") or ""
    literals = _literals(args)

    if name in ("first", "last"):
        return "nth=0" if name == "first" else "nth=-1"
    if name == "nth":
        index = re.search(r"-?\d+", args)
        return f"nth={index.group(0)}" if index else None
    if not literals:
        return None
    if name == "locator":
        return literals[0]
    if name == "frame_locator":
        return f"{literals[0]} >> internal:control=enter-frame"
    if name == "get_by_role":
        accessible = _keyword(args, "name")
        return f"role={literals[0]}" + (f"[name={_quoted(accessible)}]" if accessible else "")
    if name.startswith("get_by_"):
        template = _GET_BY_ENGINES.get(name[len("get_by_"):])
        if template is None:
            return None
        return template.format(text=_quoted(literals[0]))
    return None


def chain_to_selector(chain: str) -> Optional[str]:
    """Render a locator chain (``get_by_role(...).first``) as one selector."""

    selectors = []
    for segment in split_chain(chain):
        selector = _segment_selector(segment)
        if selector is None:
            return None
        selectors.append(selector)
    return " >> ".join(selectors) if selectors else None


def _action_event(action: str, selector: str, argument: Optional[str]) -> RawEvent:
    step_type = ACTION_ALIASES[action]
    if step_type == "press":
        return RawEvent(type=step_type, selector=selector, key=argument)
    if step_type == "type":
        return RawEvent(type=step_type, selector=selector, text=argument or "")
    return RawEvent(type=step_type, selector=selector, value=argument)


def _build_goto(match: re.Match) -> Optional[RawEvent]:
    return RawEvent(type="navigate", url=unquote(match.group("url")))


def _build_direct(match: re.Match) -> Optional[RawEvent]:
    rest = _literals(match.group("rest") or "")
    return _action_event(match.group("action"), unquote(match.group("selector")), rest[0] if rest else None)


def _build_chain(match: re.Match) -> Optional[RawEvent]:
    selector = chain_to_selector(match.group("chain"))
    if selector is None:
        return None
    args = _literals(match.group("args"))
    return _action_event(match.group("action"), selector, args[0] if args else None)


GRAMMAR: List[Tuple[re.Pattern, Callable[[re.Match], Optional[RawEvent]]]] = [
    (GOTO_RE, _build_goto),
    (DIRECT_RE, _build_direct),
    (CHAIN_RE, _build_chain),
]


def parse_line(line: str) -> Optional[RawEvent]:
    stripped = line.strip()
    if not stripped or stripped.startswith(("//", "#")):
        return None
    for pattern, builder in GRAMMAR:
        match = pattern.match(stripped)
        if match:
            return builder(match)
    return None


def parse_script(script: str) -> List[RawEvent]:
    """Return the raw events of every recognised line, in script order."""

    events: List[RawEvent] = []
    for line in (script or "").splitlines():
        event = parse_line(line)
        if event is not None:
            events.append(event)
    return events


def parse_script_to_steps(
    script: str,
    source: StepSource = StepSource.GENERATED_SCRIPT,
    start_timestamp: float = 0.0,
) -> List[Step]:
    """Parse ``script`` and merge the result into canonical steps.

    Script lines have no capture time; each gets ``start_timestamp`` plus
    its ordinal so the order of the script is kept.
    """

    merger = StepMerger()
    for offset, event in enumerate(parse_script(script)):
        try:
            step = normalize(event, source, timestamp=start_timestamp + offset)
        except MalformedStep as exc:
            logger.debug("[CodegenParser] Skipping line event %s: %s", event.type, exc)
            continue
        merger.merge(step)
    return merger.steps


__all__ = [
    "GRAMMAR",
    "chain_to_selector",
    "parse_line",
    "parse_script",
    "parse_script_to_steps",
    "split_chain",
]
