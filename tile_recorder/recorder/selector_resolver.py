"""Derive a stable selector for a page element.

The page side (``DESCRIBE_ELEMENT_JS``) only gathers facts about the target
element: its id, classes, data attributes, short text, how many elements the
candidate class/data selectors match, and the tag path up to the nearest
ancestor with a stable id. ``resolve`` then walks the priority chain in Python:

1. stable ``#id``
2. class selector matching exactly one element
3. ``tag[data-*]`` selector matching exactly one element
4. ``tag:has-text("...")`` for buttons/links with short text
5. structural path with ``:nth-of-type(n)`` where sibling tags collide

``resolve`` never raises; the structural path is bounded by
``MAX_PATH_DEPTH`` segments.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

MAX_PATH_DEPTH = 32
TEXT_MATCH_LIMIT = 50
INTERACTIVE_TAGS = frozenset({"button", "a"})

# Framework-generated ids (React ":r3:", Ember "ember123", uuids, long
# digit runs) change between page loads.
_UNSTABLE_ID_PATTERNS = (
    re.compile(r"^\d"),
    re.compile(r"^:[a-z0-9]+:$", re.IGNORECASE),
    re.compile(r"\d{4,}"),
    re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-", re.IGNORECASE),
    re.compile(r"^(ember|ext-gen|yui_|gwt-uid-)", re.IGNORECASE),
)


@dataclass
class PathSegment:
    tag: str
    id: Optional[str] = None
    nth_of_type: int = 1
    same_tag_siblings: int = 1

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PathSegment":
        return cls(
            tag=str(data.get("tag") or "*").lower(),
            id=data.get("id") or None,
            nth_of_type=int(data.get("nthOfType") or 1),
            same_tag_siblings=int(data.get("sameTagSiblings") or 1),
        )


@dataclass
class ElementDescriptor:
    """Facts about one DOM element, as collected by ``DESCRIBE_ELEMENT_JS``.

    ``path`` starts with the element itself and walks up through its
    ancestors, ending at the first ancestor carrying a stable id (inclusive) or
    just below ``<html>``.
    """

    tag: str
    id: Optional[str] = None
    classes: List[str] = field(default_factory=list)
    data_attributes: Dict[str, str] = field(default_factory=dict)
    text: str = ""
    class_match_count: int = 0
    data_match_count: int = 0
    path: List[PathSegment] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ElementDescriptor":
        raw_attrs = data.get("dataAttributes") or {}
        if isinstance(raw_attrs, list):
            raw_attrs = {str(item.get("name")): str(item.get("value", "")) for item in raw_attrs if item}
        return cls(
            tag=str(data.get("tag") or "").lower(),
            id=data.get("id") or None,
            classes=[c for c in (data.get("classes") or []) if c],
            data_attributes={str(k): str(v) for k, v in raw_attrs.items()},
            text=str(data.get("text") or ""),
            class_match_count=int(data.get("classMatches") or 0),
            data_match_count=int(data.get("dataMatches") or 0),
            path=[PathSegment.from_dict(seg) for seg in (data.get("path") or []) if isinstance(seg, dict)],
        )


def css_escape(value: str) -> str:
    """Escape an identifier the way the CSSOM ``CSS.escape`` does."""

    out: List[str] = []
    length = len(value)
    for index, char in enumerate(value):
        code = ord(char)
        if code == 0:
            out.append("�")
        elif 0x01 <= code <= 0x1F or code == 0x7F:
            out.append(f"\\{code:x} ")
        elif index == 0 and "0" <= char <= "9":
            out.append(f"\\{code:x} ")
        elif index == 1 and "0" <= char <= "9" and value[0] == "-":
            out.append(f"\\{code:x} ")
        elif index == 0 and char == "-" and length == 1:
            out.append("\\-")
        elif code >= 0x80 or char in "-_" or char.isascii() and char.isalnum():
            out.append(char)
        else:
            out.append("\\" + char)
    return "".join(out)


def quote_css_string(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def is_stable_id(element_id: Optional[str]) -> bool:
    if not element_id or not element_id.strip():
        return False
    return not any(pattern.search(element_id) for pattern in _UNSTABLE_ID_PATTERNS)


def id_selector(element_id: str) -> str:
    return "#" + css_escape(element_id)


def class_selector(classes: List[str]) -> str:
    return "".join("." + css_escape(c) for c in classes)


def data_attribute_selector(tag: str, attributes: Dict[str, str]) -> str:
    parts = "".join(f"[{name}={quote_css_string(value)}]" for name, value in attributes.items())
    return f"{tag or '*'}{parts}"


def text_selector(tag: str, text: str) -> str:
    return f"{tag}:has-text({quote_css_string(text)})"


def structural_path(path: List[PathSegment]) -> str:
    """Render ``path`` (element first) as a child-combinator chain.

    The chain starts at the nearest ancestor with a stable id, or at
    ``body``. A walk that ended on an element with an unstable id keeps
    that id as its anchor; it only holds for the current document.
    """

    segments = path[:MAX_PATH_DEPTH]
    parts: List[str] = []
    for segment in segments:
        if is_stable_id(segment.id):
            parts.append(id_selector(segment.id or ""))
            break
        part = segment.tag or "*"
        if segment.same_tag_siblings > 1:
            part += f":nth-of-type({max(segment.nth_of_type, 1)})"
        parts.append(part)
    else:
        top = segments[-1] if segments else None
        if len(segments) > 1 and top.id and top.tag not in ("body", "html"):
            parts[-1] = top.tag + id_selector(top.id)
    parts.reverse()
    return " > ".join(parts)


def _normalized_text(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def resolve(element: ElementDescriptor | Dict[str, Any]) -> str:
    if isinstance(element, dict):
        element = ElementDescriptor.from_dict(element)

    if is_stable_id(element.id):
        return id_selector(element.id or "")

    if element.classes and element.class_match_count == 1:
        return class_selector(element.classes)

    if element.data_attributes and element.data_match_count == 1:
        return data_attribute_selector(element.tag, element.data_attributes)

    text = _normalized_text(element.text)
    if element.tag in INTERACTIVE_TAGS and 0 < len(text) < TEXT_MATCH_LIMIT:
        return text_selector(element.tag, text)

    path = element.path or [PathSegment(tag=element.tag or "body")]
    return structural_path(path) or element.tag or "body"


# Collects an ElementDescriptor-shaped object for `el`. Counting uses the
# same escaping as the Python side so uniqueness checks agree.
DESCRIBE_ELEMENT_JS = r"""
(el) => {
    const MAX_DEPTH = %(max_depth)d;
    const esc = (v) => (window.CSS && CSS.escape) ? CSS.escape(v) : String(v).replace(/([^a-zA-Z0-9_-])/g, '\\$1');
    const quote = (v) => '"' + String(v).replace(/\\/g, '\\\\').replace(/"/g, '\\"') + '"';
    const count = (sel) => { try { return document.querySelectorAll(sel).length; } catch (e) { return 0; } };
    const unstable = %(unstable)s;
    const stableId = (id) => !!id && !!id.trim() && !unstable.some((re) => re.test(id));
    if (!el || el.nodeType !== 1) return null;
    const tag = el.tagName.toLowerCase();
    const classes = (typeof el.className === 'string')
        ? el.className.trim().split(/\s+/).filter((c) => c.length > 0) : [];
    const dataAttributes = {};
    for (const attr of Array.from(el.attributes || [])) {
        if (attr.name.startsWith('data-')) dataAttributes[attr.name] = attr.value;
    }
    const dataNames = Object.keys(dataAttributes);
    const classSel = classes.length ? classes.map((c) => '.' + esc(c)).join('') : '';
    const dataSel = dataNames.length
        ? tag + dataNames.map((n) => '[' + n + '=' + quote(dataAttributes[n]) + ']').join('') : '';
    const path = [];
    let current = el;
    while (current && current.nodeType === 1 && current.tagName !== 'HTML' && path.length < MAX_DEPTH) {
        let nth = 1;
        let same = 1;
        if (current.parentElement) {
            const siblings = Array.from(current.parentElement.children)
                .filter((child) => child.tagName === current.tagName);
            same = siblings.length;
            nth = siblings.indexOf(current) + 1;
        }
        path.push({ tag: current.tagName.toLowerCase(), id: current.id || null, nthOfType: nth, sameTagSiblings: same });
        if (current.id && current !== el && stableId(current.id)) break;
        current = current.parentElement;
    }
    return {
        tag,
        id: el.id || null,
        classes,
        dataAttributes,
        text: (el.textContent || '').trim().slice(0, 100),
        classMatches: classSel ? count(classSel) : 0,
        dataMatches: dataSel ? count(dataSel) : 0,
        path,
    };
}
""" % {
    "max_depth": MAX_PATH_DEPTH,
    "unstable": "[" + ", ".join(
        "new RegExp(%s, %s)" % (json.dumps(p.pattern), json.dumps("i" if p.flags & re.IGNORECASE else ""))
        for p in _UNSTABLE_ID_PATTERNS
    ) + "]",
}


__all__ = [
    "DESCRIBE_ELEMENT_JS",
    "ElementDescriptor",
    "MAX_PATH_DEPTH",
    "PathSegment",
    "css_escape",
    "is_stable_id",
    "resolve",
    "structural_path",
]
