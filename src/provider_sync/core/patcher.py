"""Targeted edits of JavaScript registry sources and JSON documents.

Only the block being edited is parsed: an object literal assigned to a
named ``const``/``let``/``var``, the brace list of an ``import``
statement, or an object or array inside a JSON file. Entries are recorded
with their source spans so insertions and removals touch nothing but the
entry itself and the separating comma, in the file's own indentation and
trailing-comma style.
"""

import bisect
import json
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple

from .errors import PatchError


QUOTES = "'\"`"
_OPENERS = {"{": "}", "[": "]", "(": ")"}
_CLOSERS = set(_OPENERS.values())
_IDENT = re.compile(r"[A-Za-z_$][\w$]*")
_NUMBER = re.compile(r"\d+")

DEFAULT_IMPORT_SOURCE = r"[^'\"]*ai-providers/index\.js"


@dataclass
class Entry:
    """One entry of a parsed block.

    ``start``..``value_end`` covers the entry itself, ``comma`` is the index
    of its separating comma (None for a last entry without one) and ``end``
    extends past the comma and any comment on the same line.
    """

    key: Optional[str]
    start: int
    value_end: int
    comma: Optional[int]
    end: int


@dataclass
class Block:
    """A brace-delimited block located in a source text."""

    name: str
    open: int
    close: int
    entries: List[Entry] = field(default_factory=list)

    def keys(self) -> List[str]:
        """Keys of all keyed entries, in source order."""
        return [entry.key for entry in self.entries if entry.key is not None]

    def find(self, key: str) -> Optional[int]:
        """Index of the entry with ``key``, or None."""
        for index, entry in enumerate(self.entries):
            if entry.key == key:
                return index
        return None


def _skip_string(text: str, index: int) -> int:
    quote = text[index]
    index += 1
    length = len(text)
    while index < length:
        char = text[index]
        if char == "\\":
            index += 2
            continue
        if char == quote:
            return index + 1
        if char == "\n" and quote != "`":
            return index
        index += 1
    return length


def _skip_comment(text: str, index: int) -> Optional[int]:
    if text.startswith("//", index):
        end = text.find("\n", index)
        return len(text) if end == -1 else end
    if text.startswith("/*", index):
        end = text.find("*/", index + 2)
        return len(text) if end == -1 else end + 2
    return None


def _non_code_spans(text: str) -> List[Tuple[int, int]]:
    spans = []
    index = 0
    length = len(text)
    while index < length:
        char = text[index]
        if char in QUOTES:
            end = _skip_string(text, index)
            spans.append((index, end))
            index = end
            continue
        if char == "/":
            end = _skip_comment(text, index)
            if end is not None:
                spans.append((index, end))
                index = end
                continue
        index += 1
    return spans


def _is_code(spans: List[Tuple[int, int]], position: int) -> bool:
    starts = [start for start, _ in spans]
    slot = bisect.bisect_right(starts, position) - 1
    return slot < 0 or not spans[slot][0] <= position < spans[slot][1]


def find_matching(text: str, open_index: int) -> int:
    """Index of the bracket closing the one at ``open_index``.

    Raises:
        PatchError: If brackets are unbalanced or the block never closes
    """
    stack = []
    index = open_index
    length = len(text)
    while index < length:
        char = text[index]
        if char in QUOTES:
            index = _skip_string(text, index)
            continue
        if char == "/":
            end = _skip_comment(text, index)
            if end is not None:
                index = end
                continue
        if char in _OPENERS:
            stack.append(_OPENERS[char])
        elif char in _CLOSERS:
            if not stack or stack[-1] != char:
                raise PatchError(f"Unbalanced '{char}' at offset {index}")
            stack.pop()
            if not stack:
                return index
        index += 1
    raise PatchError(f"Block opened at offset {open_index} is never closed")


def _skip_trivia(text: str, index: int, limit: int) -> int:
    while index < limit:
        if text[index].isspace():
            index += 1
            continue
        end = _skip_comment(text, index)
        if end is None:
            break
        index = end
    return index


def _entry_key(text: str, start: int, value_end: int) -> Optional[str]:
    segment = text[start:value_end]
    if not segment:
        raise PatchError(f"Empty entry at offset {start}")
    if segment.startswith("...") or segment.startswith("["):
        return None
    if segment[0] in QUOTES:
        end = _skip_string(text, start)
        return text[start + 1:end - 1]
    match = _IDENT.match(segment) or _NUMBER.match(segment)
    if match is None:
        raise PatchError(f"Cannot parse entry '{segment.strip()[:40]}'")
    return match.group()


def parse_entries(
    text: str,
    open_index: int,
    close_index: int,
    keyed: bool = True
) -> List[Entry]:
    """Split the body between two matching brackets into entries.

    Array elements (``keyed=False``) get no key, but an empty element is
    still rejected.
    """
    entries = []
    index = open_index + 1
    while True:
        index = _skip_trivia(text, index, close_index)
        if index >= close_index:
            break

        start = index
        depth = 0
        value_end = index
        comma = None
        while index < close_index:
            char = text[index]
            if char in QUOTES:
                index = _skip_string(text, index)
                value_end = index
                continue
            if char == "/":
                end = _skip_comment(text, index)
                if end is not None:
                    index = end
                    continue
            if char in _OPENERS:
                depth += 1
            elif char in _CLOSERS:
                depth -= 1
            elif char == "," and depth == 0:
                comma = index
                break
            if not char.isspace():
                value_end = index + 1
            index += 1

        end = comma + 1 if comma is not None else value_end
        end = _trailing_comment_end(text, end, close_index)
        if keyed:
            key = _entry_key(text, start, value_end)
        elif value_end == start:
            raise PatchError(f"Empty element at offset {start}")
        else:
            key = None
        entries.append(Entry(key, start, value_end, comma, end))

        if comma is None:
            break
        index = end

    return entries


def _trailing_comment_end(text: str, position: int, limit: int) -> int:
    cursor = position
    while cursor < limit and text[cursor] in " \t":
        cursor += 1
    if text.startswith("//", cursor):
        line_end = text.find("\n", cursor)
        return limit if line_end == -1 or line_end > limit else line_end
    if text.startswith("/*", cursor):
        comment_end = text.find("*/", cursor)
        if comment_end != -1 and "\n" not in text[cursor:comment_end]:
            return comment_end + 2
    return position


def find_object_block(text: str, name: str) -> Block:
    """Locate ``const <name> = { ... }`` (or ``let``/``var``).

    Raises:
        PatchError: If no such assignment exists outside comments and strings
    """
    pattern = re.compile(r"\b(?:const|let|var)\s+" + re.escape(name) + r"\s*=\s*\{")
    spans = _non_code_spans(text)
    for match in pattern.finditer(text):
        if not _is_code(spans, match.start()):
            continue
        open_index = match.end() - 1
        try:
            close_index = find_matching(text, open_index)
            entries = parse_entries(text, open_index, close_index)
        except PatchError as e:
            e.anchor = e.anchor or name
            raise
        return Block(name, open_index, close_index, entries)
    raise PatchError(f"Object literal '{name}' not found", anchor=name)


def find_import_block(text: str, source: str = DEFAULT_IMPORT_SOURCE) -> Block:
    """Locate ``import { ... } from '<source>'`` where ``source`` is a regex.

    Raises:
        PatchError: If the import statement is absent
    """
    pattern = re.compile(r"\bimport\s*\{([^}]*)\}\s*from\s*(['\"])" + source + r"\2")
    spans = _non_code_spans(text)
    for match in pattern.finditer(text):
        if not _is_code(spans, match.start()):
            continue
        open_index = match.start(1) - 1
        close_index = match.end(1)
        try:
            entries = parse_entries(text, open_index, close_index)
        except PatchError as e:
            e.anchor = e.anchor or "import"
            raise
        return Block("import", open_index, close_index, entries)
    raise PatchError("Import list from the provider index not found", anchor="import")


def has_object_block(text: str, name: str) -> bool:
    """Whether ``text`` assigns an object literal to ``name``."""
    try:
        find_object_block(text, name)
    except PatchError:
        return False
    return True


def has_import_block(text: str, source: str = DEFAULT_IMPORT_SOURCE) -> bool:
    """Whether ``text`` imports a brace list from ``source``."""
    try:
        find_import_block(text, source)
    except PatchError:
        return False
    return True


def _newline(text: str) -> str:
    return "\r\n" if "\r\n" in text else "\n"


def _line_start(text: str, position: int) -> int:
    return text.rfind("\n", 0, position) + 1


def _line_end(text: str, position: int) -> int:
    end = text.find("\n", position)
    if end == -1:
        return len(text)
    if end > 0 and text[end - 1] == "\r":
        return end - 1
    return end


def _after_line(text: str, position: int) -> int:
    end = text.find("\n", position)
    return len(text) if end == -1 else end + 1


def _indent_at(text: str, position: int) -> str:
    start = _line_start(text, position)
    line = text[start:position]
    return line[:len(line) - len(line.lstrip(" \t"))]


def indent_unit(text: str) -> str:
    """Indentation step used by the file: a tab or the smallest space run."""
    widths = []
    for line in text.splitlines():
        stripped = line.lstrip(" \t")
        if not stripped or stripped == line:
            continue
        if line.startswith("\t"):
            return "\t"
        widths.append(len(line) - len(stripped))
    widths = [width for width in widths if width >= 2]
    return " " * min(widths) if widths else "    "


def format_key(key: str) -> str:
    """Object key as written in source: bare when it is an identifier."""
    if _IDENT.fullmatch(key):
        return key
    return "'" + key.replace("\\", "\\\\").replace("'", "\\'") + "'"


def insert_entry(
    text: str,
    block: Block,
    key: str,
    entry_text: str,
    comment: Optional[str] = None
) -> Tuple[str, bool]:
    """Add an entry at the end of ``block`` unless ``key`` is already present.

    Args:
        text: Full source text
        block: Block located in ``text``
        key: Key used for the presence check
        entry_text: Source of the entry, without separator
        comment: Optional line comment appended in multi-line blocks

    Returns:
        The new text and whether it changed
    """
    if block.find(key) is not None:
        return text, False
    return append_entry(text, block, entry_text, comment), True


def _close_indent(text: str, block: Block) -> str:
    close_line = text[_line_start(text, block.close):block.close]
    if not close_line.strip():
        return _indent_at(text, block.close)
    return _indent_at(text, block.open)


def entry_indent(text: str, block: Block) -> str:
    """Indentation :func:`append_entry` gives a new line in ``block``."""
    if block.entries and "\n" in text[block.open + 1:block.close]:
        return _indent_at(text, block.entries[-1].start)
    return _close_indent(text, block) + indent_unit(text)


def append_entry(
    text: str,
    block: Block,
    entry_text: str,
    comment: Optional[str] = None
) -> str:
    """Add ``entry_text`` after the last entry of ``block``.

    Multi-line blocks get the entry on its own line; single-line blocks get
    it after a ``", "`` separator.
    """
    newline = _newline(text)
    body = text[block.open + 1:block.close]
    close_line = text[_line_start(text, block.close):block.close]
    close_indent = _close_indent(text, block)
    suffix = f" // {comment}" if comment else ""

    if not block.entries:
        if body.strip():
            raise PatchError(f"Block '{block.name}' holds content that is not an entry",
                             anchor=block.name)
        if block.name == "import" and "\n" not in body:
            new_body = f" {entry_text} "
        elif "\n" in body:
            new_body = f"{newline}{close_indent}{indent_unit(text)}{entry_text}{suffix}{body}"
        else:
            new_body = (f"{newline}{close_indent}{indent_unit(text)}{entry_text}{suffix}"
                        f"{newline}{close_indent}")
        return text[:block.open + 1] + new_body + text[block.close:]

    last = block.entries[-1]
    last_line_end = _line_end(text, last.end)

    if "\n" in body and last_line_end < block.close and not close_line.strip():
        indent = _indent_at(text, last.start)
        if last.comma is not None:
            addition = f"{newline}{indent}{entry_text},{suffix}"
            return text[:last_line_end] + addition + text[last_line_end:]
        addition = f"{newline}{indent}{entry_text}{suffix}"
        text = text[:last_line_end] + addition + text[last_line_end:]
        return text[:last.value_end] + "," + text[last.value_end:]

    if last.comma is not None:
        position = last.comma + 1
        return text[:position] + f" {entry_text}," + text[position:]
    return text[:last.value_end] + f", {entry_text}" + text[last.value_end:]


def remove_entry(text: str, block: Block, key: str) -> Tuple[str, bool]:
    """Remove the entry for ``key`` from ``block``.

    An entry alone on its lines is removed with those lines; otherwise only
    the entry and one separator go. A block left with only the whitespace a
    first insertion would have produced collapses back to ``{}``.

    Returns:
        The new text and whether it changed
    """
    index = block.find(key)
    if index is None:
        return text, False
    return remove_entry_at(text, block, index), True


def remove_entry_at(text: str, block: Block, index: int) -> str:
    """Remove the ``index``-th entry of ``block``; see :func:`remove_entry`."""
    entries = block.entries
    entry = entries[index]
    previous = entries[index - 1] if index > 0 else None
    following = entries[index + 1] if index + 1 < len(entries) else None

    line_start = _line_start(text, entry.start)
    line_after = _after_line(text, entry.end)
    own_lines = (
        not text[line_start:entry.start].strip()
        and not text[entry.end:_line_end(text, entry.end)].strip()
        and line_after <= block.close
        and (previous is None or previous.end <= line_start)
        and (following is None or following.start >= line_after)
    )

    if own_lines:
        cuts = [(line_start, line_after)]
        if following is None and entry.comma is None and previous is not None \
                and previous.comma is not None:
            cuts.append((previous.comma, previous.comma + 1))
    elif entry.comma is not None:
        if following is not None:
            cuts = [(entry.start, following.start)]
        elif previous is not None:
            cuts = [(previous.comma + 1, entry.comma + 1)]
        else:
            cuts = [(entry.start, entry.comma + 1)]
    elif previous is not None:
        cuts = [(previous.value_end, entry.value_end)]
    else:
        cuts = [(entry.start, entry.value_end)]

    removed = 0
    for start, end in sorted(cuts, reverse=True):
        text = text[:start] + text[end:]
        removed += end - start

    if len(entries) == 1:
        close_index = block.close - removed
        body = text[block.open + 1:close_index]
        close_indent = _indent_at(text, close_index)
        if not body.strip() and ("\n" not in body or body == _newline(text) + close_indent):
            text = text[:block.open + 1] + text[close_index:]

    return text


def ensure_object_entry(
    text: str,
    block_name: str,
    key: str,
    value: str,
    comment: Optional[str] = None
) -> Tuple[str, bool]:
    """Add ``key: value`` to the object literal ``block_name`` if missing."""
    block = find_object_block(text, block_name)
    return insert_entry(text, block, key, f"{format_key(key)}: {value}", comment)


def remove_object_entry(text: str, block_name: str, key: str) -> Tuple[str, bool]:
    """Remove ``key`` from the object literal ``block_name``."""
    return remove_entry(text, find_object_block(text, block_name), key)


def object_entry_value(text: str, block_name: str, key: str) -> Optional[str]:
    """Source text of the value stored under ``key``, or None."""
    block = find_object_block(text, block_name)
    index = block.find(key)
    if index is None:
        return None
    entry = block.entries[index]
    segment = text[entry.start:entry.value_end]
    _, separator, value = segment.partition(":")
    return value.strip() if separator else None


def ensure_import_name(
    text: str,
    name: str,
    source: str = DEFAULT_IMPORT_SOURCE
) -> Tuple[str, bool]:
    """Add ``name`` to the import list from ``source`` if missing."""
    return insert_entry(text, find_import_block(text, source), name, name)


def remove_import_name(
    text: str,
    name: str,
    source: str = DEFAULT_IMPORT_SOURCE
) -> Tuple[str, bool]:
    """Remove ``name`` from the import list from ``source``."""
    return remove_entry(text, find_import_block(text, source), name)


def _export_pattern(class_name: str, module: str) -> "re.Pattern[str]":
    return re.compile(
        r"^[ \t]*export\s*\{\s*" + re.escape(class_name) + r"\s*\}\s*from\s*(['\"])\./"
        + re.escape(module) + r"(?:\.js)?\1[ \t]*;?[ \t\r]*$",
        re.MULTILINE,
    )


def export_line(class_name: str, module: str) -> str:
    """Aggregator line re-exporting ``class_name`` from ``./<module>.js``."""
    return f"export {{ {class_name} }} from './{module}.js';"


def ensure_export_line(text: str, class_name: str, module: str) -> Tuple[str, bool]:
    """Append the export line for ``class_name`` unless an equivalent one exists."""
    if _export_pattern(class_name, module).search(text):
        return text, False
    line = export_line(class_name, module)
    newline = _newline(text)
    if not text:
        return line + newline, True
    if text.endswith("\n"):
        return text + line + newline, True
    return text + newline + line, True


def remove_export_line(text: str, class_name: str, module: str) -> Tuple[str, bool]:
    """Remove the export line for ``class_name``; the inverse of :func:`ensure_export_line`."""
    match = _export_pattern(class_name, module).search(text)
    if match is None:
        return text, False
    start, end = match.start(), match.end()
    if end < len(text):
        end = _after_line(text, end)
    elif start > 0:
        start -= 2 if text[start - 2:start] == "\r\n" else 1
    return text[:start] + text[end:], True


# JSON documents


def find_json_object(text: str) -> Block:
    """The top-level object of a JSON document.

    Raises:
        PatchError: If the document does not start with an object
    """
    start = _skip_trivia(text, 0, len(text))
    if start >= len(text) or text[start] != "{":
        raise PatchError("Expected a JSON object at the top level", anchor="$")
    close = find_matching(text, start)
    return Block("$", start, close, parse_entries(text, start, close))


def json_value_start(text: str, entry: Entry) -> int:
    """Offset of the value of a ``"key": value`` member."""
    colon = _skip_trivia(text, _skip_string(text, entry.start), entry.value_end)
    if colon >= entry.value_end or text[colon] != ":":
        raise PatchError(f"Member '{entry.key}' has no value", anchor=entry.key)
    return _skip_trivia(text, colon + 1, entry.value_end)


def find_json_block(text: str, path: Sequence[str]) -> Optional[Block]:
    """Object or array reached by following member ``path`` from the root.

    Returns:
        The block, or None when a member along the path is missing

    Raises:
        PatchError: If a value along the path is not an object or array
    """
    block = find_json_object(text)
    for key in path:
        index = block.find(key)
        if index is None:
            return None
        start = json_value_start(text, block.entries[index])
        if text[start] not in "{[":
            raise PatchError(f"'{key}' is not an object or array", anchor=key)
        close = find_matching(text, start)
        block = Block(key, start, close, parse_entries(text, start, close, text[start] == "{"))
    return block


def render_json(value: Any, text: str, indent: str, inline: bool = False) -> str:
    """Serialize ``value`` for insertion into ``text`` at a line indented by ``indent``."""
    if inline:
        return json.dumps(value, ensure_ascii=False)
    rendered = json.dumps(value, indent=indent_unit(text), ensure_ascii=False)
    return rendered.replace("\n", _newline(text) + indent)


def json_element_values(text: str, block: Block) -> List[Any]:
    """Parsed values of the elements of an array block."""
    try:
        return [json.loads(text[e.start:e.value_end]) for e in block.entries]
    except json.JSONDecodeError as e:
        raise PatchError(f"Invalid JSON in '{block.name}': {e}", anchor=block.name)


def replace_json_span(text: str, start: int, end: int, value: Any) -> str:
    """Replace the value at ``start``..``end``, keeping inline values inline."""
    inline = "\n" not in text[start:end]
    rendered = render_json(value, text, _indent_at(text, start), inline)
    return text[:start] + rendered + text[end:]


def set_json_member(text: str, block: Block, key: str, value: Any) -> Tuple[str, bool]:
    """Set member ``key`` of an object block to ``value``.

    Only the member's own span changes; an equal value leaves the text as is.
    """
    index = block.find(key)
    if index is None:
        inline = bool(block.entries) and "\n" not in text[block.open:block.close]
        member = f"{json.dumps(key, ensure_ascii=False)}: " \
            f"{render_json(value, text, entry_indent(text, block), inline)}"
        return append_entry(text, block, member), True

    entry = block.entries[index]
    start = json_value_start(text, entry)
    try:
        unchanged = json.loads(text[start:entry.value_end]) == value
    except json.JSONDecodeError as e:
        raise PatchError(f"Invalid JSON value for '{key}': {e}", anchor=key)
    if unchanged:
        return text, False
    return replace_json_span(text, start, entry.value_end, value), True


def remove_json_member(text: str, block: Block, key: str) -> Tuple[str, bool]:
    """Remove member ``key`` of an object block with its separator."""
    return remove_entry(text, block, key)


def append_json_element(text: str, block: Block, value: Any) -> str:
    """Append ``value`` to an array block."""
    inline = bool(block.entries) and "\n" not in text[block.open:block.close]
    return append_entry(text, block, render_json(value, text, entry_indent(text, block), inline))


def dump_json_document(data: Any) -> str:
    """Text of a JSON file written from scratch."""
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"
