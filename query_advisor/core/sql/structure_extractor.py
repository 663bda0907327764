# query_advisor/core/sql/structure_extractor.py

"""
Best-effort structural decomposition of SQL text.

This is a regex / scan based extractor, not a grammar. It must never fail:
anything it cannot recognise simply leaves the corresponding field empty.

Known limitations:
- comments are stripped with sqlparse before scanning, but keywords inside
  string literals can still shift clause boundaries
- only the first occurrence of each clause keyword in a SELECT scope is used,
  so the branches of a UNION are not analysed separately
"""

import logging
import re
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional, Any, Tuple

import sqlparse

logger = logging.getLogger(__name__)

AGGREGATE_FUNCTIONS = (
    "count", "sum", "avg", "min", "max", "group_concat", "string_agg",
    "array_agg", "listagg", "stddev", "variance", "median",
)

CLAUSE_RE = re.compile(
    r"\b(select|from|where|group\s+by|having|order\s+by|limit|offset|fetch"
    r"|union|intersect|except|window|returning)\b",
    re.IGNORECASE,
)

JOIN_RE = re.compile(
    r"\b(?:natural\s+)?(?:(?:inner|cross|left|right|full)\s+)?(?:outer\s+)?join\b",
    re.IGNORECASE,
)

_IDENT_PART = r'(?:[A-Za-z_][\w$]*|"[^"]+"|`[^`]+`|\[[^\]]+\])'
TABLE_REF_RE = re.compile(
    rf"^\s*(?:lateral\s+|only\s+)?(?P<name>{_IDENT_PART}(?:\s*\.\s*{_IDENT_PART})*)"
    rf"(?:\s+(?:as\s+)?(?P<alias>[A-Za-z_][\w$]*))?",
    re.IGNORECASE,
)
DERIVED_TABLE_RE = re.compile(
    r"^\s*(?:lateral\s+)?\([^()]*\)\s*(?:as\s+)?(?P<alias>[A-Za-z_][\w$]*)?",
    re.IGNORECASE,
)

_COLUMN = r"(?:[A-Za-z_][\w$]*\.)?[A-Za-z_][\w$]*"
_OPERATOR = (
    r"(?P<op>=|<>|!=|<=|>=|<|>|\bnot\s+i?like\b|\bi?like\b|\bnot\s+in\b|\bin\b"
    r"|\bnot\s+between\b|\bbetween\b|\bis\b)"
)
FUNCTION_COLUMN_RE = re.compile(
    rf"\b(?P<fn>[A-Za-z_][\w$]*)\s*\(\s*(?P<col>{_COLUMN})\s*(?:,[^()]*)?\)\s*{_OPERATOR}",
    re.IGNORECASE,
)
PLAIN_COLUMN_RE = re.compile(rf"(?<![\w$.'\"])(?P<col>{_COLUMN})\s*{_OPERATOR}", re.IGNORECASE)
LEADING_WILDCARD_RE = re.compile(r"\s*[nN]?'%")

AGGREGATE_CALL_RE = re.compile(
    rf"\b(?P<fn>{'|'.join(AGGREGATE_FUNCTIONS)})\s*\(\s*(?P<distinct>distinct\b)?",
    re.IGNORECASE,
)
WINDOW_RE = re.compile(r"\bover\s*\(", re.IGNORECASE)
SUBQUERY_RE = re.compile(r"\(\s*select\b", re.IGNORECASE)
COMMENT_MARKER_RE = re.compile(r"--|/\*|#")
INDEX_HINT_RE = re.compile(
    r"\b(?:use|force|ignore)\s+index\b"
    r"|\bwith\s*\(\s*(?:nolock\s*,\s*)?index\s*[(=]"
    r"|/\*\+[^*]*\bindex\s*\(",
    re.IGNORECASE,
)
SELECT_PREFIX_RE = re.compile(
    r"^\s*(?:distinct\s+on\s*\([^()]*\)|distinct|all)?\s*(?:top\s+\(?\s*\d+\s*\)?\s*(?:percent\s+)?)?",
    re.IGNORECASE,
)
STAR_ITEM_RE = re.compile(rf"^(?:{_IDENT_PART}\s*\.\s*)?\*$")
PLAIN_SELECT_ITEM_RE = re.compile(
    rf"^(?P<col>{_COLUMN})(?:\s+(?:as\s+)?[A-Za-z_][\w$]*)?$", re.IGNORECASE
)
ORDER_SUFFIX_RE = re.compile(r"(?:\s+(?:asc|desc))?(?:\s+nulls\s+(?:first|last))?\s*$", re.IGNORECASE)
LIMIT_RE = re.compile(r"\blimit\b|\bfetch\s+(?:first|next)\b|^\s*select\s+(?:distinct\s+)?top\b", re.IGNORECASE)

# Words that can follow a table reference but are never its alias
NON_ALIAS_WORDS = {
    "as", "on", "using", "where", "join", "inner", "left", "right", "full", "cross",
    "natural", "outer", "group", "order", "limit", "having", "union", "window",
    "lateral", "tablesample", "with", "use", "force", "ignore", "offset",
    "fetch", "set", "returning", "intersect", "except",
}
# Identifiers PLAIN_COLUMN_RE can pick up that are SQL words, not columns
SQL_WORDS = {
    "and", "or", "not", "where", "null", "true", "false", "exists", "case",
    "when", "then", "else", "end", "between", "like", "ilike", "in", "is",
    "any", "all", "some", "select", "from", "escape",
}
NON_FUNCTIONS = {"in", "exists", "any", "all", "some", "not", "and", "or", "values", "select"}


@dataclass
class JoinInfo:
    left_table: str
    right_table: str
    join_type: str = "JOIN"
    has_on_clause: bool = False
    has_using_clause: bool = False


@dataclass
class WhereColumn:
    name: str
    wrapped_in_function: bool = False
    leading_wildcard_like: bool = False

    @property
    def column(self) -> str:
        """Column name without its table qualifier."""
        return self.name.split(".")[-1]


@dataclass
class AggregateUsage:
    function: str
    distinct: bool = False


@dataclass
class SqlStructure:
    """Flat record of the structural signals the detection rules need."""
    tables: List[str] = field(default_factory=list)
    aliases: Dict[str, str] = field(default_factory=dict)
    joins: List[JoinInfo] = field(default_factory=list)
    where_columns: List[WhereColumn] = field(default_factory=list)
    has_where: bool = False
    has_or_in_where: bool = False
    has_index_hint: bool = False
    select_columns: List[str] = field(default_factory=list)
    select_has_aggregate: bool = False
    group_by_columns: List[str] = field(default_factory=list)
    order_by_columns: List[str] = field(default_factory=list)
    has_limit: bool = False
    aggregates: List[AggregateUsage] = field(default_factory=list)
    subquery_count: int = 0
    selects_all_columns: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def extract(sql: Any) -> SqlStructure:
    """
    Turn SQL text into a SqlStructure. Total: never raises.

    Args:
        sql: SQL text. Bytes are decoded leniently; any other type yields an
            empty structure.
    """
    if isinstance(sql, (bytes, bytearray)):
        sql = bytes(sql).decode("utf-8", errors="replace")
    if not isinstance(sql, str) or not sql.strip():
        return SqlStructure()

    try:
        return _extract(sql)
    except Exception as e:
        # Heuristic extraction must not take the request down with it
        logger.warning(f"Structure extraction failed, returning empty structure: {e}")
        return SqlStructure()


def _extract(sql: str) -> SqlStructure:
    structure = SqlStructure()
    structure.has_index_hint = bool(INDEX_HINT_RE.search(sql))

    text = _normalize(sql)
    if not text:
        return structure

    # Outer scope: subquery bodies blanked, clause boundaries on the masked view
    view, scopes = _scan_scopes(text)
    structure.subquery_count = len(scopes)
    masked = _mask_nested(text)
    clauses = _split_clauses(masked)

    _collect_tables_and_joins(text, masked, clauses, structure)
    for inner, inner_masked in scopes:
        _collect_tables_and_joins(inner, inner_masked, _split_clauses(inner_masked), structure)

    if "select" in clauses:
        _collect_select_list(text, masked, clauses["select"], structure)

    if "where" in clauses:
        start, end = clauses["where"]
        structure.has_where = True
        where_view = view[start:end]
        without_literals = re.sub(r"'[^']*'", "''", where_view)
        structure.has_or_in_where = bool(re.search(r"\bor\b", without_literals, re.IGNORECASE))
        structure.where_columns = _collect_where_columns(where_view)

    if "group by" in clauses:
        start, end = clauses["group by"]
        structure.group_by_columns = _split_top_level(text[start:end], masked[start:end])

    if "order by" in clauses:
        start, end = clauses["order by"]
        items = (ORDER_SUFFIX_RE.sub("", item) for item in _split_top_level(text[start:end], masked[start:end]))
        structure.order_by_columns = [item for item in items if item]

    structure.has_limit = bool(LIMIT_RE.search(masked))
    structure.aggregates = _collect_aggregates(text)

    logger.debug(
        f"Extracted structure: {len(structure.tables)} tables, {len(structure.joins)} joins, "
        f"{len(structure.where_columns)} where columns, {structure.subquery_count} subqueries"
    )
    return structure


def _normalize(sql: str) -> str:
    """Strip comments, collapse whitespace and drop trailing semicolons."""
    text = sql
    if COMMENT_MARKER_RE.search(sql):
        try:
            text = sqlparse.format(sql, strip_comments=True)
        except Exception as e:
            logger.debug(f"sqlparse could not strip comments, scanning raw text: {e}")
    text = re.sub(r"\s+", " ", text).strip()
    return text.rstrip("; ").strip()


def _mask_nested(text: str) -> str:
    """
    Blank out everything inside parentheses and single-quoted literals.

    Only the outermost parentheses survive. The result has the same length as
    the input so offsets found on it can be used to slice the original text.
    Unbalanced parentheses are tolerated.
    """
    out = []
    depth = 0
    in_literal = False
    for ch in text:
        if in_literal:
            if ch == "'":
                in_literal = False
                out.append(ch if depth == 0 else " ")
            else:
                out.append(" ")
        elif ch == "'":
            in_literal = True
            out.append(ch if depth == 0 else " ")
        elif ch == "(":
            out.append(ch if depth == 0 else " ")
            depth += 1
        elif ch == ")":
            depth = max(0, depth - 1)
            out.append(ch if depth == 0 else " ")
        else:
            out.append(" " if depth > 0 else ch)
    return "".join(out)


def _scan_scopes(text: str) -> Tuple[str, List[Tuple[str, str]]]:
    """
    Single pass over the text that resolves every ``( SELECT ... )``.

    Returns the text with subquery bodies blanked (same length, the
    parentheses themselves kept) and, for each subquery in opening order, its
    own level as a (text, masked) pair. Nested parentheses inside a scope are
    collapsed to ``()`` and the masked copy blanks literal contents. Every
    character belongs to at most one scope, so deep nesting stays linear.
    """
    view = []
    scopes: List[Tuple[List[str], List[str]]] = []
    stack: List[Optional[int]] = []  # scope index per open paren, None for plain groups
    open_subqueries = 0
    in_literal = False

    for pos, ch in enumerate(text):
        owner = scopes[stack[-1]] if stack and stack[-1] is not None else None
        if in_literal or ch == "'":
            if ch == "'":
                in_literal = not in_literal
            view.append(" " if open_subqueries else ch)
            if owner is not None:
                owner[0].append(ch)
                owner[1].append(ch if ch == "'" else " ")
        elif ch == "(":
            view.append(" " if open_subqueries else ch)
            if owner is not None:
                owner[0].append(ch)
                owner[1].append(ch)
            if SUBQUERY_RE.match(text, pos):
                scopes.append(([], []))
                stack.append(len(scopes) - 1)
                open_subqueries += 1
            else:
                stack.append(None)
        elif ch == ")" and stack:
            if stack.pop() is not None:
                open_subqueries -= 1
            view.append(" " if open_subqueries else ch)
            parent = scopes[stack[-1]] if stack and stack[-1] is not None else None
            if parent is not None:
                parent[0].append(ch)
                parent[1].append(ch)
        else:
            view.append(" " if open_subqueries else ch)
            if owner is not None:
                owner[0].append(ch)
                owner[1].append(ch)

    return "".join(view), [("".join(chars), "".join(masked)) for chars, masked in scopes]


def _split_clauses(masked: str) -> Dict[str, Tuple[int, int]]:
    """Map each clause keyword to the (start, end) offsets of its body."""
    matches = list(CLAUSE_RE.finditer(masked))
    clauses: Dict[str, Tuple[int, int]] = {}
    for i, match in enumerate(matches):
        name = re.sub(r"\s+", " ", match.group(1).lower())
        if name in clauses:
            continue
        end = matches[i + 1].start() if i + 1 < len(matches) else len(masked)
        clauses[name] = (match.end(), end)
    return clauses


def _top_level_spans(masked_body: str) -> List[Tuple[int, int]]:
    """Offsets of the comma-separated items of a clause body, whitespace trimmed."""
    spans = []
    last = 0
    for pos, ch in enumerate(masked_body + ","):
        if ch != ",":
            continue
        start, end = last, pos
        while start < end and masked_body[start].isspace():
            start += 1
        while end > start and masked_body[end - 1].isspace():
            end -= 1
        if start < end:
            spans.append((start, end))
        last = pos + 1
    return spans


def _split_top_level(body: str, masked_body: str) -> List[str]:
    """Split a clause body on commas that are not nested in parentheses or literals."""
    return [body[start:end] for start, end in _top_level_spans(masked_body)]


def _clean_identifier(name: str) -> str:
    return re.sub(r"\s*\.\s*", ".", name.strip())


def _parse_table_ref(segment: str, masked_segment: str) -> Tuple[Optional[str], Optional[str]]:
    """Return (table, alias) for one FROM item or JOIN target."""
    if masked_segment.lstrip().lower().startswith(("(", "lateral (", "lateral(")):
        derived = DERIVED_TABLE_RE.match(masked_segment)
        alias = derived.group("alias") if derived else None
        if alias and alias.lower() in NON_ALIAS_WORDS:
            alias = None
        return None, alias

    match = TABLE_REF_RE.match(segment)
    if not match:
        return None, None
    table = _clean_identifier(match.group("name"))
    if table.lower() in NON_ALIAS_WORDS or table.lower() == "select":
        return None, None
    alias = match.group("alias")
    if alias and alias.lower() in NON_ALIAS_WORDS:
        alias = None
    return table, alias


def _register_table(structure: SqlStructure, table: Optional[str], alias: Optional[str]) -> Optional[str]:
    """Record a table reference and return the name joins should use for it."""
    if table and table.lower() not in (t.lower() for t in structure.tables):
        structure.tables.append(table)
    if alias:
        structure.aliases.setdefault(alias, table or "(subquery)")
    return table or alias


def _collect_tables_and_joins(text: str, masked: str, clauses: Dict[str, Tuple[int, int]],
                              structure: SqlStructure) -> None:
    if "from" not in clauses:
        return
    start, end = clauses["from"]
    body, masked_body = text[start:end], masked[start:end]

    join_matches = list(JOIN_RE.finditer(masked_body))
    head_end = join_matches[0].start() if join_matches else len(body)

    previous = None
    for item_start, item_end in _top_level_spans(masked_body[:head_end]):
        table, alias = _parse_table_ref(body[item_start:item_end], masked_body[item_start:item_end])
        previous = _register_table(structure, table, alias) or previous

    for i, match in enumerate(join_matches):
        seg_end = join_matches[i + 1].start() if i + 1 < len(join_matches) else len(body)
        segment, masked_segment = body[match.end():seg_end], masked_body[match.end():seg_end]
        table, alias = _parse_table_ref(segment, masked_segment)
        right = _register_table(structure, table, alias) or "(unknown)"
        structure.joins.append(JoinInfo(
            left_table=previous or "(unknown)",
            right_table=right,
            join_type=re.sub(r"\s+", " ", match.group(0)).upper(),
            has_on_clause=bool(re.search(r"\bon\b", masked_segment, re.IGNORECASE)),
            has_using_clause=bool(re.search(r"\busing\s*\(", masked_segment, re.IGNORECASE)),
        ))
        previous = right


def _collect_select_list(text: str, masked: str, span: Tuple[int, int], structure: SqlStructure) -> None:
    start, end = span
    prefix = SELECT_PREFIX_RE.match(masked[start:end])
    if prefix:
        start += prefix.end()
    body, masked_body = text[start:end], masked[start:end]

    for item in _split_top_level(body, masked_body):
        if STAR_ITEM_RE.match(item):
            structure.selects_all_columns = True
            continue
        if AGGREGATE_CALL_RE.search(item):
            if not WINDOW_RE.search(item):
                structure.select_has_aggregate = True
            continue
        plain = PLAIN_SELECT_ITEM_RE.match(item)
        if plain and plain.group("col").lower() not in SQL_WORDS:
            structure.select_columns.append(plain.group("col"))


def _collect_where_columns(where_view: str) -> List[WhereColumn]:
    found = []  # (position, name, wrapped, wildcard)

    for match in FUNCTION_COLUMN_RE.finditer(where_view):
        if match.group("fn").lower() in NON_FUNCTIONS:
            continue
        found.append((match.start("col"), match.group("col"), True, _is_leading_wildcard(match, where_view)))

    for match in PLAIN_COLUMN_RE.finditer(where_view):
        if match.group("col").lower() in SQL_WORDS:
            continue
        found.append((match.start("col"), match.group("col"), False, _is_leading_wildcard(match, where_view)))

    columns: Dict[str, WhereColumn] = {}
    for _, name, wrapped, wildcard in sorted(found, key=lambda entry: entry[0]):
        key = name.lower()
        if key not in columns:
            columns[key] = WhereColumn(name=name)
        columns[key].wrapped_in_function |= wrapped
        columns[key].leading_wildcard_like |= wildcard
    return list(columns.values())


def _is_leading_wildcard(match: re.Match, text: str) -> bool:
    return "like" in match.group("op").lower() and bool(LEADING_WILDCARD_RE.match(text, match.end()))


def _collect_aggregates(text: str) -> List[AggregateUsage]:
    usages: List[AggregateUsage] = []
    seen = set()
    for match in AGGREGATE_CALL_RE.finditer(text):
        key = (match.group("fn").upper(), bool(match.group("distinct")))
        if key not in seen:
            seen.add(key)
            usages.append(AggregateUsage(function=key[0], distinct=key[1]))
    return usages
