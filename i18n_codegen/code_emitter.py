"""
Render parsed translations into a single Scala source file.

Translation keys are split on '.'; every segment but the last becomes a nested
`object` and the last one becomes a `def`. Segments are turned into Scala
identifiers with a fixed, reversible substitution table modelled on Scala's
own NameTransformer:

    ~ $tilde   = $eq      < $less    > $greater  ! $bang    # $hash
    % $percent ^ $up      & $amp     | $bar      * $times   / $div
    + $plus    - $minus   : $colon   \\ $bslash  ? $qmark   @ $at
    space $space          $ $$

Any other character outside [A-Za-z0-9_], and a leading digit, becomes `$x`
followed by six lowercase hex digits of its code point. Scala reserved words
are wrapped in backticks.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from i18n_codegen.errors import ConfigError, UnrenderableKeyError
from i18n_codegen.models import (
    GeneratedDocument,
    Literal,
    LocaleCode,
    ParsedEntry,
    PLURAL_CATEGORIES,
    PlaceholderToken,
    PluralBlock,
    PluralCount,
    ValueKind,
    Variable,
)

logger = logging.getLogger(__name__)

HEADER = "// Code generated by i18n-codegen from Lokalise. DO NOT EDIT."
INDENT = "  "

SCALA_RESERVED = frozenset([
    "abstract", "case", "catch", "class", "def", "do", "else", "enum", "export", "extends",
    "false", "final", "finally", "for", "forSome", "given", "if", "implicit", "import", "lazy",
    "macro", "match", "new", "null", "object", "override", "package", "private", "protected",
    "return", "sealed", "super", "then", "this", "throw", "trait", "true", "try", "type",
    "val", "var", "while", "with", "yield", "_",
])

ESCAPE_TABLE: Dict[str, str] = {
    '~': 'tilde', '=': 'eq', '<': 'less', '>': 'greater', '!': 'bang', '#': 'hash',
    '%': 'percent', '^': 'up', '&': 'amp', '|': 'bar', '*': 'times', '/': 'div',
    '+': 'plus', '-': 'minus', ':': 'colon', '\\': 'bslash', '?': 'qmark', '@': 'at',
    ' ': 'space', '$': '$',
}
UNESCAPE_TABLE: Dict[str, str] = {code: char for char, code in ESCAPE_TABLE.items()}
HEX_ESCAPE = 'x'
HEX_WIDTH = 6

# Key segments and variables that would shadow the generated types inside the I18n object.
GENERATED_NAMES = frozenset(["Locale", "Cardinality"])

SCALA_TYPES = {ValueKind.STRING: "String", ValueKind.NUMBER: "Long"}

_IDENTIFIER_SAFE = re.compile(r'[A-Za-z0-9_]')
_PLAIN_IDENTIFIER = re.compile(r'[A-Za-z_][A-Za-z0-9_]*\Z')


@dataclass(frozen=True)
class EmitSettings:
    scala_package: str = "dk.undo.i18n"
    object_name: str = "I18n"


def escape_segment(segment: str) -> str:
    """Turn one key segment into a syntactically valid Scala identifier."""
    if segment in SCALA_RESERVED:
        return f"`{segment}`"
    out = []
    for index, char in enumerate(segment):
        if _IDENTIFIER_SAFE.match(char) and not (index == 0 and char.isdigit()):
            out.append(char)
        elif char in ESCAPE_TABLE:
            out.append('$' + ESCAPE_TABLE[char])
        else:
            out.append(f"${HEX_ESCAPE}{ord(char):0{HEX_WIDTH}x}")
    return ''.join(out)


def unescape_segment(identifier: str) -> str:
    """Exact inverse of escape_segment."""
    if len(identifier) >= 2 and identifier.startswith('`') and identifier.endswith('`'):
        return identifier[1:-1]
    out = []
    index = 0
    while index < len(identifier):
        char = identifier[index]
        if char != '$':
            out.append(char)
            index += 1
            continue
        rest = identifier[index + 1:]
        if rest.startswith(HEX_ESCAPE):
            digits = rest[1:1 + HEX_WIDTH]
            if len(digits) != HEX_WIDTH:
                raise ValueError(f"Truncated escape in identifier '{identifier}'")
            out.append(chr(int(digits, 16)))
            index += 2 + HEX_WIDTH
            continue
        # Codes are prefix-free, so at most one can match here.
        code = next((c for c in UNESCAPE_TABLE if rest.startswith(c)), None)
        if code is None:
            raise ValueError(f"Unknown escape in identifier '{identifier}' at {index}")
        out.append(UNESCAPE_TABLE[code])
        index += 1 + len(code)
    return ''.join(out)


def key_to_path(key: str) -> Tuple[str, ...]:
    """Scala identifiers for each segment of a key."""
    if not key:
        raise UnrenderableKeyError(key, "key is empty")
    segments = key.split('.')
    if any(not segment for segment in segments):
        raise UnrenderableKeyError(key, "key has an empty segment")
    for segment in segments:
        if segment in GENERATED_NAMES:
            raise UnrenderableKeyError(key, f"segment '{segment}' would shadow the generated {segment} type")
    return tuple(escape_segment(segment) for segment in segments)


def path_to_key(path: Sequence[str]) -> str:
    return '.'.join(unescape_segment(identifier) for identifier in path)


def locale_identifier(locale: LocaleCode) -> str:
    """`en` -> `En`, `pt-BR` -> `PtBr`."""
    parts = [part for part in re.split(r'[^A-Za-z0-9]+', locale) if part]
    name = ''.join(part[0].upper() + part[1:].lower() for part in parts)
    if not name or not name[0].isalpha():
        name = 'L' + name
    return name


def scala_string(text: str) -> str:
    """Quote text as a plain Scala string literal."""
    out = ['"']
    for char in text:
        if char == '\\':
            out.append('\\\\')
        elif char == '"':
            out.append('\\"')
        elif char == '\n':
            out.append('\\n')
        elif char == '\r':
            out.append('\\r')
        elif char == '\t':
            out.append('\\t')
        elif ord(char) < 0x20 or ord(char) == 0x7f:
            out.append(f"\\u{ord(char):04x}")
        else:
            out.append(char)
    out.append('"')
    return ''.join(out)


@dataclass
class _Node:
    children: Dict[str, "_Node"] = field(default_factory=dict)
    entry: Optional[ParsedEntry] = None


def _build_tree(entries: Sequence[ParsedEntry]) -> _Node:
    root = _Node()
    for parsed in sorted(entries, key=lambda p: p.key):
        key = parsed.key
        path = key_to_path(key)
        segments = key.split('.')
        node = root
        for depth, segment in enumerate(segments[:-1]):
            node = node.children.setdefault(segment, _Node())
            if node.entry is not None:
                prefix = '.'.join(segments[:depth + 1])
                raise UnrenderableKeyError(key, f"'{prefix}' is both a key and a namespace")
        leaf = node.children.setdefault(segments[-1], _Node())
        if leaf.entry is not None:
            raise UnrenderableKeyError(key, "key occurs more than once")
        if leaf.children:
            raise UnrenderableKeyError(key, f"'{key}' is both a key and a namespace")
        leaf.entry = parsed
        logger.debug("Placed key '%s' at %s", key, '.'.join(path))
    _check_scopes(root, ())
    return root


def _check_scopes(node: _Node, prefix: Tuple[str, ...]):
    # Guard against two segments escaping to the same identifier in one scope.
    seen: Dict[str, str] = {}
    for segment, child in node.children.items():
        identifier = escape_segment(segment)
        if identifier in seen:
            key = '.'.join(prefix + (segment,))
            raise UnrenderableKeyError(key, f"escapes to the same identifier as '{seen[identifier]}'")
        seen[identifier] = segment
        _check_scopes(child, prefix + (segment,))


def _ordered_children(node: _Node) -> List[Tuple[str, _Node]]:
    """
    Children in ascending order of the full keys they declare.

    Keys below a namespace all start with `segment.`, so that string orders
    the whole subtree among its siblings, even when a sibling segment holds
    a character that sorts before '.'.
    """
    def sort_key(item: Tuple[str, _Node]) -> str:
        segment, child = item
        return segment if child.entry is not None else segment + '.'
    return sorted(node.children.items(), key=sort_key)


class _ScalaWriter:
    """Accumulates indented Scala source lines."""

    def __init__(self, locales: Sequence[LocaleCode], settings: EmitSettings):
        self.locales = list(locales)
        self.settings = settings
        self.lines: List[str] = []
        self.locale_names = {locale: locale_identifier(locale) for locale in self.locales}
        if len(set(self.locale_names.values())) != len(self.locale_names):
            raise ConfigError(f"Locale codes {self.locales} do not map to distinct Scala identifiers")

    def line(self, depth: int, text: str = ""):
        self.lines.append(INDENT * depth + text if text else "")

    def prelude(self):
        package = '.'.join(escape_segment(segment) for segment in self.settings.scala_package.split('.'))
        self.line(0, HEADER)
        self.line(0)
        self.line(0, f"package {package}")
        self.line(0)
        self.line(0, "sealed trait Locale")
        self.line(0)
        self.line(0, "object Locale {")
        for locale in self.locales:
            self.line(1, f"case object {self.locale_names[locale]} extends Locale")
            self.line(0)
        members = ', '.join(self.locale_names[locale] for locale in self.locales)
        self.line(1, f"val all: List[Locale] = List({members})")
        self.line(0, "}")
        self.line(0)
        self.line(0, "sealed trait Cardinality")
        self.line(0)
        self.line(0, "object Cardinality {")
        for category in PLURAL_CATEGORIES:
            self.line(1, f"case object {category.capitalize()} extends Cardinality")
        self.line(0, "}")
        self.line(0)
        self.line(0, "/** Supplies the platform's plural rules to generated lookups. */")
        self.line(0, "trait PluralRules {")
        self.line(1, "def cardinality(locale: Locale, count: Long): Cardinality")
        self.line(0, "}")
        self.line(0)

    def object_(self, name: str, node: _Node, depth: int):
        self.line(depth, f"object {name} {{")
        for index, (segment, child) in enumerate(_ordered_children(node)):
            if index:
                self.line(0)
            if child.entry is not None:
                self.method(escape_segment(segment), child.entry, depth + 1)
            else:
                self.object_(escape_segment(segment), child, depth + 1)
        self.line(depth, "}")

    def method(self, name: str, parsed: ParsedEntry, depth: int):
        entry = parsed.entry
        comment = entry.key
        if entry.description:
            comment += ": " + ' '.join(entry.description.split())
        self.line(depth, f"// {comment}")

        taken = {variable.name for variable in parsed.parameters}
        shadowing = sorted(taken & GENERATED_NAMES)
        if shadowing:
            clash = shadowing[0]
            raise UnrenderableKeyError(entry.key, f"variable '{clash}' would shadow the generated {clash} object")
        locale_param = _free_name("locale", taken)
        rules_param = _free_name("rules", taken | {locale_param})

        params = ', '.join(_typed(escape_segment(v.name), SCALA_TYPES[v.kind]) for v in parsed.parameters)
        implicits = f"implicit {locale_param}: Locale"
        if parsed.has_plural:
            implicits += f", {rules_param}: PluralRules"
        head = f"def {name}({params})({implicits})" if params else f"def {name}({implicits})"
        self.line(depth, f"{head}: String =")

        self.line(depth + 1, f"{locale_param} match {{")
        for locale in self.locales:
            tokens = parsed.tokens.get(locale)
            if tokens is None:
                raise UnrenderableKeyError(entry.key, f"no value for locale '{locale}'")
            context = _Context(locale_param, rules_param)
            body = _render_sequence(tokens, depth + 2, context)
            self.line(depth + 2, f"case Locale.{self.locale_names[locale]} => {body[0]}")
            self.lines.extend(body[1:])
        self.line(depth + 1, "}")


@dataclass(frozen=True)
class _Context:
    locale_param: str
    rules_param: str
    plural_variable: Optional[str] = None


def _free_name(base: str, taken) -> str:
    name = base
    suffix = 1
    while name in taken:
        name = f"{base}{suffix}"
        suffix += 1
    return name


def _typed(identifier: str, type_name: str) -> str:
    # `name_:` would lex as a single operator-suffixed identifier.
    separator = " : " if identifier.endswith('_') else ": "
    return f"{identifier}{separator}{type_name}"


def _render_sequence(tokens: Sequence[PlaceholderToken], depth: int, context: _Context) -> List[str]:
    """
    Render tokens as a String expression.

    The first returned line continues the caller's line; the rest carry
    their own indentation.
    """
    if not tokens:
        return ['""']
    lines = [""]
    for index, token in enumerate(tokens):
        part = _render_token(token, depth, context)
        separator = " + " if index else ""
        lines[-1] += separator + part[0]
        lines.extend(part[1:])
    return lines


def _render_token(token: PlaceholderToken, depth: int, context: _Context) -> List[str]:
    if isinstance(token, Literal):
        return [scala_string(token.text)]
    if isinstance(token, Variable):
        name = escape_segment(token.name)
        return [name if token.kind is ValueKind.STRING else f"{name}.toString"]
    if isinstance(token, PluralCount):
        return [f"{escape_segment(context.plural_variable)}.toString"]
    if isinstance(token, PluralBlock):
        return _render_plural(token, depth, context)
    raise TypeError(f"Unknown token {token!r}")


def _render_plural(block: PluralBlock, depth: int, context: _Context) -> List[str]:
    inner = _Context(context.locale_param, context.rules_param, block.variable)
    variable = escape_segment(block.variable)
    lines = [f"({context.rules_param}.cardinality({context.locale_param}, {variable}) match {{"]
    for category in PLURAL_CATEGORIES:
        branch = block.branch(category)
        if branch is None or category == 'other':
            continue
        body = _render_sequence(branch, depth + 1, inner)
        lines.append(INDENT * (depth + 1) + f"case Cardinality.{category.capitalize()} => {body[0]}")
        lines.extend(body[1:])
    body = _render_sequence(block.branch('other'), depth + 1, inner)
    lines.append(INDENT * (depth + 1) + f"case _ => {body[0]}")
    lines.extend(body[1:])
    lines.append(INDENT * depth + "})")
    return lines


def emit(entries: Sequence[ParsedEntry], locales: Sequence[LocaleCode],
         settings: Optional[EmitSettings] = None) -> GeneratedDocument:
    """
    Render validated, parsed translations into one Scala source document.

    The output depends only on the entries, the locale set and the settings.
    Entry order is irrelevant because declarations are sorted by key.

    Args:
        entries: Parsed entries that passed validation.
        locales: The closed locale set, in configured order.
        settings: Package and object names for the generated file.

    Returns:
        GeneratedDocument: The Scala source and the keys it declares.

    Raises:
        UnrenderableKeyError: When a key cannot become a valid, unique declaration.
        ConfigError: When locale codes or the object name cannot be rendered.
    """
    if settings is None:
        settings = EmitSettings()
    if not _PLAIN_IDENTIFIER.match(settings.object_name) or settings.object_name in SCALA_RESERVED:
        raise ConfigError(f"Object name '{settings.object_name}' is not a valid Scala identifier")

    tree = _build_tree(entries)
    writer = _ScalaWriter(locales, settings)
    writer.prelude()
    writer.object_(settings.object_name, tree, 0)

    keys = tuple(sorted(parsed.key for parsed in entries))
    text = "\n".join(writer.lines) + "\n"
    logger.info("Rendered %d translation key(s) for %d locale(s).", len(keys), len(writer.locales))
    return GeneratedDocument(text=text, keys=keys)
