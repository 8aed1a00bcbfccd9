"""
Parser for the placeholder syntax used in translation values.

The syntax is a small ICU MessageFormat subset:

    Hello, {name}!                      string variable
    {amount:number} kr.                 variable with a type hint
    {count, plural, one {# file} other {# files}}
    \\{ \\} \\\\ \\#                        escaped literal characters

Plural blocks do not nest, and `#` is only special inside a plural branch.
"""
from typing import Dict, List, Optional, Sequence, Tuple

from i18n_codegen.errors import MalformedPlaceholderError
from i18n_codegen.models import (
    Literal,
    LocaleCode,
    ParsedEntry,
    PLURAL_CATEGORIES,
    PlaceholderToken,
    PluralBlock,
    PluralCount,
    SignatureEntry,
    TranslationEntry,
    ValueKind,
    Variable,
)

ESCAPABLE = '{}\\#'
PLURAL_KEYWORD = 'plural'


def _is_name_start(char: str) -> bool:
    return char == '_' or ('a' <= char <= 'z') or ('A' <= char <= 'Z')


def _is_name_char(char: str) -> bool:
    return _is_name_start(char) or '0' <= char <= '9'


class _Scanner:
    """Single-pass recursive descent over one translation value."""

    def __init__(self, text: str, key: str, locale: str):
        self.text = text
        self.key = key
        self.locale = locale
        self.pos = 0
        # name -> kind for explicit hints and plural controls
        self.declared_kinds: Dict[str, ValueKind] = {}

    def error(self, reason: str, pos: Optional[int] = None) -> MalformedPlaceholderError:
        if pos is None:
            pos = self.pos
        # Offsets are reported in bytes of the UTF-8 encoded value.
        offset = len(self.text[:pos].encode('utf-8'))
        return MalformedPlaceholderError(self.key, self.locale, offset, reason)

    def peek(self) -> Optional[str]:
        if self.pos < len(self.text):
            return self.text[self.pos]
        return None

    def skip_whitespace(self):
        while self.pos < len(self.text) and self.text[self.pos].isspace():
            self.pos += 1

    def read_name(self) -> str:
        start = self.pos
        if self.pos < len(self.text) and _is_name_start(self.text[self.pos]):
            self.pos += 1
            while self.pos < len(self.text) and _is_name_char(self.text[self.pos]):
                self.pos += 1
        return self.text[start:self.pos]

    def declare(self, name: str, kind: ValueKind, pos: int):
        previous = self.declared_kinds.get(name)
        if previous is not None and previous is not kind:
            raise self.error(
                f"variable '{name}' is used as both {previous.value} and {kind.value}", pos)
        self.declared_kinds[name] = kind

    def parse_sequence(self, in_branch: bool) -> List[PlaceholderToken]:
        tokens: List[PlaceholderToken] = []
        buffer: List[str] = []

        def flush():
            if buffer:
                tokens.append(Literal(''.join(buffer)))
                buffer.clear()

        while self.pos < len(self.text):
            char = self.text[self.pos]
            if char == '\\' and self.pos + 1 < len(self.text) and self.text[self.pos + 1] in ESCAPABLE:
                buffer.append(self.text[self.pos + 1])
                self.pos += 2
            elif char == '{':
                flush()
                tokens.append(self.parse_placeholder(in_branch))
            elif char == '}':
                if in_branch:
                    break
                raise self.error("unmatched '}'")
            elif char == '#' and in_branch:
                flush()
                tokens.append(PluralCount())
                self.pos += 1
            else:
                buffer.append(char)
                self.pos += 1

        flush()
        return tokens

    def parse_placeholder(self, in_branch: bool) -> PlaceholderToken:
        open_pos = self.pos
        self.pos += 1
        self.skip_whitespace()
        if self.peek() is None:
            raise self.error("'{' is never closed", open_pos)

        name_pos = self.pos
        name = self.read_name()
        if not name:
            raise self.error("expected a placeholder name", name_pos)
        self.skip_whitespace()

        char = self.peek()
        if char is None:
            raise self.error("'{' is never closed", open_pos)
        if char == '}':
            self.pos += 1
            # Kind is settled once the whole value has been read.
            return Variable(name, None)
        if char == ':':
            self.pos += 1
            self.skip_whitespace()
            hint_pos = self.pos
            hint = self.read_name()
            try:
                kind = ValueKind(hint)
            except ValueError:
                raise self.error(f"unknown type hint '{hint}'", hint_pos) from None
            self.skip_whitespace()
            self.expect('}', open_pos)
            self.declare(name, kind, hint_pos)
            return Variable(name, kind)
        if char == ',':
            self.pos += 1
            self.skip_whitespace()
            format_pos = self.pos
            format_name = self.read_name()
            if format_name != PLURAL_KEYWORD:
                raise self.error(f"unsupported placeholder format '{format_name}'", format_pos)
            if in_branch:
                raise self.error("plural blocks cannot be nested", open_pos)
            self.skip_whitespace()
            self.expect(',', open_pos)
            self.declare(name, ValueKind.NUMBER, name_pos)
            return self.parse_plural_branches(name, open_pos)

        raise self.error(f"unexpected character '{char}' in placeholder")

    def parse_plural_branches(self, variable: str, open_pos: int) -> PluralBlock:
        branches: List[Tuple[str, Tuple[PlaceholderToken, ...]]] = []
        seen = set()
        while True:
            self.skip_whitespace()
            char = self.peek()
            if char is None:
                raise self.error("'{' is never closed", open_pos)
            if char == '}':
                self.pos += 1
                break

            category_pos = self.pos
            category = self.read_name()
            if not category:
                raise self.error(f"unexpected character '{char}' in plural block")
            if category not in PLURAL_CATEGORIES:
                raise self.error(f"unknown plural category '{category}'", category_pos)
            if category in seen:
                raise self.error(f"plural category '{category}' is repeated", category_pos)
            seen.add(category)

            self.skip_whitespace()
            branch_pos = self.pos
            self.expect('{', category_pos)
            tokens = self.parse_sequence(in_branch=True)
            if self.peek() != '}':
                raise self.error("'{' is never closed", branch_pos)
            self.pos += 1
            branches.append((category, tuple(tokens)))

        if 'other' not in seen:
            raise self.error("plural block has no 'other' branch", open_pos)
        return PluralBlock(variable, tuple(branches))

    def expect(self, char: str, open_pos: int):
        current = self.peek()
        if current is None:
            raise self.error("'{' is never closed", open_pos)
        if current != char:
            raise self.error(f"expected '{char}' but found '{current}'")
        self.pos += 1


def _resolve_kinds(tokens: Sequence[PlaceholderToken], kinds: Dict[str, ValueKind]) -> Tuple[PlaceholderToken, ...]:
    resolved: List[PlaceholderToken] = []
    for token in tokens:
        if isinstance(token, Variable):
            resolved.append(Variable(token.name, kinds.get(token.name, ValueKind.STRING)))
        elif isinstance(token, PluralBlock):
            branches = tuple((category, _resolve_kinds(branch, kinds)) for category, branch in token.branches)
            resolved.append(PluralBlock(token.variable, branches))
        else:
            resolved.append(token)
    return tuple(resolved)


def parse_placeholders(text: str, *, key: str, locale: LocaleCode) -> Tuple[PlaceholderToken, ...]:
    """
    Parse a raw translation value into placeholder tokens.

    Args:
        text: The raw value as stored in Lokalise.
        key: The translation key, used for error reporting.
        locale: The locale of the value, used for error reporting.

    Returns:
        The ordered token tuple. Literal runs are merged, so two Literal tokens never follow each other.

    Raises:
        MalformedPlaceholderError: When the value does not follow the placeholder grammar.
    """
    scanner = _Scanner(text, key, locale)
    tokens = scanner.parse_sequence(in_branch=False)
    return _resolve_kinds(tokens, scanner.declared_kinds)


def _branch_variables(block: PluralBlock) -> List[SignatureEntry]:
    found = set()
    for _, branch in block.branches:
        for token in branch:
            # `{count}` inside its own block is the same value as `#`.
            if isinstance(token, Variable) and token.name != block.variable:
                found.add((token.kind.value, token.name))
    return sorted(found)


def signature(tokens: Sequence[PlaceholderToken]) -> Tuple[SignatureEntry, ...]:
    """
    Ordered (kind, name) pairs used to compare a key across locales.

    A plural block contributes ('plural', variable) followed by every variable
    referenced in any of its branches, sorted and without duplicates, so the
    result does not depend on which categories a locale defines. The block's
    own variable is left out of that list: `{count}` in a branch and `#`
    name the same value.
    """
    entries: List[SignatureEntry] = []
    for token in tokens:
        if isinstance(token, Variable):
            entries.append((token.kind.value, token.name))
        elif isinstance(token, PluralBlock):
            entries.append(('plural', token.variable))
            entries.extend(_branch_variables(token))
    return tuple(entries)


def parameters(tokens: Sequence[PlaceholderToken]) -> Tuple[Variable, ...]:
    """Unique variables in order of first appearance; plural controls are numbers."""
    seen: Dict[str, Variable] = {}

    def visit(sequence: Sequence[PlaceholderToken]):
        for token in sequence:
            if isinstance(token, Variable):
                seen.setdefault(token.name, token)
            elif isinstance(token, PluralBlock):
                seen.setdefault(token.variable, Variable(token.variable, ValueKind.NUMBER))
                for _, branch in token.branches:
                    visit(branch)

    visit(tokens)
    return tuple(seen.values())


def parse_entry(entry: TranslationEntry, locales: Sequence[LocaleCode]) -> ParsedEntry:
    """Parse every locale value of an entry; the first locale with a non-blank value defines the signature."""
    tokens = {}
    for locale in locales:
        value = entry.value(locale)
        if value is not None:
            tokens[locale] = parse_placeholders(value, key=entry.key, locale=locale)

    # Blank values only pass validation when empty values are allowed; they
    # declare no variables, so they cannot stand for the others.
    filled = [locale for locale in locales if locale in tokens and entry.value(locale).strip()]
    reference = tokens[filled[0]] if filled else next(iter(tokens.values()), ())
    return ParsedEntry(
        entry=entry,
        tokens=tokens,
        signature=signature(reference),
        parameters=parameters(reference),
    )


def parse_entries(entries: Sequence[TranslationEntry], locales: Sequence[LocaleCode]) -> List[ParsedEntry]:
    return [parse_entry(entry, locales) for entry in entries]
