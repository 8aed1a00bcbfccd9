"""Data model shared by the fetch, validate, parse and emit stages."""
import hashlib
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import List, Mapping, Optional, Tuple, Union

TranslationKey = str
LocaleCode = str

# Locale marker for problems that concern a key as a whole.
ALL_LOCALES = "all"

PLURAL_CATEGORIES = ("zero", "one", "two", "few", "many", "other")


class ValueKind(str, Enum):
    STRING = "string"
    NUMBER = "number"


@dataclass(frozen=True)
class TranslationEntry:
    """One Lokalise key with a slot for every supported locale (None = missing)."""
    key: TranslationKey
    values: Mapping[LocaleCode, Optional[str]]
    is_plural: bool = False
    key_id: Optional[int] = None
    description: Optional[str] = None

    def __post_init__(self):
        # Freeze the mapping so later stages cannot alter fetched data.
        object.__setattr__(self, 'values', MappingProxyType(dict(self.values)))

    def value(self, locale: LocaleCode) -> Optional[str]:
        return self.values.get(locale)


@dataclass(frozen=True)
class Literal:
    text: str


@dataclass(frozen=True)
class Variable:
    name: str
    kind: ValueKind = ValueKind.STRING


@dataclass(frozen=True)
class PluralCount:
    """The `#` shorthand inside a plural branch."""


@dataclass(frozen=True)
class PluralBlock:
    variable: str
    branches: Tuple[Tuple[str, Tuple["PlaceholderToken", ...]], ...]

    def branch(self, category: str) -> Optional[Tuple["PlaceholderToken", ...]]:
        for name, tokens in self.branches:
            if name == category:
                return tokens
        return None

    @property
    def categories(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in self.branches)


PlaceholderToken = Union[Literal, Variable, PluralCount, PluralBlock]

# (kind, name); kind is "string", "number" or "plural"
SignatureEntry = Tuple[str, str]


class ProblemKind(str, Enum):
    MISSING_IN_LOCALE = "MissingInLocale"
    PLACEHOLDER_MISMATCH = "PlaceholderMismatch"
    EMPTY_VALUE = "EmptyValue"
    UNSUPPORTED_PLURAL_CATEGORY = "UnsupportedPluralCategory"
    MALFORMED_PLACEHOLDER = "MalformedPlaceholder"
    DUPLICATE_KEY = "DuplicateKey"


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True, order=True)
class Problem:
    key: TranslationKey
    locale: str
    kind: ProblemKind
    severity: Severity = Severity.ERROR
    detail: str = ""

    def __str__(self) -> str:
        text = f"[{self.severity.value}] {self.kind.value}: '{self.key}' ({self.locale})"
        if self.detail:
            text += f" - {self.detail}"
        return text


@dataclass(frozen=True)
class ValidationReport:
    problems: Tuple[Problem, ...] = ()

    @classmethod
    def from_problems(cls, problems: List[Problem]) -> "ValidationReport":
        # Sorted so the report is identical regardless of discovery order.
        return cls(tuple(sorted(set(problems))))

    @property
    def errors(self) -> Tuple[Problem, ...]:
        return tuple(p for p in self.problems if p.severity is Severity.ERROR)

    @property
    def warnings(self) -> Tuple[Problem, ...]:
        return tuple(p for p in self.problems if p.severity is Severity.WARNING)

    @property
    def is_fatal(self) -> bool:
        return bool(self.errors)

    def for_key(self, key: TranslationKey) -> Tuple[Problem, ...]:
        return tuple(p for p in self.problems if p.key == key)

    def __len__(self) -> int:
        return len(self.problems)


@dataclass(frozen=True)
class ParsedEntry:
    entry: TranslationEntry
    tokens: Mapping[LocaleCode, Tuple[PlaceholderToken, ...]]
    signature: Tuple[SignatureEntry, ...]
    parameters: Tuple[Variable, ...] = field(default=())

    @property
    def key(self) -> TranslationKey:
        return self.entry.key

    @property
    def has_plural(self) -> bool:
        return any(isinstance(token, PluralBlock)
                   for tokens in self.tokens.values() for token in tokens)


@dataclass(frozen=True)
class GeneratedDocument:
    text: str
    keys: Tuple[TranslationKey, ...]

    @property
    def sha256(self) -> str:
        return hashlib.sha256(self.text.encode('utf-8')).hexdigest()
