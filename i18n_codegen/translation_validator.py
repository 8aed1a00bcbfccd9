import logging
from collections import Counter
from dataclasses import dataclass
from functools import lru_cache
from typing import FrozenSet, List, Optional, Sequence, Set, Tuple

from babel import Locale
from babel.core import UnknownLocaleError

from i18n_codegen.errors import MalformedPlaceholderError, ValidationFailedError
from i18n_codegen.models import (
    ALL_LOCALES,
    LocaleCode,
    PlaceholderToken,
    PluralBlock,
    Problem,
    ProblemKind,
    Severity,
    SignatureEntry,
    TranslationEntry,
    ValidationReport,
)
from i18n_codegen.placeholder_parser import parse_placeholders, signature

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidationPolicy:
    """Which soft problems block generation."""
    allow_empty_values: bool = False
    strict_placeholder_order: bool = True
    unsupported_plural_category_fatal: bool = False


def check_locale_coverage(entry: TranslationEntry, locales: Sequence[LocaleCode]) -> Tuple[Set[str], Set[str]]:
    """
    Compares the locales an entry has values for against the required locale set.

    Args:
        entry: The translation entry to inspect.
        locales: The closed set of required locales.

    Returns:
        A tuple containing two sets:
        - missing_locales: Required locales with no value.
        - blank_locales: Required locales whose value is empty after trimming.
    """
    missing_locales = {locale for locale in locales if entry.value(locale) is None}
    blank_locales = {
        locale for locale in locales
        if entry.value(locale) is not None and not entry.value(locale).strip()
    }
    return missing_locales, blank_locales


def check_placeholder_parity(base_signature: Sequence[SignatureEntry],
                             target_signature: Sequence[SignatureEntry],
                             strict_order: bool = True) -> bool:
    """
    Checks if two placeholder signatures are equivalent.

    In strict mode the ordered sequences must be identical: same count, same
    kind sequence, same names. Otherwise placeholders may be reordered, but
    every (kind, name) pair must occur the same number of times.
    """
    if strict_order:
        return tuple(base_signature) == tuple(target_signature)
    return Counter(base_signature) == Counter(target_signature)


@lru_cache(maxsize=None)
def supported_plural_categories(locale: LocaleCode) -> Optional[FrozenSet[str]]:
    """
    CLDR plural categories a locale can select, or None when Babel does not know it.

    Babel leaves the implicit 'other' rule out of `plural_form.tags`, so it is added here.
    """
    try:
        babel_locale = Locale.parse(locale.replace('-', '_'))
    except (UnknownLocaleError, ValueError):
        logger.debug("No CLDR plural rules for locale '%s'; skipping category check.", locale)
        return None
    return frozenset(babel_locale.plural_form.tags) | {'other'}


def _unsupported_categories(tokens: Sequence[PlaceholderToken], locale: LocaleCode) -> List[str]:
    supported = supported_plural_categories(locale)
    if supported is None:
        return []
    unsupported = []
    for token in tokens:
        if isinstance(token, PluralBlock):
            unsupported.extend(c for c in token.categories if c not in supported)
    return unsupported


def _format_signature(entries: Sequence[SignatureEntry]) -> str:
    if not entries:
        return "(no placeholders)"
    return ", ".join(f"{kind} {name}" for kind, name in entries)


def validate_entry(entry: TranslationEntry, locales: Sequence[LocaleCode],
                   policy: ValidationPolicy) -> List[Problem]:
    """Collect every problem of a single key; never stops at the first one."""
    problems: List[Problem] = []
    empty_severity = Severity.WARNING if policy.allow_empty_values else Severity.ERROR
    plural_severity = Severity.ERROR if policy.unsupported_plural_category_fatal else Severity.WARNING

    missing_locales, blank_locales = check_locale_coverage(entry, locales)
    signatures = {}
    for locale in locales:
        if locale in missing_locales:
            problems.append(Problem(entry.key, locale, ProblemKind.MISSING_IN_LOCALE,
                                    detail="no translation for this locale"))
            continue
        if locale in blank_locales:
            problems.append(Problem(entry.key, locale, ProblemKind.EMPTY_VALUE, empty_severity,
                                    "translation is empty"))
            continue

        try:
            tokens = parse_placeholders(entry.value(locale), key=entry.key, locale=locale)
        except MalformedPlaceholderError as exc:
            problems.append(Problem(entry.key, locale, ProblemKind.MALFORMED_PLACEHOLDER,
                                    detail=f"byte {exc.offset}: {exc.reason}"))
            continue

        signatures[locale] = signature(tokens)
        for category in _unsupported_categories(tokens, locale):
            problems.append(Problem(entry.key, locale, ProblemKind.UNSUPPORTED_PLURAL_CATEGORY, plural_severity,
                                    f"CLDR rules for '{locale}' never select '{category}'"))

    # The first locale (in configured order) with a parseable value is the reference.
    parsed_locales = [locale for locale in locales if locale in signatures]
    if parsed_locales:
        reference_locale = parsed_locales[0]
        reference = signatures[reference_locale]
        for locale in parsed_locales[1:]:
            if not check_placeholder_parity(reference, signatures[locale], policy.strict_placeholder_order):
                problems.append(Problem(
                    entry.key, locale, ProblemKind.PLACEHOLDER_MISMATCH,
                    detail=(f"expected [{_format_signature(reference)}] as in '{reference_locale}', "
                            f"found [{_format_signature(signatures[locale])}]")
                ))
    return problems


def validate_entries(entries: Sequence[TranslationEntry], locales: Sequence[LocaleCode],
                     policy: Optional[ValidationPolicy] = None) -> ValidationReport:
    """
    Checks cross-locale consistency of a fetched translation set.

    This is a pure function: entries are only read, and the same input always
    produces the same report.

    Args:
        entries: The fetched translation entries, in any order.
        locales: The closed set of required locales, in configured order.
        policy: Severity policy for soft problems. Defaults to ValidationPolicy().

    Returns:
        ValidationReport: Every problem found, sorted by key, locale and kind.
    """
    if policy is None:
        policy = ValidationPolicy()

    problems: List[Problem] = []
    key_counts = Counter(entry.key for entry in entries)
    for key, count in key_counts.items():
        if count > 1:
            problems.append(Problem(key, ALL_LOCALES, ProblemKind.DUPLICATE_KEY,
                                    detail=f"key occurs {count} times"))

    for entry in sorted(entries, key=lambda e: e.key):
        problems.extend(validate_entry(entry, locales, policy))

    report = ValidationReport.from_problems(problems)
    logger.debug("Validated %d key(s): %d error(s), %d warning(s).",
                 len(entries), len(report.errors), len(report.warnings))
    return report


def ensure_valid(report: ValidationReport) -> ValidationReport:
    """Raise ValidationFailedError if the report holds any error; warnings pass through."""
    if report.is_fatal:
        raise ValidationFailedError(report)
    return report


def format_report(report: ValidationReport) -> str:
    """Render the report as Markdown, grouped by translation key."""
    lines = ["## Translation validation report", ""]
    if not report.problems:
        lines.append("No problems found.")
        return "\n".join(lines) + "\n"

    lines.append(f"{len(report.errors)} error(s), {len(report.warnings)} warning(s).")
    lines.append("")
    current_key = None
    for problem in report.problems:
        if problem.key != current_key:
            if current_key is not None:
                lines.append("")
            lines.append(f"### `{problem.key}`")
            current_key = problem.key
        detail = f": {problem.detail}" if problem.detail else ""
        lines.append(f"- **{problem.severity.value}** {problem.kind.value} ({problem.locale}){detail}")
    return "\n".join(lines) + "\n"
