"""Unit tests for the placeholder parser."""
import pytest

from i18n_codegen.errors import MalformedPlaceholderError
from i18n_codegen.models import Literal, PluralBlock, PluralCount, ValueKind, Variable
from i18n_codegen.placeholder_parser import parameters, parse_entry, parse_placeholders, signature


def parse(text: str):
    return parse_placeholders(text, key="test.key", locale="en")


class TestParsePlaceholders:
    """Tokenisation of valid values."""

    def test_plain_text_is_one_literal(self):
        assert parse("Hello world") == (Literal("Hello world"),)

    def test_empty_value_has_no_tokens(self):
        assert parse("") == ()

    def test_string_variable(self):
        assert parse("Hello, {name}!") == (
            Literal("Hello, "),
            Variable("name", ValueKind.STRING),
            Literal("!"),
        )

    def test_type_hint_and_whitespace(self):
        assert parse("{ amount : number } kr.") == (
            Variable("amount", ValueKind.NUMBER),
            Literal(" kr."),
        )

    def test_untyped_use_takes_explicit_kind(self):
        """An untyped reference takes the kind declared elsewhere in the same value."""
        tokens = parse("{total} of {total:number}")
        assert tokens[0] == Variable("total", ValueKind.NUMBER)
        assert tokens[2] == Variable("total", ValueKind.NUMBER)

    def test_plural_block(self):
        tokens = parse("{count, plural, one {# file} other {# files}}")
        assert tokens == (
            PluralBlock("count", (
                ("one", (PluralCount(), Literal(" file"))),
                ("other", (PluralCount(), Literal(" files"))),
            )),
        )

    def test_plural_control_referenced_in_branch_is_number(self):
        tokens = parse("{n, plural, other {{n} items}}")
        block = tokens[0]
        assert block.branch("other") == (Variable("n", ValueKind.NUMBER), Literal(" items"))

    def test_escaped_characters(self):
        assert parse("Use \\{braces\\} and \\\\") == (Literal("Use {braces} and \\"),)

    def test_hash_outside_plural_is_literal(self):
        assert parse("Item #1") == (Literal("Item #1"),)

    def test_escaped_hash_inside_plural(self):
        tokens = parse("{n, plural, other {\\# of #}}")
        assert tokens[0].branch("other") == (Literal("# of "), PluralCount())


class TestMalformedPlaceholders:
    """Every failure names the key, the locale and the UTF-8 byte offset."""

    @pytest.mark.parametrize("text, offset, reason", [
        ("Hello {name", 6, "never closed"),
        ("oops }", 5, "unmatched"),
        ("{n, plural, several {x} other {y}}", 12, "unknown plural category"),
        ("{n, plural, other {{m, plural, other {x}}}}", 19, "cannot be nested"),
        ("{n, plural, one {x}}", 0, "no 'other' branch"),
        ("{n:number} {n:string}", 14, "both number and string"),
        ("{n:date}", 3, "unknown type hint"),
        ("{0}", 1, "expected a placeholder name"),
        ("{n, select, other {x}}", 4, "unsupported placeholder format"),
        ("{n, plural, one {a} one {b} other {c}}", 20, "repeated"),
        ("{n, plural, other {x}", 0, "never closed"),
    ])
    def test_error_offsets(self, text, offset, reason):
        with pytest.raises(MalformedPlaceholderError) as exc_info:
            parse(text)
        error = exc_info.value
        assert error.key == "test.key"
        assert error.locale == "en"
        assert error.offset == offset
        assert reason in error.reason

    def test_offset_counts_utf8_bytes(self):
        """'Å' is two bytes in UTF-8, so the '{' at index 3 sits at byte 4."""
        with pytest.raises(MalformedPlaceholderError) as exc_info:
            parse_placeholders("Åh {navn", key="k", locale="da")
        assert exc_info.value.offset == 4
        assert "byte 4" in str(exc_info.value)


class TestSignature:

    def test_ordered_kinds_and_names(self):
        assert signature(parse("Hi {name}, you owe {amount:number}")) == (
            ("string", "name"),
            ("number", "amount"),
        )

    def test_plural_contributes_control_and_branch_variables(self):
        tokens = parse("{count, plural, one {{user} has one} other {{user} has # and {extra}}}")
        assert signature(tokens) == (
            ("plural", "count"),
            ("string", "extra"),
            ("string", "user"),
        )

    def test_plural_signature_ignores_which_categories_exist(self):
        english = parse("{n, plural, one {{who} has one} other {{who} has #}}")
        japanese = parse("{n, plural, other {{who}: #}}")
        assert signature(english) == signature(japanese)

    def test_control_variable_in_branch_matches_count_marker(self):
        english = parse("{count, plural, one {one file} other {{count} files}}")
        danish = parse("{count, plural, one {# fil} other {# filer}}")
        assert signature(english) == signature(danish) == (("plural", "count"),)

    def test_literals_do_not_contribute(self):
        assert signature(parse("Just text")) == ()


class TestParameters:

    def test_unique_in_first_appearance_order(self):
        tokens = parse("{count, plural, one {{user} x} other {#}} {name} {user}")
        assert parameters(tokens) == (
            Variable("count", ValueKind.NUMBER),
            Variable("user", ValueKind.STRING),
            Variable("name", ValueKind.STRING),
        )

    def test_parse_entry_uses_first_locale_with_value(self, make_entry):
        entry = make_entry("greeting.hello", {"en": None, "da": "Hej, {navn}!"})
        parsed = parse_entry(entry, ["en", "da"])
        assert set(parsed.tokens) == {"da"}
        assert parsed.signature == (("string", "navn"),)
        assert parsed.parameters == (Variable("navn", ValueKind.STRING),)
        assert not parsed.has_plural

    def test_parse_entry_skips_blank_values(self, make_entry):
        entry = make_entry("greet", {"en": " ", "da": "Hej {name}", "de": "Hallo {name}"})
        parsed = parse_entry(entry, ["en", "da", "de"])
        assert parsed.tokens["en"] == (Literal(" "),)
        assert parsed.signature == (("string", "name"),)
        assert parsed.parameters == (Variable("name", ValueKind.STRING),)

    def test_parse_entry_with_only_blank_values(self, make_entry):
        parsed = parse_entry(make_entry("greet", {"en": "", "da": ""}), ["en", "da"])
        assert parsed.signature == ()
        assert parsed.parameters == ()
