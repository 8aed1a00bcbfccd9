"""
Integration tests for the `generate_i18n` pipeline.

Lokalise is replaced by an in-process httpx transport; everything else
(validation, parsing, emitting and writing the Scala file) runs for real.
"""
import json
import logging
import os
import shutil
import tempfile
import unittest
from unittest.mock import patch

import httpx

from i18n_codegen.app_config import AppConfig
from i18n_codegen.code_emitter import EmitSettings
from i18n_codegen.generate_i18n import (
    EXIT_CONFIG_ERROR,
    EXIT_FAILURE,
    EXIT_OK,
    build_document,
    main,
    write_document,
)
from i18n_codegen.errors import ConfigError
from i18n_codegen.lokalise_client import FetchSettings
from i18n_codegen.models import GeneratedDocument, TranslationEntry
from i18n_codegen.translation_validator import ValidationPolicy


def key_record(key_id, name, translations, is_plural=False):
    return {
        "key_id": key_id,
        "key_name": {"ios": name, "android": name, "web": name, "other": name},
        "is_plural": is_plural,
        "translations": [
            {"language_iso": language, "translation": json.dumps(value) if isinstance(value, dict) else value}
            for language, value in translations.items()
        ],
    }


GOOD_KEYS = [
    key_record(1, "greeting.hello", {"en": "Hello, {name}!", "da": "Hej, {name}!"}),
    key_record(2, "inbox.count", {
        "en": {"one": "# message", "other": "# messages"},
        "da": {"one": "# besked", "other": "# beskeder"},
    }, is_plural=True),
    key_record(3, "app.title", {"en": "Undo", "da": "Fortryd", "de": "Rückgängig"}),
]


class TestGenerateI18n(unittest.IsolatedAsyncioTestCase):
    """End-to-end runs of `main` against a fake Lokalise."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.output_path = os.path.join(self.temp_dir, "shared", "I18n.scala")
        self.report_path = os.path.join(self.temp_dir, "logs", "validation_report.md")
        self.requests = []
        # Keep the test output readable.
        logging.getLogger("i18n_codegen").setLevel(logging.CRITICAL)

    def tearDown(self):
        shutil.rmtree(self.temp_dir)
        logging.getLogger("i18n_codegen").setLevel(logging.NOTSET)

    def make_config(self, **overrides) -> AppConfig:
        values = dict(
            project_root=self.temp_dir,
            output_path=self.output_path,
            report_path=self.report_path,
            api_token="secret",
            project_id="p1",
            project_name=None,
            locales=["en", "da"],
            language_names={"en": "English", "da": "Danish"},
            fetch=FetchSettings(max_retries=0, show_progress=False),
            validation=ValidationPolicy(),
            emit=EmitSettings(),
            dry_run=False,
        )
        values.update(overrides)
        return AppConfig(**values)

    def make_transport(self, keys, projects=None):
        def handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            if request.url.path == "/api2/projects":
                return httpx.Response(200, json={"projects": projects or []})
            return httpx.Response(200, json={"project_id": "p1", "keys": keys},
                                  headers={"X-Pagination-Page-Count": "1"})
        return httpx.MockTransport(handler)

    async def test_generates_scala_file(self):
        exit_code = await main(self.make_config(), self.make_transport(GOOD_KEYS))

        self.assertEqual(exit_code, EXIT_OK)
        with open(self.output_path, encoding="utf-8") as f:
            text = f.read()
        self.assertIn("package dk.undo.i18n", text)
        self.assertIn("def hello(name: String)(implicit locale: Locale): String =", text)
        self.assertIn("def count(count: Long)(implicit locale: Locale, rules: PluralRules): String =", text)
        self.assertIn('case Locale.Da => "Fortryd"', text)
        self.assertNotIn("Rückgängig", text)
        with open(self.report_path, encoding="utf-8") as f:
            self.assertIn("No problems found.", f.read())
        self.assertEqual(self.requests[0].url.path, "/api2/projects/p1/keys")

    async def test_validation_failure_leaves_output_untouched(self):
        os.makedirs(os.path.dirname(self.output_path))
        with open(self.output_path, "w", encoding="utf-8") as f:
            f.write("// previous build\n")
        keys = GOOD_KEYS + [key_record(4, "broken", {"en": "Hello, {name}!", "da": "Hej!"})]

        exit_code = await main(self.make_config(), self.make_transport(keys))

        self.assertEqual(exit_code, EXIT_FAILURE)
        with open(self.output_path, encoding="utf-8") as f:
            self.assertEqual(f.read(), "// previous build\n")
        with open(self.report_path, encoding="utf-8") as f:
            report = f.read()
        self.assertIn("### `broken`", report)
        self.assertIn("PlaceholderMismatch (da)", report)

    async def test_fetch_failure_leaves_output_untouched(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(401, json={"error": {"message": "no"}}))

        exit_code = await main(self.make_config(), transport)

        self.assertEqual(exit_code, EXIT_FAILURE)
        self.assertFalse(os.path.exists(self.output_path))

    async def test_missing_token(self):
        exit_code = await main(self.make_config(api_token=None), self.make_transport(GOOD_KEYS))

        self.assertEqual(exit_code, EXIT_FAILURE)
        self.assertEqual(self.requests, [])

    async def test_warnings_do_not_block_generation(self):
        keys = [key_record(1, "files", {
            "en": {"one": "# file", "other": "# files"},
            "da": {"one": "# fil", "few": "# filer", "other": "# filer"},
        }, is_plural=True)]

        exit_code = await main(self.make_config(), self.make_transport(keys))

        self.assertEqual(exit_code, EXIT_OK)
        self.assertTrue(os.path.exists(self.output_path))
        with open(self.report_path, encoding="utf-8") as f:
            self.assertIn("**warning** UnsupportedPluralCategory (da)", f.read())

    async def test_dry_run_does_not_write(self):
        exit_code = await main(self.make_config(dry_run=True), self.make_transport(GOOD_KEYS))

        self.assertEqual(exit_code, EXIT_OK)
        self.assertFalse(os.path.exists(self.output_path))

    async def test_project_resolved_by_name(self):
        config = self.make_config(project_id=None, project_name="Undo")
        transport = self.make_transport(GOOD_KEYS, projects=[{"project_id": "p1", "name": "Undo"}])

        exit_code = await main(config, transport)

        self.assertEqual(exit_code, EXIT_OK)
        self.assertEqual([r.url.path for r in self.requests], ["/api2/projects", "/api2/projects/p1/keys"])

    async def test_unrenderable_key(self):
        keys = [
            key_record(1, "a", {"en": "A", "da": "A"}),
            key_record(2, "a.b", {"en": "B", "da": "B"}),
        ]

        exit_code = await main(self.make_config(), self.make_transport(keys))

        self.assertEqual(exit_code, EXIT_FAILURE)
        self.assertFalse(os.path.exists(self.output_path))

    async def test_configuration_error(self):
        with patch("i18n_codegen.generate_i18n.load_app_config", side_effect=ConfigError("no locales")):
            exit_code = await main()

        self.assertEqual(exit_code, EXIT_CONFIG_ERROR)

    async def test_second_run_is_byte_identical(self):
        await main(self.make_config(), self.make_transport(GOOD_KEYS))
        with open(self.output_path, "rb") as f:
            first = f.read()
        await main(self.make_config(), self.make_transport(list(reversed(GOOD_KEYS))))
        with open(self.output_path, "rb") as f:
            self.assertEqual(f.read(), first)


class TestWriteDocument(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.path = os.path.join(self.temp_dir, "nested", "I18n.scala")

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def test_creates_directories_and_leaves_no_temp_files(self):
        self.assertTrue(write_document(GeneratedDocument("object I18n {}\n", ()), self.path))

        self.assertEqual(os.listdir(os.path.dirname(self.path)), ["I18n.scala"])
        with open(self.path, encoding="utf-8") as f:
            self.assertEqual(f.read(), "object I18n {}\n")

    def test_unchanged_content_is_not_rewritten(self):
        document = GeneratedDocument("object I18n {}\n", ())
        write_document(document, self.path)
        mtime = os.stat(self.path).st_mtime_ns

        self.assertFalse(write_document(document, self.path))
        self.assertEqual(os.stat(self.path).st_mtime_ns, mtime)

    def test_failed_write_keeps_previous_file(self):
        write_document(GeneratedDocument("old\n", ()), self.path)

        with patch("i18n_codegen.generate_i18n.os.replace", side_effect=OSError("disk full")):
            with self.assertRaises(OSError):
                write_document(GeneratedDocument("new\n", ()), self.path)

        with open(self.path, encoding="utf-8") as f:
            self.assertEqual(f.read(), "old\n")
        self.assertEqual(os.listdir(os.path.dirname(self.path)), ["I18n.scala"])


class TestBuildDocument(unittest.TestCase):

    def test_returns_document_and_warnings(self):
        entries = [TranslationEntry("title", {"en": "Undo", "da": ""})]

        result = build_document(entries, ["en", "da"], policy=ValidationPolicy(allow_empty_values=True))

        self.assertEqual(result.document.keys, ("title",))
        self.assertEqual(len(result.report.warnings), 1)
        self.assertIn('case Locale.Da => ""', result.document.text)

    def test_blank_first_locale_does_not_drop_parameters(self):
        entries = [TranslationEntry("greet", {"en": "", "da": "Hej {name}"})]

        result = build_document(entries, ["en", "da"], policy=ValidationPolicy(allow_empty_values=True))

        self.assertIn("def greet(name: String)(implicit locale: Locale): String =", result.document.text)
        self.assertIn('case Locale.En => ""', result.document.text)
        self.assertIn('case Locale.Da => "Hej " + name', result.document.text)
