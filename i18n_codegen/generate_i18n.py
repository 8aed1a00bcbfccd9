"""Fetch translations from Lokalise and generate the typed Scala I18n file."""
import asyncio
import logging
import os
import sys
import tempfile
from dataclasses import dataclass
from typing import Optional, Sequence

import httpx

from i18n_codegen.app_config import AppConfig, load_app_config
from i18n_codegen.code_emitter import EmitSettings, emit
from i18n_codegen.errors import (
    ConfigError,
    FetchError,
    MalformedPlaceholderError,
    UnrenderableKeyError,
    ValidationFailedError,
)
from i18n_codegen.logging_config import shutdown_logger
from i18n_codegen.lokalise_client import LokaliseClient, fetch_all_translations
from i18n_codegen.models import GeneratedDocument, LocaleCode, TranslationEntry, ValidationReport
from i18n_codegen.placeholder_parser import parse_entries
from i18n_codegen.translation_validator import (
    ValidationPolicy,
    ensure_valid,
    format_report,
    validate_entries,
)

logger = logging.getLogger("i18n_codegen.generate")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2


@dataclass(frozen=True)
class GenerationResult:
    document: GeneratedDocument
    report: ValidationReport


def build_document(entries: Sequence[TranslationEntry], locales: Sequence[LocaleCode], *,
                   policy: Optional[ValidationPolicy] = None,
                   settings: Optional[EmitSettings] = None) -> GenerationResult:
    """
    Validate, parse and emit a fetched translation set.

    Raises:
        ValidationFailedError: If validation reports any error. Nothing is emitted.
        MalformedPlaceholderError: If a value cannot be parsed.
        UnrenderableKeyError: If a key cannot be rendered as a Scala declaration.
    """
    report = ensure_valid(validate_entries(entries, locales, policy))
    parsed = parse_entries(entries, locales)
    document = emit(parsed, locales, settings)
    return GenerationResult(document=document, report=report)


async def resolve_project_id(config: AppConfig,
                             transport: Optional[httpx.AsyncBaseTransport] = None) -> str:
    if config.project_id:
        return config.project_id
    async with LokaliseClient(config.api_token, config.fetch, transport=transport) as client:
        project = await client.find_project(config.project_name)
    logger.info("Resolved Lokalise project '%s' to id %s.", project.name, project.project_id)
    return project.project_id


async def run_pipeline(config: AppConfig,
                       transport: Optional[httpx.AsyncBaseTransport] = None) -> GenerationResult:
    """Fetch -> validate -> parse -> emit. No file is touched here."""
    project_id = await resolve_project_id(config, transport)
    entries = await fetch_all_translations(
        config.api_token,
        project_id,
        locales=config.locales,
        settings=config.fetch,
        transport=transport,
    )
    return build_document(entries, config.locales, policy=config.validation, settings=config.emit)


def write_document(document: GeneratedDocument, path: str) -> bool:
    """
    Atomically write the generated document.

    The text goes to a temporary file in the target directory which then
    replaces the destination, so readers never see a partial file.

    Returns:
        bool: False when the file already had identical content and was left alone.
    """
    if os.path.exists(path):
        with open(path, 'r', encoding='utf-8') as existing:
            if existing.read() == document.text:
                logger.info("'%s' is already up to date.", path)
                return False

    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(dir=directory, prefix='.i18n-codegen-', suffix='.tmp')
    try:
        with os.fdopen(fd, 'w', encoding='utf-8', newline='\n') as temp_file:
            temp_file.write(document.text)
        os.replace(temp_path, path)
    except BaseException:
        if os.path.exists(temp_path):
            os.remove(temp_path)
        raise
    logger.info("Wrote %d declaration(s) to '%s'.", len(document.keys), path)
    return True


def write_report(report: ValidationReport, report_path: str) -> None:
    report_dir = os.path.dirname(report_path)
    if report_dir:
        os.makedirs(report_dir, exist_ok=True)
    with open(report_path, 'w', encoding='utf-8') as f:
        f.write(format_report(report))


async def main(config: Optional[AppConfig] = None,
               transport: Optional[httpx.AsyncBaseTransport] = None) -> int:
    """
    Main function to orchestrate the generation run.

    Returns:
        int: The process exit status.
    """
    try:
        if config is None:
            config = load_app_config()
    except ConfigError as exc:
        logger.critical("Invalid configuration: %s", exc)
        return EXIT_CONFIG_ERROR

    # Step 1-4: fetch, validate, parse and emit entirely in memory.
    try:
        result = await run_pipeline(config, transport)
    except ValidationFailedError as exc:
        write_report(exc.report, config.report_path)
        logger.error("%s", format_report(exc.report))
        logger.error("Generation aborted; '%s' was not modified. Report written to '%s'.",
                     config.output_path, config.report_path)
        return EXIT_FAILURE
    except (FetchError, MalformedPlaceholderError, UnrenderableKeyError) as exc:
        logger.error("Generation aborted: %s", exc)
        logger.error("'%s' was not modified.", config.output_path)
        return EXIT_FAILURE
    except ConfigError as exc:
        logger.critical("Invalid configuration: %s", exc)
        return EXIT_CONFIG_ERROR

    # Step 5: report warnings, if any.
    write_report(result.report, config.report_path)
    for problem in result.report.warnings:
        logger.warning("%s", problem)

    # Step 6: hand the document to the file system.
    document = result.document
    if config.dry_run:
        logger.info("Dry run enabled; not writing '%s' (%d declaration(s), sha256 %s).",
                    config.output_path, len(document.keys), document.sha256)
    else:
        write_document(document, config.output_path)
    return EXIT_OK


def run() -> None:
    """Console script entry point."""
    try:
        exit_code = asyncio.run(main())
    finally:
        shutdown_logger()
    sys.exit(exit_code)


if __name__ == "__main__":
    run()
