"""Application configuration module for the i18n code generator."""
import logging
import os
import sys
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import yaml
from dotenv import load_dotenv

from i18n_codegen.code_emitter import EmitSettings
from i18n_codegen.errors import ConfigError
from i18n_codegen.logging_config import setup_logger
from i18n_codegen.lokalise_client import FetchSettings, KEY_PLATFORMS, LOKALISE_API_BASE_URL
from i18n_codegen.translation_validator import ValidationPolicy

DEFAULT_OUTPUT_PATH = "shared/src/main/scala/dk/undo/i18n/I18n.scala"


@dataclass
class AppConfig:
    """Application configuration dataclass."""
    # Core paths
    project_root: str
    output_path: str
    report_path: str

    # Lokalise project
    api_token: Optional[str]
    project_id: Optional[str]
    project_name: Optional[str]

    # Language configuration
    locales: List[str]
    language_names: Dict[str, str]

    # Pipeline stages
    fetch: FetchSettings
    validation: ValidationPolicy
    emit: EmitSettings

    # Processing settings
    dry_run: bool


DOTENV_CANDIDATES = ('.env', os.path.join('docker', '.env'))
CONFIG_FILE_ENV = 'I18N_CODEGEN_CONFIG_FILE'


def _compute_project_root() -> str:
    """The directory above this package; relative paths in config.yaml resolve against it."""
    return os.path.dirname(os.path.dirname(os.path.realpath(__file__)))


def _load_dotenv_files(project_root: str) -> Optional[str]:
    """Load the first .env found (project root, then docker/) and return its path."""
    for candidate in DOTENV_CANDIDATES:
        path = os.path.join(project_root, candidate)
        if os.path.exists(path):
            load_dotenv(path)
            return path
    return None


def _config_warning(message: str) -> None:
    # The logger is configured from this very file, so problems go to stderr.
    print(f"i18n-codegen: {message}", file=sys.stderr)


def _load_yaml_config(project_root: str) -> Dict[str, Any]:
    """
    Read config.yaml, or the file named by I18N_CODEGEN_CONFIG_FILE.

    A missing, unreadable, empty or malformed file yields an empty dict; the
    required keys are then reported by load_app_config as a ConfigError.
    """
    config_file = os.path.abspath(os.environ.get(CONFIG_FILE_ENV, os.path.join(project_root, 'config.yaml')))
    if not os.path.exists(config_file):
        _config_warning(f"'{config_file}' not found. Copy config.example.yaml there or set {CONFIG_FILE_ENV}.")
        return {}
    try:
        with open(config_file, 'r', encoding='utf-8') as stream:
            loaded = yaml.safe_load(stream)
    except yaml.YAMLError as e:
        _config_warning(f"invalid YAML in '{config_file}': {e}")
        return {}
    except OSError as e:
        _config_warning(f"could not read '{config_file}': {e}")
        return {}

    if loaded is None:
        _config_warning(f"'{config_file}' is empty.")
        return {}
    if not isinstance(loaded, dict):
        _config_warning(f"'{config_file}' must contain a YAML mapping, not a {type(loaded).__name__}.")
        return {}
    return loaded


def _setup_logger_from_config(config: Dict[str, Any], project_root: str) -> logging.Logger:
    log_config = config.get('logging') or {}
    return setup_logger(
        str(log_config.get('log_level', 'INFO')).upper(),
        log_config.get('log_file_path', os.path.join(project_root, 'logs', 'i18n_codegen.log')),
        bool(log_config.get('log_to_console', True)),
    )


def _build_locale_list(locales_list: List[Dict[str, str]]) -> Tuple[List[str], Dict[str, str]]:
    """Build the ordered locale list and code -> name mapping from supported locales."""
    locales: List[str] = []
    language_names: Dict[str, str] = {}

    for locale in locales_list:
        code = locale.get('code')
        name = locale.get('name')
        if code and code not in language_names:
            locales.append(code)
            language_names[code] = name or code

    return locales, language_names


def _build_fetch_settings(config: Dict[str, Any]) -> FetchSettings:
    key_platform = config.get('key_platform', 'other')
    if key_platform not in KEY_PLATFORMS:
        raise ConfigError(f"key_platform must be one of {', '.join(KEY_PLATFORMS)}, got '{key_platform}'")

    return FetchSettings(
        base_url=config.get('api_base_url', LOKALISE_API_BASE_URL),
        page_size=int(config.get('page_size', 500)),
        max_concurrent_requests=int(config.get('max_concurrent_requests', 4)),
        requests_per_second=float(config.get('requests_per_second', 6)),
        timeout=float(config.get('request_timeout', 30.0)),
        max_retries=int(config.get('max_retries', 1)),
        retry_base_delay=float(config.get('retry_base_delay', 1.0)),
        key_platform=key_platform,
        plural_variable=config.get('plural_variable', 'count'),
        show_progress=bool(config.get('show_progress', True)),
    )


def _build_validation_policy(config: Dict[str, Any]) -> ValidationPolicy:
    validation = config.get('validation', {}) or {}
    return ValidationPolicy(
        allow_empty_values=bool(validation.get('allow_empty_values', False)),
        strict_placeholder_order=bool(validation.get('strict_placeholder_order', True)),
        unsupported_plural_category_fatal=bool(validation.get('unsupported_plural_category_fatal', False)),
    )


def load_app_config() -> AppConfig:
    """
    Load application configuration from YAML file and environment variables.

    Returns:
        AppConfig: The loaded application configuration.

    Raises:
        ConfigError: If the configuration cannot drive a generation run.
    """
    project_root = _compute_project_root()
    dotenv_path = _load_dotenv_files(project_root)
    config = _load_yaml_config(project_root)

    logger = _setup_logger_from_config(config, project_root)
    if dotenv_path:
        logger.info("Loaded environment variables from: %s", dotenv_path)
    else:
        logger.debug("No .env file under '%s'; using the process environment.", project_root)

    # Build the closed locale set
    locales, language_names = _build_locale_list(config.get('supported_locales', []))
    if not locales:
        raise ConfigError("supported_locales must list at least one locale code.")

    # Lokalise project, with environment overrides
    project_id = os.environ.get('LOKALISE_PROJECT_ID', config.get('project_id'))
    if project_id is not None:
        # Unquoted numeric ids arrive from YAML as int.
        project_id = str(project_id)
    project_name = config.get('project_name')
    if not project_id and not project_name:
        raise ConfigError("Either project_id (or LOKALISE_PROJECT_ID) or project_name must be set.")

    dry_run = bool(config.get('dry_run', False))
    api_token = os.environ.get('LOKALISE_API_TOKEN')
    if not api_token:
        logger.warning("LOKALISE_API_TOKEN environment variable not found; fetching will fail.")

    output_path = os.environ.get('I18N_OUTPUT_PATH', config.get('output_path', DEFAULT_OUTPUT_PATH))
    if not os.path.isabs(output_path):
        output_path = os.path.join(project_root, output_path)

    report_path = config.get('report_path', os.path.join('logs', 'validation_report.md'))
    if not os.path.isabs(report_path):
        report_path = os.path.join(project_root, report_path)

    return AppConfig(
        project_root=project_root,
        output_path=output_path,
        report_path=report_path,
        api_token=api_token,
        project_id=project_id,
        project_name=project_name,
        locales=locales,
        language_names=language_names,
        fetch=_build_fetch_settings(config),
        validation=_build_validation_policy(config),
        emit=EmitSettings(
            scala_package=config.get('scala_package', 'dk.undo.i18n'),
            object_name=config.get('object_name', 'I18n'),
        ),
        dry_run=dry_run,
    )
