#!/usr/bin/env python3
"""
AI Tagger: CLI app to generate titles, captions, keywords and more for photos using AI.

The analysis goes through an interchangeable backend (Google Gemini, any OpenAI-compatible
server, or a local Ollama server). Results are reported as JSON; nothing is written back into
the photos.

Requirements:
 - An API key stored with `ai-tagger set-key` (Gemini, OpenAI), or a running Ollama server.
 - Exiftool installed and available in PATH when --include-metadata is used.

"""
# ruff: noqa: PLR0913

import contextlib
import json
import os
import sys
from datetime import UTC, datetime
from functools import partial
from itertools import chain
from pathlib import Path
from typing import Annotated, Any, Literal

from cyclopts import App, Parameter, validators
from loguru import logger
from pydantic import ValidationError

from ai_tagger import __version__
from ai_tagger.batch import BatchItem, BatchScheduler
from ai_tagger.config import JsonPreferences, Settings
from ai_tagger.credentials import CredentialStore, FileSecretStore
from ai_tagger.engine import AnalysisEngine
from ai_tagger.errors import PromptFileError
from ai_tagger.images import JPEG_MIME_TYPE, prepare_image
from ai_tagger.metadata import ExifToolPhotoContext
from ai_tagger.models import AnalysisResult
from ai_tagger.prompts import list_presets, load_prompt_from_file
from ai_tagger.providers import PROVIDERS, ProviderId, list_providers

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL", "OFF"]
ProviderName = Literal["gemini", "ollama", "openai"]

DEFAULT_CONFIG_DIR = Path(os.getenv("AI_TAGGER_HOME", str(Path.home() / ".ai-tagger")))
DEFAULT_JPEG_QUALITY = int(os.getenv("JPEG_QUALITY", "80"))
DEFAULT_DIMENSIONS = int(os.getenv("JPEG_DIMENSIONS", "1280"))
SECRETS_FILE = "secrets.json"
PREFERENCES_FILE = "preferences.json"


app = App(
    name="ai-tagger",
    version=__version__,
)


def setup_logging(
    file_log_level: LogLevel = "DEBUG",
    console_log_level: LogLevel = "INFO",
    log_folder: Path = Path("logs"),
) -> None:
    """
    Configure Loguru for both console and file logging.

    Args:
        file_log_level: Log level for file (use 'OFF' to disable)
        console_log_level: Log level for console (use 'OFF' to disable)
        log_folder: Directory where log files are stored

    """
    # Remove default handler
    logger.remove()

    if file_log_level != "OFF":
        log_folder.mkdir(parents=True, exist_ok=True)
        log_file = log_folder / Path(
            datetime.now(tz=UTC).strftime("%Y%m%d%H%M%S-ai_tagger.log"),
        )
        logger.add(
            log_file,
            level=file_log_level,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{name:<8}:{function:<25}:{line:>4} | "
                "{message:<40} | "
                "{extra}"
            ),
            rotation="500 MB",
            retention="10 days",
            compression="zip",
        )

    if console_log_level != "OFF":
        logger.add(
            sys.stderr,
            level=console_log_level,
            colorize=True,
            format=(
                "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
                "<level>{level: <7}</level> | "
                "<level>{message:<40.50}</level> | "
                "<yellow>{extra}</yellow>"
            ),
        )


def _stores(config_dir: Path) -> tuple[FileSecretStore, JsonPreferences]:
    return (
        FileSecretStore(config_dir / SECRETS_FILE),
        JsonPreferences(config_dir / PREFERENCES_FILE),
    )


def _parse_extensions(image_extensions: str) -> set[str]:
    """
    Normalize comma-separated extensions into a set like {".cr3", ".jpg"}.

    Examples:
        >>> sorted(_parse_extensions("cr3, jpg ,PNG"))
        ['.PNG', '.cr3', '.jpg']

    """
    return {
        f".{ext.strip().lstrip('.')}"
        for ext in image_extensions.split(",")
        if ext.strip().lstrip(".")
    }


def _resolve_image_files(
    inputs: list[Path],
    ext_set: set[str],
    *,
    recursive: bool,
) -> list[Path]:
    """
    Resolve provided inputs into a list of files.

    - Directories are expanded by extension (honoring --recursive)
    - Explicit files are accepted as-is (extension filter not applied)
    - Order is preserved and duplicates removed
    """
    pattern = "**/*" if recursive else "*"

    files_from_dirs: list[Path] = []
    files_explicit: list[Path] = []

    for path in inputs:
        path_resolved = path
        with contextlib.suppress(OSError):
            path_resolved = path.resolve()
        if path_resolved.is_dir():
            for ext in sorted(ext_set):
                files_from_dirs.extend(sorted(path_resolved.glob(f"{pattern}{ext}")))
        elif path_resolved.is_file():
            files_explicit.append(path_resolved)
        else:
            logger.warning("input_not_file_or_dir", path=str(path))

    combined: list[Path] = []
    seen = set()
    for f in chain(files_explicit, files_from_dirs):
        key = str(f.resolve()) if f.exists() else str(f)
        if key not in seen:
            combined.append(f)
            seen.add(key)

    return combined


def _resolve_image_batch(
    inputs: list[Path] | None,
    image_extensions: str,
    *,
    recursive: bool,
) -> list[Path]:
    ext_set = _parse_extensions(image_extensions)
    if not ext_set:
        logger.error("no_valid_extensions_provided", raw_input=image_extensions)
        raise SystemExit(1)
    logger.debug("parsed_extensions", extensions=sorted(ext_set))

    if not inputs:
        logger.error(
            "no_inputs_provided",
            hint=("Pass one or more --input/-i paths (files or directories)"),
        )
        raise SystemExit(1)

    image_files = _resolve_image_files(inputs, ext_set, recursive=recursive)
    if not image_files:
        logger.error(
            "no_image_files_found",
            inputs=[str(p) for p in inputs],
            recursive=recursive,
            extensions=sorted(ext_set),
        )
        raise SystemExit(1)

    logger.info("image_files_discovered", count=len(image_files))
    return image_files


def _load_skip_list(skip_file: Path) -> set[str]:
    try:
        content = skip_file.read_text(encoding="utf-8")
    except OSError as exc:
        logger.error("skip_file_read_failed", file=str(skip_file), error=str(exc))
        raise SystemExit(1) from exc

    entries: set[str] = set()
    for line in content.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        entries.add(stripped)

    if entries:
        logger.info("skip_entries_loaded", count=len(entries), file=str(skip_file))
    else:
        logger.warning("skip_file_has_no_entries", file=str(skip_file))
    return entries


def _filter_skipped_files(
    image_files: list[Path],
    skip_entries: set[str],
) -> tuple[list[Path], int]:
    if not skip_entries:
        return image_files, 0

    name_keys = {
        entry.casefold() for entry in skip_entries if os.sep not in entry and "/" not in entry
    }
    path_keys = {entry.casefold() for entry in skip_entries if entry.casefold() not in name_keys}

    filtered: list[Path] = []
    skipped = 0
    for path in image_files:
        if path.name.casefold() in name_keys or str(path).casefold() in path_keys:
            logger.debug("skipping_file_from_list", file=str(path))
            skipped += 1
            continue
        filtered.append(path)

    return filtered, skipped


def _apply_skip_file(
    image_files: list[Path],
    skip_file: Path | None,
) -> list[Path]:
    if not skip_file:
        return image_files

    skip_entries = _load_skip_list(skip_file)
    filtered, skipped = _filter_skipped_files(image_files, skip_entries)
    if skipped:
        logger.info(
            "skip_list_applied",
            skipped=skipped,
            remaining=len(filtered),
            file=str(skip_file),
        )
    elif skip_entries:
        logger.warning("skip_list_matched_no_files", file=str(skip_file))
    return filtered


def _build_settings(overrides: dict[str, Any], prompt_file: Path | None) -> Settings:
    """Apply CLI overrides (None means 'keep the default') on top of the env-based defaults."""
    update = {key: value for key, value in overrides.items() if value is not None}
    if prompt_file is not None:
        try:
            update["custom_prompt"] = load_prompt_from_file(prompt_file)
        except PromptFileError as exc:
            logger.error("prompt_file_invalid", error=str(exc))
            raise SystemExit(1) from exc
        update["use_custom_prompt"] = True

    try:
        return Settings(**update)
    except ValidationError as exc:
        logger.error("invalid_settings", errors=exc.errors(include_url=False))
        raise SystemExit(1) from exc


def _load_image(image_file: Path, *, jpeg_dimensions: int, jpeg_quality: int) -> bytes:
    """Encode one file; a file that cannot be read yields empty bytes, which the engine rejects."""
    try:
        return prepare_image(image_file, jpeg_quality=jpeg_quality, max_size=jpeg_dimensions)
    except Exception:  # noqa: BLE001
        return b""


def _prepare_items(
    image_files: list[Path],
    *,
    include_metadata: bool,
    jpeg_dimensions: int,
    jpeg_quality: int,
) -> list[BatchItem]:
    """Build one lazy item per file; each image is encoded right before it is sent."""
    return [
        BatchItem(
            file_name=image_file.name,
            mime_type=JPEG_MIME_TYPE,
            photo=ExifToolPhotoContext(image_file) if include_metadata else None,
            loader=partial(
                _load_image,
                image_file,
                jpeg_dimensions=jpeg_dimensions,
                jpeg_quality=jpeg_quality,
            ),
        )
        for image_file in image_files
    ]


def _write_report(
    image_files: list[Path],
    results: list[AnalysisResult],
    output: Path | None,
) -> None:
    report = [
        {"file": str(path), **result.model_dump()}
        for path, result in zip(image_files, results, strict=True)
    ]
    text = json.dumps(report, indent=2, ensure_ascii=False)
    if output is None:
        print(text)  # noqa: T201
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(text + "\n", encoding="utf-8")
    logger.info("report_written", file=str(output), entries=len(report))


@app.default
def tag(
    inputs: Annotated[
        list[Path] | None,
        Parameter(
            name=("--input", "-i"),
            validator=validators.Path(exists=True),
            help="One or more paths: files and/or directories (repeat this option)",
        ),
    ] = None,
    skip_from: Annotated[
        Path | None,
        Parameter(
            name=("--skip-from",),
            validator=validators.Path(exists=True, file_okay=True, dir_okay=False),
            help="Path to newline-delimited text file listing filenames to skip",
        ),
    ] = None,
    *,
    image_extensions: Annotated[
        str,
        Parameter(
            name=("--ext", "--extensions"),
            help="Comma-separated image file extensions to process (case insensitive)",
        ),
    ] = "jpg,jpeg,cr3",
    recursive: Annotated[
        bool,
        Parameter(
            name=("--recursive", "-r"),
            help="Process files in subdirectories recursively",
        ),
    ] = False,
    provider_name: Annotated[
        ProviderName | None,
        Parameter(
            name=("--provider",),
            help="Backend provider: 'gemini', 'ollama' or 'openai'",
        ),
    ] = None,
    model_name: Annotated[
        str | None,
        Parameter(
            name=("--model", "-m"),
            help="Vision-language model name for the selected provider",
        ),
    ] = None,
    api_base_url: Annotated[
        str | None,
        Parameter(name=("--url", "-u"), help="Provider API base URL"),
    ] = None,
    temperature: Annotated[
        float | None,
        Parameter(name=("--temperature",), help="Sampling temperature (0.0-2.0)"),
    ] = None,
    top_p: Annotated[
        float | None,
        Parameter(name=("--top-p",), help="Nucleus sampling probability (0.0-1.0)"),
    ] = None,
    max_tokens: Annotated[
        int | None,
        Parameter(name=("--max-tokens",), help="Maximum tokens to generate"),
    ] = None,
    request_timeout: Annotated[
        float | None,
        Parameter(name=("--timeout",), help="HTTP timeout in seconds"),
    ] = None,
    batch_size: Annotated[
        int | None,
        Parameter(name=("--batch-size",), help="Number of photos per batch group"),
    ] = None,
    delay_ms: Annotated[
        int | None,
        Parameter(name=("--delay-ms",), help="Pause between requests in milliseconds"),
    ] = None,
    include_metadata: Annotated[
        bool,
        Parameter(
            name=("--include-metadata",),
            negative="--no-include-metadata",
            help="Send GPS/camera/exposure context (read with ExifTool) along with the prompt",
        ),
    ] = False,
    preset: Annotated[
        str | None,
        Parameter(name=("--preset",), help="Prompt preset name (see `ai-tagger presets`)"),
    ] = None,
    prompt_file: Annotated[
        Path | None,
        Parameter(
            name=("--prompt-file",),
            validator=validators.Path(exists=True, file_okay=True, dir_okay=False),
            help="Text file with a custom prompt (takes precedence over --preset)",
        ),
    ] = None,
    language: Annotated[
        str | None,
        Parameter(name=("--language",), help="Language of the generated text"),
    ] = None,
    hierarchical_keywords: Annotated[
        bool,
        Parameter(
            name=("--hierarchical-keywords",),
            negative="--flat-keywords",
            help="Ask for 'Broad > Specific' keyword hierarchies",
        ),
    ] = False,
    jpeg_dimensions: Annotated[
        int,
        Parameter(
            name=("--jpeg-dimensions",),
            help="Max dimension in pixels for the resized JPEG sent to the model",
        ),
    ] = DEFAULT_DIMENSIONS,
    jpeg_quality: Annotated[
        int,
        Parameter(
            name=("--jpeg-quality",),
            help="JPEG quality (1-100) for the image sent to the model",
        ),
    ] = DEFAULT_JPEG_QUALITY,
    output: Annotated[
        Path | None,
        Parameter(name=("--output", "-o"), help="Write the JSON report here instead of stdout"),
    ] = None,
    config_dir: Annotated[
        Path,
        Parameter(name=("--config-dir",), help="Directory holding stored keys and preferences"),
    ] = DEFAULT_CONFIG_DIR,
    file_log_level: Annotated[
        LogLevel,
        Parameter(
            name="--file-log-level",
            help="Log level for file (use 'OFF' to disable)",
        ),
    ] = "DEBUG",
    log_folder: Annotated[
        Path,
        Parameter(
            name=("--log-folder",),
            help="Folder where log files are stored",
        ),
    ] = Path("logs"),
    console_log_level: Annotated[
        LogLevel,
        Parameter(
            name="--console-log-level",
            help="Log level for console (use 'OFF' to disable)",
        ),
    ] = "INFO",
) -> None:
    """
    Analyze photos with AI and report title, caption, headline, keywords and more as JSON.

    Inputs:
    - One or more --input/-i paths (files and/or directories; repeatable).
    - Files are processed as is. Directories use --ext (add --recursive for subfolders).
    - You can mix files and directories; order is preserved, duplicates skipped.

    Behavior:
    - Loads each image (RAW supported), converts it to an in-memory JPEG and sends it to the
        selected provider, one photo at a time with a pause between requests.
    - Failed requests are retried up to three times per photo.
    - The report lists one entry per photo, in input order.

    Exit status: returns 1 if no inputs, no images found, or any photo fails.

    Examples:
        ai-tagger -i ./photos/IMG_0001.jpg
        ai-tagger -i ./photos --ext cr3,jpg -r --provider openai --preset "Travel & Landscape"
        ai-tagger -i ./photos --include-metadata --language German -o report.json

    """
    setup_logging(
        file_log_level=file_log_level,
        console_log_level=console_log_level,
        log_folder=log_folder,
    )
    logger.info(
        "starting_ai_tagger",
        inputs=[str(p) for p in (inputs or [])],
        extensions=image_extensions,
        provider=provider_name,
        model=model_name,
        recursive=recursive,
        skip_from=str(skip_from) if skip_from else None,
        include_metadata=include_metadata,
        preset=preset,
        prompt_file=str(prompt_file) if prompt_file else None,
    )

    image_files = _resolve_image_batch(inputs, image_extensions, recursive=recursive)
    image_files = _apply_skip_file(image_files, skip_from)
    if not image_files:
        logger.info("no_files_to_process_after_skipping")
        return

    provider_id = provider_name or Settings().provider
    overrides: dict[str, Any] = {
        "provider": provider_name,
        f"{provider_id}_model": model_name,
        f"{provider_id}_base_url": api_base_url,
        "temperature": temperature,
        "top_p": top_p,
        "max_tokens": max_tokens,
        "request_timeout": request_timeout,
        "batch_size": batch_size,
        "delay_between_requests_ms": delay_ms,
        "include_metadata": include_metadata,
        "preset_name": preset,
        "response_language": language,
        "use_hierarchical_keywords": hierarchical_keywords,
    }
    settings = _build_settings(overrides, prompt_file)

    secret_store, preferences = _stores(config_dir)
    items = _prepare_items(
        image_files,
        include_metadata=include_metadata,
        jpeg_dimensions=jpeg_dimensions,
        jpeg_quality=jpeg_quality,
    )

    def report_progress(completed: int, total: int) -> None:
        logger.info("progress", completed=completed, total=total)

    with AnalysisEngine(settings, secret_store, preferences) as engine:
        scheduler = BatchScheduler(engine, settings)
        results = scheduler.analyze_batch(items, progress_callback=report_progress)
    _write_report(image_files, results, output)

    failed = [path for path, result in zip(image_files, results, strict=True) if not result.status]
    if failed:
        logger.error("files_failed", files=[str(path) for path in failed])
        raise SystemExit(1)


@app.command
def providers(
    *,
    config_dir: Annotated[Path, Parameter(name=("--config-dir",))] = DEFAULT_CONFIG_DIR,
) -> None:
    """List the supported AI providers and whether an API key is stored for each."""
    setup_logging(file_log_level="OFF", console_log_level="WARNING")
    secret_store, preferences = _stores(config_dir)
    for descriptor in list_providers():
        client_cls = PROVIDERS[ProviderId(descriptor.id)]
        if not client_cls.requires_api_key:
            status = "no API key needed"
        elif CredentialStore(descriptor.id, secret_store, preferences).has_api_key():
            status = "API key configured"
        else:
            status = "API key required"
        print(  # noqa: T201
            f"{descriptor.id:<8} {descriptor.display_name:<16} {status:<20} "
            f"{descriptor.description}",
        )


@app.command
def presets() -> None:
    """List the available prompt presets."""
    for preset in list_presets():
        print(f"{preset.name:<28} {preset.description}")  # noqa: T201


@app.command
def set_key(
    provider: ProviderName,
    key: str,
    /,
    *,
    config_dir: Annotated[Path, Parameter(name=("--config-dir",))] = DEFAULT_CONFIG_DIR,
) -> None:
    """Store the API key of a provider (a new salt is generated every time)."""
    setup_logging(file_log_level="OFF", console_log_level="WARNING")
    secret_store, preferences = _stores(config_dir)
    CredentialStore(provider, secret_store, preferences).store_api_key(key.strip())
    print(f"API key stored for {provider}")  # noqa: T201


@app.command
def clear_key(
    provider: ProviderName,
    /,
    *,
    config_dir: Annotated[Path, Parameter(name=("--config-dir",))] = DEFAULT_CONFIG_DIR,
) -> None:
    """Remove the stored API key of a provider."""
    setup_logging(file_log_level="OFF", console_log_level="WARNING")
    secret_store, preferences = _stores(config_dir)
    CredentialStore(provider, secret_store, preferences).clear_api_key()
    print(f"API key cleared for {provider}")  # noqa: T201


@app.command
def test_connection(
    *,
    provider_name: Annotated[ProviderName | None, Parameter(name=("--provider",))] = None,
    config_dir: Annotated[Path, Parameter(name=("--config-dir",))] = DEFAULT_CONFIG_DIR,
    console_log_level: Annotated[LogLevel, Parameter(name="--console-log-level")] = "WARNING",
) -> None:
    """Check that the provider is reachable and accepts the stored API key."""
    setup_logging(file_log_level="OFF", console_log_level=console_log_level)
    settings = _build_settings({"provider": provider_name}, None)
    secret_store, preferences = _stores(config_dir)
    with AnalysisEngine(settings, secret_store, preferences) as engine:
        status = engine.test_connection()
    print(f"{settings.provider}: {status.message}")  # noqa: T201
    if not status.status:
        raise SystemExit(1)


if __name__ == "__main__":
    app()
