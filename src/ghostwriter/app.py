"""Command-line bootstrap for the Ghostwriter editor core."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .ai.client import AIClient, ClientSettings, CompletionOptions
from .services.document_store import DocumentStore
from .services.local_store import LocalDocumentCache, export_documents, import_documents
from .services.remote_store import RemoteDocumentStore
from .services.settings import EditorSettings, SettingsStore, redact_secret
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_LOGGER = logging.getLogger(__name__)


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    """Configure structured logging for the application."""

    level = logging.DEBUG if debug else logging.INFO
    logging_utils.setup_logging(level, force=force)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> EditorSettings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        settings = active_store.load(overrides=overrides)
    except (OSError, ValueError, TypeError) as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        settings = EditorSettings()
    return settings


def build_document_store(
    settings: EditorSettings,
    *,
    cache_dir: Path | None = None,
    with_remote: bool = True,
) -> DocumentStore:
    remote = None
    if with_remote and settings.sync_base_url:
        remote = RemoteDocumentStore(settings.sync_base_url)
    return DocumentStore(LocalDocumentCache(cache_dir), remote)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the `ghostwriter` console script."""

    args = _parse_cli_args(argv)
    debug = bool(args.debug) or _env_flag("GHOSTWRITER_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("GHOSTWRITER_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc

    overrides_mapping: Dict[str, Any] | None = cli_overrides or None
    settings = load_settings(resolved_path, store=settings_store, overrides=overrides_mapping)

    if settings.debug_logging and not debug:
        configure_logging(True, force=True)

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return 0

    documents_dir = Path(args.documents_dir).expanduser() if args.documents_dir else None
    if args.list_documents or args.export_documents or args.import_documents:
        return asyncio.run(_run_document_command(args, settings, documents_dir))

    if args.complete is not None:
        return asyncio.run(_run_completion(settings, args.complete))

    print("Nothing to do; pass --help to see the available commands.", file=sys.stderr)
    return 1


async def _run_document_command(
    args: argparse.Namespace,
    settings: EditorSettings,
    documents_dir: Path | None,
    *,
    stream: TextIO | None = None,
) -> int:
    destination = stream or sys.stdout
    # The CLI never signs in, so only the anonymous cache is reachable.
    store = build_document_store(settings, cache_dir=documents_dir, with_remote=False)
    try:
        return await _apply_document_command(args, store, destination)
    finally:
        await store.aclose()


async def _apply_document_command(args: argparse.Namespace, store: DocumentStore, destination: TextIO) -> int:
    if args.import_documents:
        try:
            imported = import_documents(Path(args.import_documents).expanduser())
        except (OSError, ValueError) as exc:
            print(f"Import failed: {exc}", file=sys.stderr)
            return 1
        for document in imported:
            store.save(document)
        destination.write(f"Imported {len(imported)} document(s)\n")
    documents = await store.list()
    if args.export_documents:
        path = export_documents(documents, Path(args.export_documents).expanduser())
        destination.write(f"Exported {len(documents)} document(s) to {path}\n")
    if args.list_documents:
        for document in documents:
            destination.write(
                f"{document.id}  {document.updated_at:%Y-%m-%d %H:%M}  "
                f"{document.word_count:>6} words  {document.title}\n"
            )
    return 0


async def _run_completion(settings: EditorSettings, text: str, *, stream: TextIO | None = None) -> int:
    destination = stream or sys.stdout
    client = AIClient(ClientSettings.from_settings(settings))
    options = CompletionOptions(
        model_id=settings.model,
        temperature=settings.temperature,
        custom_instructions=settings.custom_instructions or None,
        writing_type=settings.writing_type,
    )
    try:
        result = await client.complete(text, options)
    except Exception as exc:
        _LOGGER.error("Completion via %s failed: %s", settings.model, exc)
        return 1
    finally:
        await client.aclose()
    destination.write(f"{result}\n")
    return 0


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="ghostwriter",
        description="Inspect Ghostwriter configuration, manage local documents or request a continuation.",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.ghostwriter/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings (repeatable).",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    parser.add_argument("--documents-dir", metavar="PATH", help="Directory holding the local document cache.")
    parser.add_argument("--list-documents", action="store_true", help="List documents visible locally.")
    parser.add_argument("--export-documents", metavar="PATH", help="Export documents to a JSON file.")
    parser.add_argument("--import-documents", metavar="PATH", help="Import documents from a JSON file.")
    parser.add_argument("--complete", metavar="TEXT", help="Request a continuation for TEXT and print it.")
    return parser.parse_args(argv)


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    fields = EditorSettings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(EditorSettings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        annotation = type_hints.get(key, fields[key].type)
        overrides[key] = _coerce_value(annotation, raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    target = _resolve_annotation(annotation)
    normalized = raw_value.strip()

    if normalized.lower() in {"none", "null"} and _is_optional(annotation):
        return None
    if target is str or target is Any:
        return normalized
    if target is bool:
        return _parse_bool(normalized)
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    if target is dict:
        try:
            return json.loads(normalized or "{}")
        except json.JSONDecodeError as exc:
            raise ValueError("Dict overrides must be valid JSON objects") from exc
    return normalized


def _is_optional(annotation: Any) -> bool:
    return type(None) in get_args(annotation)


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin is dict:
        return origin
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    return args[0]


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: EditorSettings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    payload = asdict(settings)
    payload["api_key"] = redact_secret(settings.api_key)
    metadata = {
        "path": str(store.path),
        "secret_backend": store.vault.name,
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
    }
    output = {"settings": payload, "meta": metadata}
    json.dump(output, destination, indent=2)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("GHOSTWRITER_"))


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
