"""Editor settings dataclass and persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

from cryptography.fernet import Fernet, InvalidToken

__all__ = [
    "EditorSettings",
    "SettingsStore",
    "SecretVault",
    "WRITING_TYPE_CHOICES",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)
SETTINGS_DIR = Path.home() / ".ghostwriter"
_DEFAULT_SETTINGS_PATH = SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_ENV_OVERRIDES: Mapping[str, str] = {
    "GHOSTWRITER_API_KEY": "api_key",
    "GHOSTWRITER_BASE_URL": "base_url",
    "GHOSTWRITER_MODEL": "model",
    "GHOSTWRITER_WRITING_TYPE": "writing_type",
    "GHOSTWRITER_SYNC_URL": "sync_base_url",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "GHOSTWRITER_AI_ENABLED": "ai_enabled",
    "GHOSTWRITER_DEBUG_LOGGING": "debug_logging",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "GHOSTWRITER_REQUEST_TIMEOUT": "request_timeout",
    "GHOSTWRITER_TEMPERATURE": "temperature",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_API_KEY_FIELD = "api_key_ciphertext"
WRITING_TYPE_CHOICES: tuple[str, ...] = (
    "general",
    "email",
    "journal",
    "academic",
    "business",
    "creative",
    "custom",
)


@dataclass(slots=True, frozen=True)
class EditorSettings:
    """Immutable user configuration shared by reference with the controllers.

    Changing a value produces a new object; components that care are handed
    the new instance explicitly.
    """

    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    ai_enabled: bool = True
    writing_type: str = "general"
    custom_instructions: str = ""
    request_timeout: float = 30.0
    max_retries: int = 2
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 4.0
    suggestion_debounce_seconds: float = 1.5
    min_suggestion_chars: int = 30
    failover_delay_seconds: float = 8.0
    autosave_delay_seconds: float = 1.0
    selection_context_chars: int = 200
    sync_base_url: str | None = None
    font_family: str = "inter"
    font_size: int = 16
    line_spacing: float = 1.6
    debug_logging: bool = False
    default_headers: dict[str, str] = field(default_factory=dict)

    def updated(self, **changes: Any) -> "EditorSettings":
        """Return a copy with ``changes`` applied."""

        return replace(self, **changes)

    def with_model(self, model: str) -> "EditorSettings":
        return replace(self, model=model)

    def with_temperature(self, temperature: float) -> "EditorSettings":
        return replace(self, temperature=max(0.0, min(float(temperature), 2.0)))

    def with_ai_enabled(self, enabled: bool) -> "EditorSettings":
        return replace(self, ai_enabled=bool(enabled))

    def with_writing_type(self, writing_type: str, custom_instructions: str | None = None) -> "EditorSettings":
        if writing_type not in WRITING_TYPE_CHOICES:
            raise ValueError(f"Unknown writing type '{writing_type}'")
        instructions = self.custom_instructions if custom_instructions is None else custom_instructions
        return replace(self, writing_type=writing_type, custom_instructions=instructions)


class SettingsStore:
    """Persistence adapter for :class:`EditorSettings`."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH
        key_path = self._path.with_suffix(".key")
        self._vault = vault or SecretVault(key_path=key_path)

    @property
    def path(self) -> Path:
        """Return the resolved path backing this store."""

        return self._path

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> EditorSettings:
        """Load settings from disk, applying CLI/environment overrides when present."""

        payload = self._read_payload()
        settings = EditorSettings()
        needs_migration = False

        if payload:
            plaintext_key, migrated = self._decrypt_api_key(
                payload.pop(_API_KEY_FIELD, None), payload.pop("api_key", None)
            )
            needs_migration = migrated
            data = _filter_fields(payload)
            try:
                settings = EditorSettings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = EditorSettings()
            if plaintext_key:
                settings = replace(settings, api_key=plaintext_key)
            if settings.writing_type not in WRITING_TYPE_CHOICES:
                LOGGER.warning("Unknown writing type '%s'; using general.", settings.writing_type)
                settings = replace(settings, writing_type="general")
                needs_migration = True

        version_mismatch = bool(payload) and payload.get("version") != _SETTINGS_VERSION
        if needs_migration or version_mismatch:
            try:
                self.save(settings)
            except OSError as exc:  # pragma: no cover - depends on filesystem
                LOGGER.warning("Failed to migrate settings payload: %s", exc)

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")

        return self._apply_env_overrides(settings)

    def save(self, settings: EditorSettings) -> Path:
        """Persist settings to disk with atomic file writes."""

        payload = self._serialize(settings)
        body = json.dumps(payload, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s (model=%s)", self._path, settings.model)
        return self._path

    def _serialize(self, settings: EditorSettings) -> Dict[str, Any]:
        data = asdict(settings)
        api_key = data.pop("api_key", "") or ""
        ciphertext = self._encrypt_api_key(api_key)
        if ciphertext:
            data[_API_KEY_FIELD] = ciphertext
        data["version"] = _SETTINGS_VERSION
        return data

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            text = self._path.read_text(encoding="utf-8")
            data = json.loads(text)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(data, dict):
            LOGGER.warning("Settings file %s does not contain an object", self._path)
            return {}
        return data

    def _apply_overrides(
        self,
        settings: EditorSettings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> EditorSettings:
        allowed = {item.name for item in fields(EditorSettings)}
        filtered = {key: value for key, value in overrides.items() if key in allowed and value is not None}
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: EditorSettings) -> EditorSettings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid float", env_name, value)
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings

    def _encrypt_api_key(self, api_key: str) -> str | None:
        if not api_key:
            return None
        try:
            return self._vault.encrypt(api_key)
        except OSError as exc:  # pragma: no cover - key file not writable
            LOGGER.warning("Failed to encrypt API key: %s", exc)
            return None

    def _decrypt_api_key(
        self, ciphertext: str | None, legacy_plaintext: str | None
    ) -> tuple[str, bool]:
        if ciphertext:
            try:
                return self._vault.decrypt(ciphertext), False
            except ValueError as exc:
                LOGGER.warning("Unable to decrypt API key: %s", exc)
                return "", False
        if legacy_plaintext:
            LOGGER.info("Detected plaintext API key; migrating to encrypted storage.")
            return legacy_plaintext, True
        return "", False


class SecretVault:
    """Encrypts and decrypts the API key with a Fernet key kept next to the settings."""

    name = "fernet"

    def __init__(self, *, key_path: Path | None = None) -> None:
        self._key_path = key_path or (SETTINGS_DIR / "settings.key")
        self._fernet: Fernet | None = None

    @property
    def key_path(self) -> Path:
        return self._key_path

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        token = self._get_fernet().encrypt(secret.encode("utf-8")).decode("ascii")
        return f"{self.name}:{token}"

    def decrypt(self, token: str | None) -> str:
        if not token:
            return ""
        prefix, _, payload = token.partition(":")
        if not payload:
            payload = prefix
        elif prefix != self.name:
            raise ValueError(f"Unknown secret token prefix '{prefix}'")
        try:
            return self._get_fernet().decrypt(payload.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._load_or_create_key())
        return self._fernet

    def _load_or_create_key(self) -> bytes:
        path = self._key_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            return path.read_bytes().strip()
        key = Fernet.generate_key()
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_bytes(key)
        if os.name != "nt":  # pragma: no cover - depends on OS
            os.chmod(tmp_path, 0o600)
        tmp_path.replace(path)
        return key


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {item.name for item in fields(EditorSettings)} - {"api_key"}
    return {key: value for key, value in payload.items() if key in allowed}


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
