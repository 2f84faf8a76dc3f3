"""Indexer configuration handling."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, Field, ValidationInfo, field_validator, model_validator

ENV_PREFIX = "CS_"
DEFAULT_CONFIG_PATH = Path("~/.config/content-structure/config.yaml")

DEFAULT_EXTERNAL_STORAGE_KB = 512
DEFAULT_INLINE_COMPRESSION_KB = 32
DEFAULT_COMPRESSIBLE_EXTENSIONS = ["txt", "md", "json", "csv", "tsv", "yaml", "yml"]
DEFAULT_LINKABLE_EXTENSIONS = ["pdf", "zip", "csv", "xlsx", "docx", "pptx", "json", "yaml", "yml", "txt", "glb"]

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("paths", "root"): "root_dir",
    ("paths", "content"): "content_dir",
    ("paths", "output"): "out_dir",
    ("paths", "public"): "public_dir",
    ("paths", "catalog"): "catalog_path",
    ("storage", "db_name"): "db_name",
    ("storage", "external_storage_kb"): "external_storage_kb",
    ("storage", "inline_compression_kb"): "inline_compression_kb",
    ("storage", "compress_ext"): "file_compress_ext",
    ("storage", "capture_files"): "capture_files",
    ("content", "link_ext"): "file_link_ext",
    ("content", "folder_single_doc"): "folder_single_doc",
    ("version", "type"): "version_type",
    ("version", "tags"): "version_tags",
}


class Settings(BaseModel):
    """Run configuration loaded from YAML file and environment variables."""

    root_dir: Path = Field(default_factory=Path.cwd)
    content_dir: Path = Path("content")
    out_dir: Path = Path(".structure")
    public_dir: Path = Path("public")
    db_name: str = "structure.db"
    catalog_path: Path | None = None
    external_storage_kb: float = DEFAULT_EXTERNAL_STORAGE_KB
    inline_compression_kb: float = DEFAULT_INLINE_COMPRESSION_KB
    file_compress_ext: list[str] = Field(default_factory=lambda: list(DEFAULT_COMPRESSIBLE_EXTENSIONS))
    file_link_ext: list[str] = Field(default_factory=lambda: list(DEFAULT_LINKABLE_EXTENSIONS))
    folder_single_doc: bool = False
    capture_files: bool = True
    version_type: str = "run"
    version_tags: list[str] = Field(default_factory=list)
    debug: bool = False

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("root_dir", "content_dir", "out_dir", "public_dir", "catalog_path", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path | None:
        if value is None:
            return None
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("paths must be a path or string")

    @field_validator("file_compress_ext", "file_link_ext", "version_tags", mode="before")
    @classmethod
    def _split_list(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        return [str(entry).strip() for entry in value if str(entry).strip()]

    @field_validator("file_compress_ext", "file_link_ext")
    @classmethod
    def _normalize_extensions(cls, value: list[str]) -> list[str]:
        return [entry.lstrip(".").lower() for entry in value if entry.lstrip(".")]

    @field_validator("external_storage_kb", "inline_compression_kb", mode="before")
    @classmethod
    def _positive_threshold(cls, value: Any, info: ValidationInfo) -> float:
        fallback = {
            "external_storage_kb": DEFAULT_EXTERNAL_STORAGE_KB,
            "inline_compression_kb": DEFAULT_INLINE_COMPRESSION_KB,
        }[info.field_name]
        try:
            numeric = float(value)
        except (TypeError, ValueError):
            return fallback
        return numeric if numeric > 0 else fallback

    @model_validator(mode="after")
    def _resolve_dirs(self) -> "Settings":
        root = self.root_dir.resolve()
        # object.__setattr__ skips validate_assignment recursion
        object.__setattr__(self, "root_dir", root)
        for name in ("content_dir", "out_dir", "public_dir"):
            value = getattr(self, name)
            if not value.is_absolute():
                object.__setattr__(self, name, root / value)
        return self

    @property
    def db_path(self) -> Path:
        return self.out_dir / self.db_name

    @property
    def external_threshold_bytes(self) -> int:
        return int(self.external_storage_kb * 1024)

    @property
    def inline_compression_bytes(self) -> int:
        return int(self.inline_compression_kb * 1024)

    @classmethod
    def from_yaml(cls, path: Path | None = None, **overrides: Any) -> "Settings":
        """Load YAML config, overlay env vars then explicit overrides."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            data.update(_flatten_yaml(raw))
        data.update(_load_env_overrides())
        data.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**data)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        mapped_key = _YAML_KEY_MAP.get(next_prefix)
        if mapped_key:
            flat[mapped_key] = value
        elif isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        elif key in Settings.model_fields:
            flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with CS_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields:
            overrides[field_name] = value
    return overrides


__all__ = ["Settings", "ENV_PREFIX"]
