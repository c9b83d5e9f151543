"""Typed records for plugin resolution: request, manifest, candidates, handle."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from svrx.package_manager.semver import parse_version, valid_range

# All svrx plugins are published as svrx-plugin-<name>
PACKAGE_PREFIX = "svrx-plugin-"

# Descriptor file at the root of every plugin package
MANIFEST_FILE = "package.json"


def package_name(plugin: str) -> str:
    """``'hello'`` → ``'svrx-plugin-hello'``."""
    return f"{PACKAGE_PREFIX}{plugin}"


def svrx_range_of(data: dict[str, Any]) -> Optional[str]:
    """Extract the svrx compatibility range from a package.json-like dict.

    ``engines.svrx`` is preferred; a top-level ``svrx`` string is accepted as
    a fallback. Non-string values are treated as absent.
    """
    engines = data.get("engines")
    if isinstance(engines, dict) and isinstance(engines.get("svrx"), str):
        return engines["svrx"]
    if isinstance(data.get("svrx"), str):
        return data["svrx"]
    return None


# ─── PluginRequest ───────────────────────────────────────────────────────────


class PluginRequest(BaseModel):
    """One resolution request, built per CLI invocation and consumed once."""

    model_config = {"frozen": True}

    plugin: str = Field(
        ...,
        description="Bare plugin name without the svrx-plugin- prefix.",
        pattern=r"^[a-z0-9][a-z0-9._-]{0,213}$",
    )
    core_version: str = Field(..., description="Version of the running svrx.")
    version: Optional[str] = Field(
        default=None,
        description="Exact version or range. None = best fit for core_version.",
    )
    path: Optional[Path] = Field(
        default=None,
        description="Local package directory. Overrides all resolution when set.",
    )

    @field_validator("core_version")
    @classmethod
    def core_version_must_be_semver(cls, v: str) -> str:
        if parse_version(v) is None:
            raise ValueError(
                f"Core version '{v}' is not valid semver. Use MAJOR.MINOR.PATCH, e.g. '1.0.0'."
            )
        return v.strip()

    @field_validator("version")
    @classmethod
    def version_must_be_semver_or_range(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        v = v.strip()
        # The version becomes a directory name under plugins/<plugin>/
        if "/" in v or "\\" in v or ".." in v:
            raise ValueError(f"Version '{v}' must not contain path separators or '..'.")
        if parse_version(v) is None and not valid_range(v):
            raise ValueError(
                f"Version '{v}' is neither a semver version nor a version range "
                f"(e.g. '1.0.2', '^1.0.0')."
            )
        return v


# ─── PackageManifest ─────────────────────────────────────────────────────────


class PackageManifest(BaseModel):
    """The fields of ``package.json`` this component reads. Everything else is ignored.

    ``version`` and ``svrx_range`` are optional: a local plugin without a
    version still loads, and a release without an svrx range is treated as
    compatible with every core version.
    """

    model_config = {"frozen": True}

    name: str = Field(default="")
    version: Optional[str] = Field(default=None)
    svrx_range: Optional[str] = Field(default=None)

    @classmethod
    def from_package_json(cls, data: Any) -> "PackageManifest":
        if not isinstance(data, dict):
            raise ValueError(f"package.json must be a JSON object, got {type(data).__name__}")
        name = data.get("name")
        version = data.get("version")
        return cls(
            name=name if isinstance(name, str) else "",
            version=version if isinstance(version, str) else None,
            svrx_range=svrx_range_of(data),
        )


# ─── VersionEntry ────────────────────────────────────────────────────────────


class VersionEntry(BaseModel):
    """A candidate plugin release and the svrx range it declares."""

    model_config = {"frozen": True}

    version: str
    svrx_range: Optional[str] = None

    @field_validator("version")
    @classmethod
    def version_must_be_semver(cls, v: str) -> str:
        if parse_version(v) is None:
            raise ValueError(f"Version '{v}' is not valid semver.")
        return v


# ─── PluginHandle ────────────────────────────────────────────────────────────


class PluginHandle(BaseModel):
    """Result of ``load()``: what the plugin loader needs to import a plugin."""

    model_config = {"frozen": True}

    name: str
    version: Optional[str] = None
    path: Path
