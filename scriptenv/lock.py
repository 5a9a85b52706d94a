"""Lock files for scripts.

``scriptenv lock --script example.py`` writes ``example.py.lock`` next to the
script. The lock records the metadata it was resolved from (as a digest) and
the exact version of every installed distribution. A run whose metadata still
matches the digest installs those exact versions.
"""

from __future__ import annotations

import hashlib
import json
import logging
import tomllib
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

import tomlkit

from scriptenv.environment.installer import InstalledPackage
from scriptenv.errors import LockError
from scriptenv.metadata.models import ScriptMetadata

logger = logging.getLogger(__name__)

LOCK_VERSION = 1
LOCK_SUFFIX = ".lock"


def lock_path(script: Path) -> Path:
    """Return the lock file path for a script (``example.py.lock``)."""
    return script.with_name(script.name + LOCK_SUFFIX)


def _index_urls(metadata: ScriptMetadata) -> list[str]:
    return [entry.url for entry in metadata.settings.index]


def manifest_digest(metadata: ScriptMetadata) -> str:
    """Return the digest of the metadata fields a lock depends on."""
    exclude_newer = metadata.settings.exclude_newer
    payload = {
        "requirements": sorted(metadata.dependencies),
        "requires-python": metadata.requires_python,
        "indexes": _index_urls(metadata),
        "exclude-newer": exclude_newer.isoformat() if exclude_newer else None,
    }
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


@dataclass
class ScriptLock:
    """Contents of a script lock file."""

    digest: str
    requirements: list[str] = field(default_factory=list)
    requires_python: str | None = None
    indexes: list[str] = field(default_factory=list)
    exclude_newer: datetime | None = None
    packages: list[InstalledPackage] = field(default_factory=list)
    version: int = LOCK_VERSION

    @classmethod
    def from_environment(
        cls, metadata: ScriptMetadata, packages: list[InstalledPackage]
    ) -> ScriptLock:
        """Build a lock from metadata and the packages it resolved to."""
        return cls(
            digest=manifest_digest(metadata),
            requirements=list(metadata.dependencies),
            requires_python=metadata.requires_python,
            indexes=_index_urls(metadata),
            exclude_newer=metadata.settings.exclude_newer,
            packages=sorted(packages, key=lambda p: p.name.lower()),
        )

    def pins(self) -> list[str]:
        """Return ``name==version`` for every locked package."""
        return [package.pin() for package in self.packages]

    def matches(self, metadata: ScriptMetadata) -> bool:
        """Check whether the lock was produced from this metadata."""
        return self.digest == manifest_digest(metadata)

    def dumps(self) -> str:
        """Serialize the lock as TOML."""
        document = tomlkit.document()
        document["version"] = self.version
        if self.requires_python:
            document["requires-python"] = self.requires_python

        manifest = tomlkit.table()
        requirements = tomlkit.array()
        requirements.extend(self.requirements)
        if self.requirements:
            requirements.multiline(True)
        manifest["requirements"] = requirements
        if self.indexes:
            manifest["indexes"] = self.indexes
        if self.exclude_newer is not None:
            manifest["exclude-newer"] = self.exclude_newer.isoformat()
        manifest["digest"] = self.digest
        document["manifest"] = manifest

        packages = tomlkit.aot()
        for package in self.packages:
            entry = tomlkit.table()
            entry["name"] = package.name
            entry["version"] = package.version
            packages.append(entry)
        document["package"] = packages
        return tomlkit.dumps(document)

    @classmethod
    def loads(cls, text: str, origin: str = "<lock>") -> ScriptLock:
        """Parse lock file TOML.

        Raises:
            LockError: If the text is not a lock this version understands.

        """
        try:
            data = tomllib.loads(text)
        except tomllib.TOMLDecodeError as e:
            raise LockError(f"Invalid TOML in {origin}: {e}") from e

        version = data.get("version")
        if version != LOCK_VERSION:
            raise LockError(f"Unsupported lock version {version!r} in {origin}")

        manifest = data.get("manifest", {})
        digest = manifest.get("digest")
        if not isinstance(digest, str):
            raise LockError(f"Missing `manifest.digest` in {origin}")

        exclude_newer = manifest.get("exclude-newer")
        try:
            packages = [
                InstalledPackage(name=str(entry["name"]), version=str(entry["version"]))
                for entry in data.get("package", [])
            ]
            parsed_cutoff = datetime.fromisoformat(exclude_newer) if exclude_newer else None
        except (KeyError, TypeError, ValueError) as e:
            raise LockError(f"Malformed lock file {origin}: {e}") from e

        return cls(
            digest=digest,
            requirements=list(manifest.get("requirements", [])),
            requires_python=data.get("requires-python"),
            indexes=list(manifest.get("indexes", [])),
            exclude_newer=parsed_cutoff,
            packages=packages,
            version=version,
        )


def read_lock(path: Path) -> ScriptLock | None:
    """Read a lock file, returning None if it does not exist."""
    if not path.exists():
        return None
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise LockError(f"Failed to read lock file {path}: {e}") from e
    return ScriptLock.loads(text, origin=f"`{path.name}`")


def write_lock(path: Path, lock: ScriptLock) -> None:
    """Write a lock file atomically."""
    temp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        temp_path.write_text(lock.dumps(), encoding="utf-8")
        temp_path.replace(path)
    except OSError as e:
        raise LockError(f"Failed to write lock file {path}: {e}") from e
    logger.info(f"Wrote {path} with {len(lock.packages)} packages")


def usable_lock(script: Path, metadata: ScriptMetadata, locked: bool = False) -> ScriptLock | None:
    """Return the script's lock if it matches the current metadata.

    Args:
        script: Script path.
        metadata: The script's current metadata.
        locked: Require an up-to-date lock.

    Returns:
        The lock, or None when there is none or it is stale (and not
        ``locked``).

    Raises:
        LockError: If ``locked`` and the lock is missing or stale.

    """
    path = lock_path(script)
    lock = read_lock(path)
    if lock is None:
        if locked:
            raise LockError(f"Unable to find lock file at `{path.name}`, but `--locked` was provided")
        return None

    if not lock.matches(metadata):
        if locked:
            raise LockError(
                f"The lock file `{path.name}` needs to be updated, but `--locked` was provided"
            )
        logger.warning(f"Ignoring outdated lock file `{path.name}`; run `scriptenv lock --script`")
        return None

    logger.debug(f"Using {len(lock.packages)} pinned packages from {path}")
    return lock
