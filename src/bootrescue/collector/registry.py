"""Read-only registry access for live and offline targets.

Offline hives are never loaded in place: ``RegQueryReader`` copies the hive
(and its transaction logs) to a scratch directory and loads the copy, so
probing cannot replay logs into the target's own files.
"""

from __future__ import annotations

import logging
import re
import shutil
import tempfile
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator

from bootrescue.collector.parsers import decode_text
from bootrescue.core.errors import CollectionError
from bootrescue.core.runner import CommandResult, CommandRunner

logger = logging.getLogger("bootrescue.collector")

MOUNT_PREFIX = "BR_"
_VALUE_LINE = re.compile(r"^\s+(.+?)\s+(REG_[A-Z0-9_]+)(?:\s+(.*))?$")


@dataclass(frozen=True)
class RegistryValue:
    name: str
    type: str
    data: Any


@dataclass(frozen=True)
class RegistryKey:
    path: str
    values: tuple[RegistryValue, ...] = ()
    subkeys: tuple[str, ...] = ()

    def value(self, name: str, default: Any = None) -> Any:
        wanted = name.lower()
        for v in self.values:
            if v.name.lower() == wanted:
                return v.data
        return default

    def has_subkey(self, name: str) -> bool:
        return name.lower() in (s.lower() for s in self.subkeys)


def mount_name(hive: str) -> str:
    return f"HKLM\\{MOUNT_PREFIX}{hive.upper()}"


def _convert(reg_type: str, data: str) -> Any:
    if reg_type in ("REG_DWORD", "REG_QWORD"):
        try:
            return int(data, 16) if data.lower().startswith("0x") else int(data)
        except ValueError:
            return data
    if reg_type == "REG_MULTI_SZ":
        return tuple(part for part in data.split("\\0") if part)
    return data


def parse_reg_query(text: str, path: str) -> RegistryKey:
    """Parse non-recursive ``reg query <key>`` output."""
    values: list[RegistryValue] = []
    subkeys: list[str] = []
    own = _normalise_root(path).lower()

    for line in text.splitlines():
        if not line.strip():
            continue
        if line.startswith("HKEY_") or line.startswith("HK"):
            if _normalise_root(line.strip()).lower() != own:
                subkeys.append(line.strip().rsplit("\\", 1)[-1])
            continue
        m = _VALUE_LINE.match(line)
        if m:
            name, reg_type, data = m.group(1), m.group(2), m.group(3) or ""
            values.append(RegistryValue(name=name, type=reg_type, data=_convert(reg_type, data)))

    return RegistryKey(path=path, values=tuple(values), subkeys=tuple(subkeys))


def _normalise_root(path: str) -> str:
    for short, full in (("HKLM\\", "HKEY_LOCAL_MACHINE\\"), ("HKCU\\", "HKEY_CURRENT_USER\\")):
        if path.upper().startswith(short):
            return full + path[len(short):]
    return path


class RegistryReader(ABC):
    """Looks up keys by logical hive ("SYSTEM", "SOFTWARE") and relative path."""

    @abstractmethod
    def query(self, hive: str, key: str) -> RegistryKey | None:
        """Return the key, or None when it does not exist.

        Raises CollectionError when the hive cannot be read at all.
        """
        ...

    def close(self) -> None:
        pass

    def __enter__(self) -> RegistryReader:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class RegQueryReader(RegistryReader):
    """Queries the registry through ``reg.exe``.

    With ``hive_dir`` unset the running system's hives are read directly
    (live OS). Otherwise each hive is copied out of ``hive_dir`` and loaded
    under ``HKLM\\BR_<HIVE>`` on first use.
    """

    def __init__(self, runner: CommandRunner, hive_dir: Path | None = None, timeout: int = 60):
        self.runner = runner
        self.hive_dir = hive_dir
        self.timeout = timeout
        self._mounted: dict[str, str] = {}
        self._failed: dict[str, str] = {}
        self._scratch: Path | None = None

    def query(self, hive: str, key: str) -> RegistryKey | None:
        root = self._root(hive)
        path = f"{root}\\{key}" if key else root
        result = self.runner.run(["reg", "query", path], timeout=self.timeout)
        if not result.success:
            if "unable to find" in result.output.lower():
                return None
            raise CollectionError(f"registry:{hive}", result.output or f"reg query exited {result.returncode}")
        return parse_reg_query(result.stdout, path)

    def close(self) -> None:
        for hive, root in list(self._mounted.items()):
            result = self.runner.run(["reg", "unload", root], timeout=self.timeout)
            if not result.success:
                logger.warning("Could not unload %s: %s", root, result.output)
            del self._mounted[hive]
        if self._scratch is not None:
            shutil.rmtree(self._scratch, ignore_errors=True)
            self._scratch = None

    def _root(self, hive: str) -> str:
        hive = hive.upper()
        if self.hive_dir is None:
            return f"HKLM\\{hive}"
        if hive in self._failed:
            raise CollectionError(f"registry:{hive}", self._failed[hive])
        if hive not in self._mounted:
            try:
                self._mounted[hive] = self._load_copy(hive)
            except CollectionError as e:
                self._failed[hive] = e.reason
                raise
        return self._mounted[hive]

    def _load_copy(self, hive: str) -> str:
        source = _find_case_insensitive(self.hive_dir, hive)
        if source is None or not source.is_file():
            raise CollectionError(f"registry:{hive}", f"hive file {hive} not found in {self.hive_dir}")
        if self._scratch is None:
            self._scratch = Path(tempfile.mkdtemp(prefix="bootrescue-hives-"))
        copy = self._scratch / hive
        try:
            shutil.copyfile(source, copy)
            for suffix in (".LOG1", ".LOG2"):
                log = source.with_name(source.name + suffix)
                if log.exists():
                    shutil.copyfile(log, copy.with_name(copy.name + suffix))
        except OSError as e:
            raise CollectionError(f"registry:{hive}", f"could not copy hive: {e}") from e

        root = mount_name(hive)
        result = self.runner.run(["reg", "load", root, str(copy)], timeout=self.timeout)
        if not result.success:
            raise CollectionError(f"registry:{hive}", result.output or "reg load failed")
        logger.debug("Loaded copy of %s at %s", source, root)
        return root


class RegExportReader(RegistryReader):
    """Reads keys from ``.reg`` exports (regedit / ``reg export`` format)."""

    HIVE_ROOTS = {
        "SYSTEM": ("HKEY_LOCAL_MACHINE\\SYSTEM", f"HKEY_LOCAL_MACHINE\\{MOUNT_PREFIX}SYSTEM"),
        "SOFTWARE": ("HKEY_LOCAL_MACHINE\\SOFTWARE", f"HKEY_LOCAL_MACHINE\\{MOUNT_PREFIX}SOFTWARE"),
    }

    def __init__(self, paths: list[Path]):
        self._keys: dict[str, tuple[str, list[RegistryValue]]] = {}
        for path in paths:
            self._load(path)

    def query(self, hive: str, key: str) -> RegistryKey | None:
        roots = self.HIVE_ROOTS.get(hive.upper())
        if roots is None:
            raise CollectionError(f"registry:{hive}", "hive not supported by export reader")
        if not any(k.startswith(r.lower() + "\\") or k == r.lower() for k in self._keys for r in roots):
            raise CollectionError(f"registry:{hive}", "hive not present in registry exports")

        for root in roots:
            full = f"{root}\\{key}" if key else root
            found = self._lookup(full)
            if found is not None:
                return found
        return None

    def _lookup(self, full: str) -> RegistryKey | None:
        wanted = full.lower()
        prefix = wanted + "\\"
        children: list[str] = []
        for lowered, (original, _) in self._keys.items():
            if lowered.startswith(prefix):
                child = original[len(full) + 1:].split("\\", 1)[0]
                if child.lower() not in (c.lower() for c in children):
                    children.append(child)
        entry = self._keys.get(wanted)
        if entry is None and not children:
            return None
        values = tuple(entry[1]) if entry else ()
        return RegistryKey(path=full, values=values, subkeys=tuple(children))

    def _load(self, path: Path) -> None:
        try:
            text = decode_text(path.read_bytes())
        except OSError as e:
            raise CollectionError("registry", f"could not read {path}: {e}") from e

        current: list[RegistryValue] | None = None
        for line in _join_continuations(text.splitlines()):
            line = line.strip()
            if not line or line.startswith(";"):
                continue
            if line.startswith("[") and line.endswith("]"):
                name = line[1:-1]
                if name.startswith("-"):
                    current = None
                    continue
                current = []
                self._keys[name.lower()] = (name, current)
                continue
            if current is None:
                continue
            try:
                value = _parse_export_value(line)
            except ValueError as e:
                logger.warning("Skipping malformed value in %s: %s (%s)", path, line, e)
                continue
            if value is not None:
                current.append(value)


def _join_continuations(lines: list[str]) -> Iterator[str]:
    pending = ""
    for line in lines:
        stripped = line.rstrip()
        if stripped.endswith("\\") and ("=hex" in stripped or pending):
            pending += stripped[:-1].strip()
            continue
        yield pending + stripped.strip() if pending else line
        pending = ""
    if pending:
        yield pending


def _parse_export_value(line: str) -> RegistryValue | None:
    if line.startswith("@="):
        name, raw = "(Default)", line[2:]
    elif line.startswith('"'):
        m = re.match(r'^"((?:[^"\\]|\\.)*)"=(.*)$', line)
        if not m:
            return None
        name, raw = _unescape(m.group(1)), m.group(2)
    else:
        return None

    if raw.startswith('"') and raw.endswith('"'):
        return RegistryValue(name, "REG_SZ", _unescape(raw[1:-1]))
    if raw.lower().startswith("dword:"):
        return RegistryValue(name, "REG_DWORD", int(raw[6:], 16))
    m = re.match(r"^hex(?:\((\w+)\))?:(.*)$", raw, re.IGNORECASE)
    if m:
        kind = (m.group(1) or "3").lower()
        data = bytes(int(b, 16) for b in m.group(2).replace(" ", "").split(",") if b)
        if kind == "7":
            strings = data.decode("utf-16-le", errors="replace").split("\x00")
            return RegistryValue(name, "REG_MULTI_SZ", tuple(s for s in strings if s))
        if kind in ("2", "1"):
            reg_type = "REG_EXPAND_SZ" if kind == "2" else "REG_SZ"
            return RegistryValue(name, reg_type, data.decode("utf-16-le", errors="replace").rstrip("\x00"))
        if kind == "b":
            return RegistryValue(name, "REG_QWORD", int.from_bytes(data, "little"))
        if kind == "4":
            return RegistryValue(name, "REG_DWORD", int.from_bytes(data, "little"))
        return RegistryValue(name, "REG_BINARY", data.hex())
    return None


def _unescape(value: str) -> str:
    return value.replace('\\"', '"').replace("\\\\", "\\")


def _find_case_insensitive(directory: Path | None, name: str) -> Path | None:
    if directory is None or not directory.is_dir():
        return None
    exact = directory / name
    if exact.exists():
        return exact
    for child in directory.iterdir():
        if child.name.lower() == name.lower():
            return child
    return None


@contextmanager
def mounted_hive(runner: CommandRunner, hive_file: str | None, hive: str = "SYSTEM") -> Iterator[str | CommandResult]:
    """Load a target hive for writing; yields the registry root to use.

    Yields the failed ``CommandResult`` instead of a root when loading fails,
    so callers can report it as the action's own result.
    """
    if hive_file is None:
        yield f"HKLM\\{hive.upper()}"
        return
    root = mount_name(hive)
    loaded = runner.run(["reg", "load", root, hive_file])
    if not loaded.success:
        yield loaded
        return
    try:
        yield root
    finally:
        unloaded = runner.run(["reg", "unload", root])
        if not unloaded.success:
            logger.warning("Could not unload %s: %s", root, unloaded.output)
