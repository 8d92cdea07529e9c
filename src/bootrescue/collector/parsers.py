"""Text parsers for native tool output (bcdedit, manage-bde, fsutil, SrtTrail)."""

from __future__ import annotations

import re

from bootrescue.core.models import BcdEntry, BcdFacts, BitLockerFacts

# bcdedit /v prints well-known objects by GUID
WELL_KNOWN_GUIDS = {
    "{9dea862c-5cdd-4e70-acc1-f32b344d4795}": "{bootmgr}",
    "{a5a30fa2-3d06-4e9f-b5f4-a01df9d1fcba}": "{fwbootmgr}",
    "{b2721d73-1db4-4c62-bf78-c548a880142d}": "{memdiag}",
}

_DASHES = re.compile(r"^-{3,}$")
_KEY_VALUE = re.compile(r"^(\S+)\s+(.*)$")


def _canonical_id(value: str) -> str:
    return WELL_KNOWN_GUIDS.get(value.strip().lower(), value.strip())


def parse_bcdedit(text: str) -> BcdFacts:
    """Parse ``bcdedit /enum all /v`` output into BCD entries."""
    lines = text.splitlines()
    blocks: list[tuple[str, dict[str, list[str]]]] = []
    current: dict[str, list[str]] | None = None
    last_key = ""

    for idx, raw in enumerate(lines):
        line = raw.rstrip()
        stripped = line.strip()
        if not stripped:
            continue
        if _DASHES.match(stripped):
            continue
        next_line = lines[idx + 1].strip() if idx + 1 < len(lines) else ""
        if _DASHES.match(next_line):
            current = {}
            blocks.append((stripped, current))
            last_key = ""
            continue
        if current is None:
            continue
        if line[0].isspace():
            if last_key:
                current[last_key].append(stripped)
            continue
        m = _KEY_VALUE.match(stripped)
        if m:
            last_key = m.group(1).lower()
            current.setdefault(last_key, []).append(m.group(2).strip())
        else:
            last_key = stripped.lower()
            current.setdefault(last_key, [])

    entries = []
    for entry_type, values in blocks:
        identifier = _first(values, "identifier")
        if not identifier:
            continue
        entries.append(BcdEntry(
            identifier=_canonical_id(identifier),
            entry_type=entry_type,
            description=_first(values, "description") or "",
            device=_first(values, "device"),
            osdevice=_first(values, "osdevice"),
            path=_first(values, "path"),
            safeboot=_first(values, "safeboot"),
            default=_canonical_or_none(_first(values, "default")),
            display_order=tuple(_canonical_id(v) for v in values.get("displayorder", [])),
            boot_sequence=tuple(_canonical_id(v) for v in values.get("bootsequence", [])),
        ))
    return BcdFacts(entries=tuple(entries))


def _first(values: dict[str, list[str]], key: str) -> str | None:
    found = values.get(key)
    if not found:
        return None
    return found[0] or None


def _canonical_or_none(value: str | None) -> str | None:
    return _canonical_id(value) if value else None


def parse_manage_bde_status(text: str, volume: str) -> BitLockerFacts:
    """Parse ``manage-bde -status <volume>``.

    Raises ValueError when the output carries no status block.
    """
    fields: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            continue
        fields[key.strip().lower()] = value.strip()

    conversion = fields.get("conversion status")
    lock_status = fields.get("lock status", "")
    if conversion is None and not lock_status:
        raise ValueError("no BitLocker status in manage-bde output")

    locked = lock_status.lower() == "locked"
    conversion = conversion or ""
    encrypted = locked or (
        bool(conversion) and conversion.lower() not in ("fully decrypted", "unknown")
    )
    protection = fields.get("protection status", "").lower()
    percent = None
    raw_percent = fields.get("percentage encrypted", "").rstrip("%").strip()
    if raw_percent:
        try:
            percent = float(raw_percent.replace(",", "."))
        except ValueError:
            percent = None

    return BitLockerFacts(
        volume=volume,
        encrypted=encrypted,
        protection_on=protection.startswith("protection on") or locked,
        locked=locked,
        conversion_status=conversion,
        percent_encrypted=percent,
    )


def parse_fsutil_filesystem(text: str) -> str:
    """Return the "File System Name" from ``fsutil fsinfo volumeinfo``."""
    for line in text.splitlines():
        key, sep, value = line.partition(":")
        if sep and key.strip().lower() == "file system name":
            return value.strip().upper()
    raise ValueError("no file system name in fsutil output")


def parse_srttrail(text: str) -> str | None:
    """Return the last root cause Automatic Repair recorded, if any."""
    lines = [ln.strip() for ln in text.splitlines()]
    cause = None
    for idx, line in enumerate(lines):
        if not line.lower().startswith("root cause found"):
            continue
        for follow in lines[idx + 1:]:
            if not follow or _DASHES.match(follow):
                continue
            cause = follow
            break
    if cause and cause.lower().startswith("no root cause"):
        return None
    return cause


def decode_text(data: bytes) -> str:
    """Decode a log or export written either as UTF-16 (with BOM) or UTF-8."""
    if data.startswith((b"\xff\xfe", b"\xfe\xff")):
        return data.decode("utf-16", errors="replace")
    return data.decode("utf-8-sig", errors="replace")
