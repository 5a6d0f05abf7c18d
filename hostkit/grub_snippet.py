"""GRUB early USB-unlock snippet for /etc/grub.d."""

from __future__ import annotations

import os
import re

from .errors import FailureKind, PreconditionError
from .model import SnippetOptions

GRUB_MODULES = (
    "part_gpt",
    "usb",
    "usbms",
    "fat",
    "ext2",
    "cryptodisk",
    "luks",
    "gcry_rijndael",
    "gcry_sha256",
)

CRYPTODISK_LINE = "GRUB_ENABLE_CRYPTODISK=y"

# GRUB script has no quoting we can rely on for interpolated tokens
_SAFE_TOKEN = re.compile(r"^[A-Za-z0-9._+-]+$")


def _check_token(name: str, value: str) -> str:
    if not value or not _SAFE_TOKEN.match(value):
        raise PreconditionError(
            f"{name} {value!r} contains characters GRUB script cannot take literally",
            kind=FailureKind.INVALID_INPUT,
        )
    return value


def validate_names(usb_label: str, keyfile_name: str) -> None:
    _check_token("USB label", usb_label)
    _check_token("keyfile name", keyfile_name)


def render_unlock_snippet(luks_uuid: str, usb_label: str, keyfile_name: str, options: SnippetOptions | None = None) -> str:
    opts = options or SnippetOptions()
    uuid = _check_token("LUKS UUID", luks_uuid)
    label = _check_token("USB label", usb_label)
    key = _check_token("keyfile name", keyfile_name)
    dbg = opts.debug

    lines = [
        "#!/bin/sh",
        "exec tail -n +3 $0",
    ]
    if dbg:
        lines += [
            "# GRUB USB unlock (debug): verbose output for troubleshooting",
            "",
            "set debug=all",
        ]
    else:
        lines.append("# GRUB USB unlock")
    lines.append("")
    lines += [f"insmod {m}" for m in GRUB_MODULES]
    lines.append("")
    if dbg:
        lines.append('echo "DEBUG: GRUB debug enabled. Waiting for USB enumeration..."')
    lines.append(f"sleep {int(opts.usb_wait)}")
    if dbg:
        lines += [
            "",
            'echo "DEBUG: top-level device list (ls):"',
            "ls",
            'echo "DEBUG: listing potential devices:"',
            "insmod regexp",
            "for d in (*); do",
            '  echo "DEBUG: device -> $d"',
            "  ls $d",
            "done",
            "",
            f'echo "DEBUG: searching for label: {label}"',
        ]
    lines.append(f"search --no-floppy --label {label} --set=usbdev")
    if dbg:
        lines.append('echo "DEBUG: usbdev variable (raw): $usbdev"')
    lines += [
        'if [ -n "$usbdev" ]; then',
    ]
    if dbg:
        lines += [
            '  echo "USB key found at $usbdev, root listing:"',
            "  ls (${usbdev})/",
            f'  echo "DEBUG: checking for keyfile (${{usbdev}})/{key}"',
        ]
    lines += [
        f"  if [ -f (${{usbdev}})/{key} ]; then",
    ]
    if dbg:
        lines.append('    echo "DEBUG: keyfile present. Attempting cryptomount..."')
    lines += [
        f"    if cryptomount -u {uuid} -k (${{usbdev}})/{key}; then",
        '      echo "LUKS unlocked successfully via USB key."',
        "    else",
        '      echo "cryptomount failed using the USB key. Falling back to manual passphrase."',
        "    fi",
        "  else",
        '    echo "keyfile not found on $usbdev. Falling back to manual passphrase."',
        "  fi",
        "else",
        '  echo "USB key not detected (usbdev empty). Falling back to manual passphrase."',
        "fi",
        "",
    ]
    if dbg:
        lines.append("# keep GRUB menu timeout long enough to inspect messages")
    lines += [f"set timeout={int(opts.menu_timeout)}", ""]
    return "\n".join(lines)


def write_snippet(path: str, content: str) -> str:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    tmp_path = path + ".tmp"
    with open(tmp_path, "w", encoding="utf-8") as fh:
        fh.write(content)
        try:
            fh.flush()
            os.fsync(fh.fileno())
        except OSError:
            pass
    os.replace(tmp_path, path)
    os.chmod(path, 0o755)
    return path


def enable_cryptodisk(grub_default: str) -> bool:
    """Append ``GRUB_ENABLE_CRYPTODISK=y`` once; return True when written."""

    existing = ""
    try:
        with open(grub_default, "r", encoding="utf-8") as fh:
            existing = fh.read()
    except FileNotFoundError:
        existing = ""
    if any(line.strip() == CRYPTODISK_LINE for line in existing.splitlines()):
        return False
    prefix = "" if not existing or existing.endswith("\n") else "\n"
    with open(grub_default, "a", encoding="utf-8") as fh:
        fh.write(f"{prefix}{CRYPTODISK_LINE}\n")
    return True
