"""``hostkit`` command line: one sub-command per workstation tool.

Every run ends with a single JSON result line on stdout and a matching
record in the trace log; the process exit code comes from ``RESULT_CODES``.
"""

from __future__ import annotations

import argparse
import json
import re
import subprocess
import sys
import time
from typing import Any, Callable, Dict, Optional, Tuple

from . import console
from .confirm import Confirmer
from .depcheck import check_dependencies
from .errors import FailureKind, HostkitError, PipelineAborted
from .executil import append_jsonl, resolve_log_path, trace
from .flash import ERASE_METHODS, erase_device, flash_iso
from .harden import harden
from .model import (
    GIB,
    DepCheckConfig,
    FlashConfig,
    HardenConfig,
    PasswdConfig,
    RollbackConfig,
    SnippetOptions,
    ToolsDiskConfig,
    UsbUnlockConfig,
    WriterConfig,
)
from .passwd import rotate_password
from .paths import DEFAULT_BACKUP_DIR
from .pipeline import as_hostkit_error
from .rollback import rollback
from .services import prune_services
from .toolsdisk import build_tools_disk
from .usb_unlock import setup_usb_unlock
from .writer import burst_write

RESULT_CODES: Dict[str, int] = {
    "USB_UNLOCK_OK": 0,
    "BURST_WRITE_OK": 0,
    "FLASH_OK": 0,
    "ERASE_OK": 0,
    "TOOLS_DISK_OK": 0,
    "HARDEN_OK": 0,
    "ROLLBACK_OK": 0,
    "PRUNE_SERVICES_OK": 0,
    "DEPS_OK": 0,
    "ROOT_PASSWD_OK": 0,
    "DECLINED": 0,
    "FAIL_PRECONDITION": 1,
    "FAIL_STEP": 1,
    "FAIL_UNHANDLED": 1,
    "INTERRUPTED": 130,
}

JSON_OUTPUT_ENABLED = True
CLI_START_MONO = time.perf_counter()

_SIZE_RE = re.compile(r"^\s*(\d+)\s*([KMGT]?)(?:i?B)?\s*$", re.IGNORECASE)
_SIZE_UNITS = {"": 1, "K": 1024, "M": 1024**2, "G": 1024**3, "T": 1024**4}


def parse_size(text: str) -> int:
    """``1073741824``, ``1G``, ``512M``, ``4KiB`` -> bytes."""

    match = _SIZE_RE.match(str(text))
    if not match:
        raise argparse.ArgumentTypeError(f"invalid size: {text!r}")
    return int(match.group(1)) * _SIZE_UNITS[match.group(2).upper()]


def _emit_result(kind: str, extra: Optional[Dict[str, Any]] = None, exit_code: Optional[int] = None) -> None:
    payload: Dict[str, Any] = {"result": kind, "ts": int(time.time())}
    if extra:
        payload.update(extra)
    payload["timing_total_ms"] = int(max(0.0, (time.perf_counter() - CLI_START_MONO) * 1000))
    log_path = resolve_log_path()
    if log_path:
        payload.setdefault("log_path", log_path)
        append_jsonl(log_path, payload)
    if JSON_OUTPUT_ENABLED:
        print(json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str))
    code = RESULT_CODES.get(kind, 1) if exit_code is None else exit_code
    raise SystemExit(code)


def result_kind_for(err: HostkitError) -> str:
    if err.kind == FailureKind.DECLINED:
        return "DECLINED"
    if err.kind == FailureKind.COMMAND_FAILED:
        return "FAIL_STEP"
    return "FAIL_PRECONDITION"


def _confirmer(args: argparse.Namespace) -> Confirmer:
    return Confirmer(assume_yes=getattr(args, "assume_yes", False))


def cmd_usb_unlock(args: argparse.Namespace) -> Tuple[str, Dict[str, Any]]:
    cfg = UsbUnlockConfig(
        luks_device=args.luks_device,
        usb_device=args.usb_device,
        usb_label=args.usb_label,
        keyfile_name=args.keyfile_name,
        keyfile_dir=args.keyfile_dir,
        grub_script=args.grub_script,
        grub_default=args.grub_default,
        passphrase_file=args.passphrase_file,
        snippet=SnippetOptions(debug=not args.quiet_snippet, usb_wait=args.usb_wait, menu_timeout=args.menu_timeout),
    )
    return "USB_UNLOCK_OK", setup_usb_unlock(cfg, _confirmer(args))


def cmd_burst_write(args: argparse.Namespace) -> Tuple[str, Dict[str, Any]]:
    pause = 0.0 if args.no_pause else args.pause
    cfg = WriterConfig(
        source=args.source,
        device=args.device,
        block_size=args.block_size,
        pause=pause,
        cycle_bytes=args.cycle_bytes,
        cycle_sleep=args.cycle_sleep,
        dry_run=args.dry_run,
    )
    summary = burst_write(cfg, _confirmer(args))
    summary = {k: v for k, v in summary.items() if k != "writes"}
    return "BURST_WRITE_OK", summary


def cmd_flash(args: argparse.Namespace) -> Tuple[str, Dict[str, Any]]:
    cfg = FlashConfig(device=args.device, iso=args.iso, dry_run=args.dry_run)
    return "FLASH_OK", flash_iso(cfg, _confirmer(args))


def cmd_erase(args: argparse.Namespace) -> Tuple[str, Dict[str, Any]]:
    cfg = FlashConfig(device=args.device, method=args.method, dry_run=args.dry_run)
    return "ERASE_OK", erase_device(cfg, _confirmer(args))


def cmd_tools_disk(args: argparse.Namespace) -> Tuple[str, Dict[str, Any]]:
    cfg = ToolsDiskConfig(
        device=args.device,
        iso=args.iso,
        crypt_name=args.crypt_name,
        mount_point=args.mount_point,
        dry_run=args.dry_run,
    )
    return "TOOLS_DISK_OK", build_tools_disk(cfg, _confirmer(args))


def cmd_harden(args: argparse.Namespace) -> Tuple[str, Dict[str, Any]]:
    cfg = HardenConfig(backup_dir=args.backup_dir, target_user=args.target_user, dry_run=args.dry_run)
    return "HARDEN_OK", harden(cfg, _confirmer(args))


def cmd_rollback(args: argparse.Namespace) -> Tuple[str, Dict[str, Any]]:
    cfg = RollbackConfig(backup_dir=args.backup_dir, dry_run=args.dry_run)
    return "ROLLBACK_OK", rollback(cfg, _confirmer(args))


def cmd_prune_services(args: argparse.Namespace) -> Tuple[str, Dict[str, Any]]:
    return "PRUNE_SERVICES_OK", prune_services(dry_run=args.dry_run)


def cmd_deps(args: argparse.Namespace) -> Tuple[str, Dict[str, Any]]:
    mode = "install" if args.install or args.full else "check"
    cfg = DepCheckConfig(mode=mode, full=args.full, extra_commands=list(args.extra or []))
    return "DEPS_OK", check_dependencies(cfg)


def cmd_root_passwd(args: argparse.Namespace) -> Tuple[str, Dict[str, Any]]:
    cfg = PasswdConfig(user=args.user, length=args.length, output=args.output)
    return "ROOT_PASSWD_OK", rotate_password(cfg, _confirmer(args))


def _add_dry_run(p: argparse.ArgumentParser) -> None:
    p.add_argument("--dry-run", action="store_true", help="log external commands instead of running them")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hostkit", add_help=True)
    parser.add_argument("--json", dest="json", action="store_true", default=True)
    parser.add_argument("--no-json", dest="json", action="store_false")
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.required = True

    p = sub.add_parser("usb-unlock", help="enrol a USB keyfile and install the GRUB unlock snippet")
    p.add_argument("--luks-device", default=UsbUnlockConfig.luks_device)
    p.add_argument("--usb-device", default=UsbUnlockConfig.usb_device)
    p.add_argument("--usb-label", default=UsbUnlockConfig.usb_label)
    p.add_argument("--keyfile-name", default=UsbUnlockConfig.keyfile_name)
    p.add_argument("--keyfile-dir", default=UsbUnlockConfig.keyfile_dir)
    p.add_argument("--grub-script", default=UsbUnlockConfig.grub_script)
    p.add_argument("--grub-default", default=UsbUnlockConfig.grub_default)
    p.add_argument("--passphrase-file", default=None)
    p.add_argument("--quiet-snippet", action="store_true", help="omit GRUB debug output from the snippet")
    p.add_argument("--usb-wait", type=int, default=SnippetOptions.usb_wait)
    p.add_argument("--menu-timeout", type=int, default=SnippetOptions.menu_timeout)
    p.set_defaults(func=cmd_usb_unlock)

    p = sub.add_parser("burst-write", help="write an image to a device in large bursts")
    p.add_argument("source")
    p.add_argument("device")
    p.add_argument("-b", "--block-size", type=parse_size, default=GIB)
    p.add_argument("-p", "--pause", type=float, default=None)
    p.add_argument("-n", "--no-pause", action="store_true")
    p.add_argument("-c", "--cycle-bytes", type=parse_size, default=2 * GIB)
    p.add_argument("-w", "--cycle-sleep", type=float, default=10.0)
    _add_dry_run(p)
    p.set_defaults(func=cmd_burst_write)

    p = sub.add_parser("flash", help="flash an ISO to a USB drive")
    p.add_argument("--device", default=None)
    p.add_argument("--iso", default=None)
    _add_dry_run(p)
    p.set_defaults(func=cmd_flash)

    p = sub.add_parser("erase", help="securely erase a USB drive")
    p.add_argument("--device", default=None)
    p.add_argument("--method", choices=ERASE_METHODS, default=None)
    _add_dry_run(p)
    p.set_defaults(func=cmd_erase)

    p = sub.add_parser("tools-disk", help="ISO partition plus encrypted tools partition")
    p.add_argument("--device", default=ToolsDiskConfig.device)
    p.add_argument("--iso", default=ToolsDiskConfig.iso)
    p.add_argument("--crypt-name", default=ToolsDiskConfig.crypt_name)
    p.add_argument("--mount-point", default=ToolsDiskConfig.mount_point)
    _add_dry_run(p)
    p.set_defaults(func=cmd_tools_disk)

    for name, func, help_text in (
        ("harden", cmd_harden, "isolate the host from remote access"),
        ("rollback", cmd_rollback, "undo a hardening run"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--backup-dir", default=DEFAULT_BACKUP_DIR)
        p.add_argument("--yes", dest="assume_yes", action="store_true", help="answer yes to optional steps")
        if name == "harden":
            p.add_argument("--target-user", default=None)
        _add_dry_run(p)
        p.set_defaults(func=func)

    p = sub.add_parser("prune-services", help="disable non-essential desktop services")
    _add_dry_run(p)
    p.set_defaults(func=cmd_prune_services)

    p = sub.add_parser("deps", help="check for triage and forensic tools")
    mode = p.add_mutually_exclusive_group()
    mode.add_argument("--check", action="store_true", help="only report missing commands (default)")
    mode.add_argument("--install", action="store_true", help="install missing core tools")
    mode.add_argument("--full", action="store_true", help="install core and optional forensic tools")
    p.add_argument("--extra", action="append", metavar="CMD", help="additional command to check")
    p.set_defaults(func=cmd_deps)

    p = sub.add_parser("root-passwd", help="set a random password and store it in a 0600 file")
    p.add_argument("--user", default=PasswdConfig.user)
    p.add_argument("--length", type=int, default=PasswdConfig.length)
    p.add_argument("--output", default=PasswdConfig.output)
    p.set_defaults(func=cmd_root_passwd)

    return parser


def _run_command(func: Callable[[argparse.Namespace], Tuple[str, Dict[str, Any]]], args: argparse.Namespace) -> None:
    try:
        kind, payload = func(args)
    except PipelineAborted as exc:
        if exc.kind != FailureKind.DECLINED:
            console.fail(str(exc.cause))
        _emit_result(
            result_kind_for(exc),
            extra={
                "step": exc.step,
                "kind": exc.kind.value,
                "why": str(exc.cause),
                "steps": [r.as_dict() for r in exc.results],
            },
            exit_code=exc.exit_code,
        )
    except (HostkitError, subprocess.SubprocessError, OSError) as exc:
        err = as_hostkit_error(exc)
        if err.kind != FailureKind.DECLINED:
            console.fail(str(err))
        _emit_result(result_kind_for(err), extra={"kind": err.kind.value, "why": str(err)}, exit_code=err.exit_code)
    _emit_result(kind, payload)


def main(argv: Optional[list[str]] = None) -> int:
    global JSON_OUTPUT_ENABLED
    args = build_parser().parse_args(argv)
    JSON_OUTPUT_ENABLED = args.json
    trace("cli.start", command=args.command, argv=list(argv) if argv is not None else sys.argv[1:])
    try:
        _run_command(args.func, args)
    except SystemExit:
        raise
    except KeyboardInterrupt:
        print()
        console.fail("interrupted")
        _emit_result("INTERRUPTED", extra={"command": args.command})
    except Exception as exc:  # noqa: BLE001
        console.fail(f"unhandled error: {exc}")
        _emit_result("FAIL_UNHANDLED", extra={"error": str(exc)})
    return 0


if __name__ == "__main__":
    sys.exit(main())
