from dataclasses import dataclass, field
from typing import Optional

from .paths import DEFAULT_BACKUP_DIR, GRUB_DEFAULT, GRUB_SCRIPT, SYSCTL_IPV6_DROPIN

GIB = 1024 * 1024 * 1024


@dataclass
class SnippetOptions:
    debug: bool = True
    usb_wait: int = 10
    menu_timeout: int = 30


@dataclass
class UsbUnlockConfig:
    luks_device: str = "/dev/nvme0n1p2"
    usb_device: str = "/dev/sda1"
    usb_label: str = "GRUBKEY"
    keyfile_name: str = "grub-luks.key"
    keyfile_dir: str = "/root"
    grub_script: str = GRUB_SCRIPT
    grub_default: str = GRUB_DEFAULT
    passphrase_file: Optional[str] = None
    snippet: SnippetOptions = field(default_factory=SnippetOptions)

    @property
    def keyfile_path(self) -> str:
        return f"{self.keyfile_dir.rstrip('/')}/{self.keyfile_name}"


@dataclass
class WriterConfig:
    source: str
    device: str
    block_size: int = GIB
    pause: Optional[float] = None
    cycle_bytes: int = 2 * GIB
    cycle_sleep: float = 10.0
    remainder_bs: str = "4M"
    dry_run: bool = False


@dataclass
class FlashConfig:
    device: Optional[str] = None
    iso: Optional[str] = None
    method: Optional[str] = None
    block_size: str = "4M"
    dry_run: bool = False


@dataclass
class ToolsDiskConfig:
    device: str = "/dev/sda"
    iso: str = "ubuntu-25.10-desktop-amd64.iso"
    crypt_name: str = "tools_crypt"
    mount_point: str = "/mnt/tools"
    headroom_mib: int = 100
    dry_run: bool = False


@dataclass
class HardenConfig:
    backup_dir: str = DEFAULT_BACKUP_DIR
    sysctl_dropin: str = SYSCTL_IPV6_DROPIN
    target_user: Optional[str] = None
    dry_run: bool = False


@dataclass
class RollbackConfig:
    backup_dir: str = DEFAULT_BACKUP_DIR
    sysctl_dropin: str = SYSCTL_IPV6_DROPIN
    dry_run: bool = False


@dataclass
class DepCheckConfig:
    mode: str = "check"
    full: bool = False
    extra_commands: list[str] = field(default_factory=list)


@dataclass
class PasswdConfig:
    user: str = "root"
    length: int = 16
    output: str = "./root-password.txt"
