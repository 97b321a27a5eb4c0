"""
Block-level encryption of pool-member partitions with LUKS2.

Passphrases are handed to cryptsetup through a key file inside a private
temporary directory that is removed as soon as the command returns, so they
never show up on a command line or in the install log.
"""

import tempfile
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from archinstall.lib.exceptions import SysCallError
from archinstall.lib.general import SysCommand

from zroot_installer.reporter import ExecutionReporter

MAPPER_DIR = Path("/dev/mapper")


class EncryptionTool(ABC):
    """Block-encryption capability used by the pipeline."""

    @abstractmethod
    def is_encrypted(self, partition: Path) -> bool:
        """True when `partition` already carries a LUKS header."""

    @abstractmethod
    def format(self, partition: Path, secret: str) -> None:
        """Initialize encryption on `partition` keyed by `secret`."""

    @abstractmethod
    def open(self, partition: Path, name: str, secret: str) -> Path:
        """Open `partition` as mapping `name` and return the mapping target."""

    @abstractmethod
    def is_open(self, name: str) -> bool:
        """True when the mapping `name` exists."""

    @abstractmethod
    def backing_device(self, name: str) -> Path | None:
        """Device underneath the open mapping `name`, or None when it is closed."""

    def mapping_path(self, name: str) -> Path:
        return MAPPER_DIR / name

    def is_mapped_from(self, name: str, partition: Path) -> bool:
        """True when mapping `name` is open on top of `partition`."""
        backing = self.backing_device(name)
        # by-id links and kernel names refer to the same node once resolved
        return backing is not None and backing.resolve() == partition.resolve()


@contextmanager
def key_file(secret: str) -> Iterator[Path]:
    """Write `secret` to a 0600 key file that only lives for the block."""
    with tempfile.TemporaryDirectory(prefix="zroot-key-") as tmpdir:
        path = Path(tmpdir) / "key"
        path.touch(mode=0o600)
        path.write_text(secret)
        try:
            yield path
        finally:
            path.unlink(missing_ok=True)


class LuksEncryptionTool(EncryptionTool):
    """Handles LUKS2 operations through cryptsetup"""

    def __init__(self, cipher: str = "aes-xts-plain64", key_size: int = 512, reporter: ExecutionReporter | None = None):
        self.cipher = cipher
        self.key_size = key_size
        self.reporter = reporter or ExecutionReporter()

    def is_encrypted(self, partition: Path) -> bool:
        try:
            SysCommand(f"cryptsetup isLuks {partition}")
            return True
        except SysCallError:
            return False

    def format(self, partition: Path, secret: str) -> None:
        self.reporter.debug(f"Initializing LUKS2 on {partition}")
        try:
            with key_file(secret) as key:
                SysCommand(
                    f"cryptsetup --batch-mode luksFormat --type luks2 --cipher {self.cipher} "
                    f"--key-size {self.key_size} --key-file {key} {partition}"
                )
        except SysCallError as e:
            self.reporter.error(f"Failed to encrypt {partition}: {e!s}")
            raise
        self.reporter.info(f"Encrypted {partition}")

    def open(self, partition: Path, name: str, secret: str) -> Path:
        self.reporter.debug(f"Opening {partition} as {name}")
        try:
            with key_file(secret) as key:
                SysCommand(f"cryptsetup open --type luks2 --key-file {key} {partition} {name}")
        except SysCallError as e:
            self.reporter.error(f"Failed to open {partition}: {e!s}")
            raise
        target = self.mapping_path(name)
        self.reporter.info(f"Opened {partition} at {target}")
        return target

    def is_open(self, name: str) -> bool:
        return self.backing_device(name) is not None

    def backing_device(self, name: str) -> Path | None:
        try:
            output = SysCommand(f"cryptsetup status {name}").decode()
        except SysCallError:
            return None
        for line in output.splitlines():
            key, _, value = line.strip().partition(":")
            if key == "device" and value.strip():
                return Path(value.strip())
        return None
