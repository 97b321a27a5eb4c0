import argparse
import sys
from pathlib import Path

from archinstall import debug, info
from archinstall.tui import Tui

from zroot_installer.config_io import DEFAULT_CONFIG_FILE, load_configuration, save_configuration
from zroot_installer.crypto import LuksEncryptionTool
from zroot_installer.disk import DeviceCatalog, SgdiskPartitionTool
from zroot_installer.environment import check_environment
from zroot_installer.errors import Cancelled, EnvironmentPreconditionError, ValidationError
from zroot_installer.menu import ConfigurationWizard, DeviceRequirement, TuiDialog
from zroot_installer.menu.models import InstallConfiguration
from zroot_installer.pipeline import ProvisioningPipeline
from zroot_installer.reporter import ExecutionReporter
from zroot_installer.zfs import ZfsPoolTool

EXIT_OK = 0
EXIT_CANCELLED = 1
EXIT_PIPELINE_FAILED = 2
EXIT_ENVIRONMENT = 3


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="zroot-installer", description="Install Arch Linux onto a ZFS root pool")
    parser.add_argument("--config", type=Path, help="Seed the wizard from a saved configuration document")
    parser.add_argument(
        "--save-config",
        type=Path,
        default=Path(DEFAULT_CONFIG_FILE),
        help="Where to write the configuration document (secrets are never written)",
    )
    parser.add_argument("--dry-run", action="store_true", help="Run the wizard and save the configuration, but do not touch any disk")
    parser.add_argument("--mountpoint", type=Path, default=Path("/mnt"), help="Alternate root for the new pool")
    parser.add_argument(
        "--require-bus",
        type=DeviceRequirement.parse,
        metavar="BUS:COUNT",
        help="Require at least COUNT selected drives on BUS (usb, disk, nvme), e.g. nvme:2",
    )
    return parser.parse_args(argv)


def run_wizard(args: argparse.Namespace, reporter: ExecutionReporter, seed: InstallConfiguration | None) -> InstallConfiguration:
    wizard = ConfigurationWizard(
        DeviceCatalog(),
        TuiDialog(),
        reporter,
        requirement=args.require_bus,
        seed=seed,
        mountpoint=args.mountpoint,
    )
    with Tui():
        return wizard.run()


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    reporter = ExecutionReporter()

    info("Starting ZFS root installation")

    try:
        check_environment()
        seed = load_configuration(args.config) if args.config else None
    except (EnvironmentPreconditionError, ValidationError, OSError) as e:
        reporter.fatal(f"Cannot start installation: {e!s}")
        return EXIT_ENVIRONMENT

    try:
        config = run_wizard(args, reporter, seed)
    except Cancelled:
        info("Installation cancelled, no changes were made")
        return EXIT_CANCELLED
    except EnvironmentPreconditionError as e:
        reporter.fatal(str(e))
        return EXIT_ENVIRONMENT

    try:
        save_configuration(config, args.save_config)
    except OSError as e:
        reporter.warn(f"Could not save configuration to {args.save_config}: {e!s}")

    if args.dry_run:
        info("Dry run, skipping provisioning")
        return EXIT_OK

    debug("Starting provisioning")
    pipeline = ProvisioningPipeline(
        SgdiskPartitionTool(reporter=reporter),
        LuksEncryptionTool(reporter=reporter),
        ZfsPoolTool(reporter=reporter),
        reporter,
    )
    result = pipeline.execute(config)
    if isinstance(result.error, ValidationError):
        reporter.fatal(f"Configuration rejected before provisioning: {result.error!s}")
        return EXIT_ENVIRONMENT
    if not result.ok:
        reporter.fatal(f"Installation failed at step '{result.failed_step}'. Fix the cause and rerun to resume.")
        return EXIT_PIPELINE_FAILED

    info("Installation completed successfully")
    return EXIT_OK


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
