from zroot_installer.main import main as main
