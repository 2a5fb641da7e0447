"""SSH key setup for private Terraform module sources."""

import logging
import shlex
import shutil
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)


def install_ssh_key(key_path: Optional[str], home: Optional[Path] = None) -> Dict[str, str]:
    """
    Install a mounted SSH private key for git module sources.

    Copies the key to ~/.ssh/id_rsa (mode 0600, directory 0700). A missing
    key is not an error: most projects need no private modules.

    Args:
        key_path: Mounted private key file
        home: Home directory (defaults to the current user's)

    Returns:
        Environment variables for terraform: GIT_SSH_COMMAND when a key was
        installed, otherwise an empty dict

    Raises:
        OSError: If the key exists but cannot be copied
    """
    if not key_path or not Path(key_path).is_file():
        logger.debug(
            "No SSH key found, skipping",
            extra={"event": "ssh_key_skipped", "metadata": {"path": key_path}},
        )
        return {}

    ssh_dir = (home or Path.home()) / ".ssh"
    ssh_dir.mkdir(parents=True, exist_ok=True)
    ssh_dir.chmod(0o700)

    target = ssh_dir / "id_rsa"
    shutil.copyfile(key_path, target)
    target.chmod(0o600)

    logger.info(
        "Installed SSH key",
        extra={"event": "ssh_key_installed", "metadata": {"path": str(target)}},
    )

    command = f"ssh -i {shlex.quote(str(target))} -o IdentitiesOnly=yes -o StrictHostKeyChecking=accept-new"
    return {"GIT_SSH_COMMAND": command}
