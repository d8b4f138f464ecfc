"""
SSH Key Manager Module

Generate and manage the SSH key used to log in to demo VMs.

Security Requirements:
- Private key permissions: 0600 (read/write owner only)
- Public key permissions: 0644 (readable by all)
- SSH directory permissions: 0700 (owner only)
- Never log or transmit private key
- Ed25519 keys
"""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class SSHKeyPair:
    """SSH key pair information."""

    private_path: Path
    public_path: Path
    public_key_content: str


class SSHKeyError(Exception):
    """Raised when SSH key operations fail."""

    pass


class SSHKeyManager:
    """
    Manage SSH key generation and retrieval.

    Security:
    - Private key: 0600 (-rw-------)
    - Public key: 0644 (-rw-r--r--)
    - Key directory: 0700 (drwx------)
    - Never logs private key content
    """

    DEFAULT_KEY_PATH = Path("~/.ssh/azmsi_key")

    @classmethod
    def ensure_key_exists(cls, key_path: Path | str | None = None) -> SSHKeyPair:
        """
        Create SSH key if missing, return existing if present.

        Args:
            key_path: Path to private key (default: ~/.ssh/azmsi_key)

        Returns:
            SSHKeyPair: Key pair information

        Raises:
            SSHKeyError: If key generation fails
        """
        key_path = Path(key_path or cls.DEFAULT_KEY_PATH).expanduser().resolve()
        public_path = cls.public_path_for(key_path)

        if key_path.exists() and public_path.exists():
            logger.info(f"Using existing SSH key: {key_path}")
            if key_path.stat().st_mode & 0o077:
                logger.warning(f"Fixing SSH key permissions: {key_path}")
                cls._fix_permissions(key_path, public_path)

            return SSHKeyPair(
                private_path=key_path,
                public_path=public_path,
                public_key_content=cls.read_public_key(key_path),
            )

        logger.info(f"Generating new SSH key: {key_path}")
        return cls._generate_key(key_path)

    @staticmethod
    def public_path_for(key_path: Path) -> Path:
        return key_path.with_suffix(key_path.suffix + ".pub")

    @classmethod
    def read_public_key(cls, key_path: Path) -> str:
        """
        Read the public half of a key pair.

        Raises:
            SSHKeyError: If the public key is missing or empty
        """
        public_path = cls.public_path_for(key_path)
        try:
            content = public_path.read_text().strip()
        except OSError as e:
            raise SSHKeyError(f"Failed to read public key {public_path}: {e}") from e

        if not content:
            raise SSHKeyError(f"Public key is empty: {public_path}")
        return content

    @classmethod
    def _generate_key(cls, key_path: Path) -> SSHKeyPair:
        """
        Generate new Ed25519 SSH key pair without passphrase.

        Raises:
            SSHKeyError: If generation fails
        """
        cls._ensure_key_directory(key_path.parent)
        public_path = cls.public_path_for(key_path)

        args = [
            "ssh-keygen",
            "-t", "ed25519",
            "-f", str(key_path),
            "-N", "",
            "-C", f"azmsi-key-{key_path.name}",
        ]

        try:
            subprocess.run(args, capture_output=True, text=True, timeout=30, check=True)
        except subprocess.CalledProcessError as e:
            error_msg = e.stderr if e.stderr else str(e)
            raise SSHKeyError(f"Failed to generate SSH key: {error_msg}") from e
        except subprocess.TimeoutExpired as e:
            raise SSHKeyError("SSH key generation timed out") from e
        except FileNotFoundError as e:
            raise SSHKeyError("ssh-keygen not found. Please install OpenSSH client.") from e

        cls._fix_permissions(key_path, public_path)
        logger.info(f"SSH key generated: {key_path}")

        return SSHKeyPair(
            private_path=key_path,
            public_path=public_path,
            public_key_content=cls.read_public_key(key_path),
        )

    @classmethod
    def _ensure_key_directory(cls, directory: Path) -> None:
        if not directory.exists():
            logger.debug(f"Creating SSH directory: {directory}")
            directory.mkdir(mode=0o700, parents=True, exist_ok=True)
        elif directory.stat().st_mode & 0o077:
            logger.warning(f"Fixing SSH directory permissions: {directory}")
            directory.chmod(0o700)

    @classmethod
    def _fix_permissions(cls, private_path: Path, public_path: Path) -> None:
        if private_path.exists():
            private_path.chmod(0o600)
        if public_path.exists():
            public_path.chmod(0o644)


__all__ = ["SSHKeyError", "SSHKeyManager", "SSHKeyPair"]
