"""
HTTP signature request signing through a running SSH agent.

Used when no key material is configured. The agent key is picked by its
fingerprint and the private key never leaves the agent.
"""

import asyncio
import base64
import hashlib
from typing import Dict, Mapping, Optional, Set, Tuple

import asyncssh
from asyncssh.packet import SSHPacket
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature
from loguru import logger

from ...core.exceptions import AuthenticationError
from ...core.interfaces.transport import ISigner
from .signer import blob_md5_fingerprint, key_path, request_date, signature_headers

# key type -> (signature algorithm requested from the agent, header algorithm)
_AGENT_ALGORITHMS: Dict[bytes, Tuple[bytes, str]] = {
    b"ssh-rsa": (b"rsa-sha2-256", "rsa-sha256"),
    b"ecdsa-sha2-nistp256": (b"ecdsa-sha2-nistp256", "ecdsa-sha256"),
    b"ecdsa-sha2-nistp384": (b"ecdsa-sha2-nistp384", "ecdsa-sha384"),
    b"ecdsa-sha2-nistp521": (b"ecdsa-sha2-nistp521", "ecdsa-sha512"),
}

_AGENT_ERRORS = (OSError, ValueError, asyncssh.Error)


def blob_fingerprints(public_blob: bytes) -> Set[str]:
    """Every spelling of a key id that identifies the given public key blob."""
    md5 = blob_md5_fingerprint(public_blob)
    sha256 = base64.b64encode(hashlib.sha256(public_blob).digest()).decode("ascii").rstrip("=")
    return {md5, f"MD5:{md5}", f"SHA256:{sha256}"}


def decode_signature(blob: bytes) -> bytes:
    """
    Unwrap an SSH signature blob into the bytes carried in the authorization
    header. ECDSA signatures are re-encoded as DER.
    """
    packet = SSHPacket(blob)
    algorithm = packet.get_string()
    signature = packet.get_string()
    packet.check_end()

    if algorithm.startswith(b"ecdsa-"):
        values = SSHPacket(signature)
        r = values.get_mpint()
        s = values.get_mpint()
        values.check_end()
        return encode_dss_signature(r, s)
    return signature


class SSHAgentSigner(ISigner):
    """Signs the date header of each request with a key held by the SSH agent."""

    def __init__(
        self,
        account_name: str,
        key_id: str,
        username: Optional[str] = None,
        agent_path: Optional[str] = None
    ):
        """
        Args:
            account_name: Account owning the key
            key_id: MD5 or SHA256 fingerprint of the agent key to use
            username: Sub-user name, if the key belongs to one
            agent_path: Agent socket path; SSH_AUTH_SOCK if not given
        """
        if not account_name:
            raise AuthenticationError("An account name is required for signing")
        if not key_id:
            raise AuthenticationError("A key id is required to pick a key from the SSH agent")
        self._account = account_name
        self._user = username
        self._key_id = key_id
        self._agent_path = agent_path
        self._agent: Optional[asyncssh.SSHAgentClient] = None
        self._keypair: Optional[asyncssh.SSHKeyPair] = None
        self._algorithm: Optional[str] = None
        self._lock = asyncio.Lock()

    @property
    def key_id(self) -> str:
        return self._key_id

    @property
    def algorithm(self) -> Optional[str]:
        """Header algorithm, known once the agent key has been selected."""
        return self._algorithm

    @property
    def key_path(self) -> str:
        return key_path(self._account, self._key_id, self._user)

    async def _select_key(self) -> asyncssh.SSHKeyPair:
        async with self._lock:
            if self._keypair is not None:
                return self._keypair

            try:
                if self._agent is None:
                    self._agent = await asyncssh.connect_agent(self._agent_path or "")
                if self._agent is None:
                    raise AuthenticationError("No SSH agent is available")
                keypairs = await self._agent.get_keys()
            except _AGENT_ERRORS as e:
                raise AuthenticationError(f"Unable to list SSH agent keys: {e}") from e

            wanted = {self._key_id, self._key_id.lower()}
            for keypair in keypairs:
                if not wanted & blob_fingerprints(keypair.public_data):
                    continue
                if keypair.algorithm not in _AGENT_ALGORITHMS:
                    raise AuthenticationError(
                        f"Unsupported SSH agent key type: {keypair.algorithm.decode('ascii')}"
                    )
                sig_algorithm, self._algorithm = _AGENT_ALGORITHMS[keypair.algorithm]
                keypair.set_sig_algorithm(sig_algorithm)
                self._keypair = keypair
                logger.debug(f"Signing with SSH agent key {self._key_id} ({self._algorithm})")
                return keypair

        raise AuthenticationError(f"No key in the SSH agent matches fingerprint {self._key_id}")

    async def sign(self, headers: Mapping[str, str]) -> Dict[str, str]:
        """Return the authorization header for a request with the given headers."""
        keypair = await self._select_key()
        date = request_date(headers)
        try:
            blob = await keypair.sign_async(f"date: {date}".encode("utf-8"))
            signature = decode_signature(blob)
        except _AGENT_ERRORS as e:
            raise AuthenticationError(f"SSH agent failed to sign the request: {e}") from e
        assert self._algorithm is not None
        return signature_headers(date, self.key_path, self._algorithm, signature)

    async def close(self) -> None:
        """Disconnect from the agent; the next signature reconnects."""
        if self._agent is not None:
            self._agent.close()
            await self._agent.wait_closed()
            self._agent = None
            self._keypair = None
