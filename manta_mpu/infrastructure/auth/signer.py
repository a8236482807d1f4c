"""
HTTP signature request signing with a private key.

Key material is either a path to a PEM/OpenSSH key file or the key itself.
Password protected keys are not supported and must be decrypted first.
"""

import base64
import hashlib
import os
from email.utils import formatdate
from typing import Dict, Mapping, Optional, Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa

from ...core.exceptions import AuthenticationError
from ...core.interfaces.transport import ISigner

PrivateKey = Union[rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey]

_EC_HASHES = {
    "secp256r1": (hashes.SHA256, "ecdsa-sha256"),
    "secp384r1": (hashes.SHA384, "ecdsa-sha384"),
    "secp521r1": (hashes.SHA512, "ecdsa-sha512"),
}


def load_key_material(key_material: str) -> bytes:
    """
    Resolve key material that may be a file path or inline key text.

    Raises:
        AuthenticationError: If no key is found or the key is encrypted
    """
    if os.path.isfile(key_material):
        try:
            with open(key_material, "rb") as f:
                data = f.read()
        except OSError as e:
            raise AuthenticationError(
                f"Error reading key material from {key_material}: {e}"
            ) from e
        source = key_material
    else:
        data = key_material.encode("utf-8")
        source = "inline key material"

    if b"-----BEGIN" not in data:
        raise AuthenticationError(f"Failed to read key material '{source}': no key found")
    if b"Proc-Type: 4,ENCRYPTED" in data or b"BEGIN ENCRYPTED PRIVATE KEY" in data:
        raise AuthenticationError(
            f"Failed to read key '{source}': password protected keys are not "
            f"currently supported. Please decrypt the key prior to use."
        )
    return data


def _load_private_key(data: bytes) -> PrivateKey:
    try:
        if b"BEGIN OPENSSH PRIVATE KEY" in data:
            key = serialization.load_ssh_private_key(data, password=None)
        else:
            key = serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise AuthenticationError(f"Unable to parse private key: {e}") from e
    if not isinstance(key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
        raise AuthenticationError(f"Unsupported key type: {type(key).__name__}")
    return key


def request_date(headers: Mapping[str, str]) -> str:
    """Date header value of a request, or the current time if it has none."""
    date = next((v for k, v in headers.items() if k.lower() == "date"), None)
    return date if date is not None else formatdate(usegmt=True)


def key_path(account_name: str, key_id: str, username: Optional[str] = None) -> str:
    """keyId value of the signature header."""
    if username:
        return f"/{account_name}/{username}/keys/{key_id}"
    return f"/{account_name}/keys/{key_id}"


def signature_headers(date: str, key: str, algorithm: str, signature: bytes) -> Dict[str, str]:
    encoded = base64.b64encode(signature).decode("ascii")
    return {
        "date": date,
        "authorization": (
            f'Signature keyId="{key}",algorithm="{algorithm}",'
            f'headers="date",signature="{encoded}"'
        ),
    }


def blob_md5_fingerprint(public_blob: bytes) -> str:
    """Colon separated MD5 fingerprint of an SSH public key blob."""
    digest = hashlib.md5(public_blob, usedforsecurity=False).hexdigest()
    return ":".join(digest[i:i + 2] for i in range(0, len(digest), 2))


def md5_fingerprint(key: PrivateKey) -> str:
    """MD5 fingerprint of the public half of key, as SSH prints it."""
    blob = key.public_key().public_bytes(
        serialization.Encoding.OpenSSH, serialization.PublicFormat.OpenSSH
    ).split()[1]
    return blob_md5_fingerprint(base64.b64decode(blob))


class PrivateKeySigner(ISigner):
    """Signs the date header of each request with an RSA or ECDSA key."""

    def __init__(
        self,
        account_name: str,
        key_material: str,
        key_id: Optional[str] = None,
        username: Optional[str] = None
    ):
        """
        Args:
            account_name: Account owning the key
            key_material: Key file path or inline PEM/OpenSSH key
            key_id: Key fingerprint; derived from the key if not given
            username: Sub-user name, if the key belongs to one
        """
        if not account_name:
            raise AuthenticationError("An account name is required for signing")
        self._account = account_name
        self._user = username
        self._key = _load_private_key(load_key_material(key_material))
        self._key_id = key_id or md5_fingerprint(self._key)

        if isinstance(self._key, rsa.RSAPrivateKey):
            self._algorithm = "rsa-sha256"
            self._hash: hashes.HashAlgorithm = hashes.SHA256()
        else:
            curve = self._key.curve.name
            if curve not in _EC_HASHES:
                raise AuthenticationError(f"Unsupported EC curve: {curve}")
            hash_type, self._algorithm = _EC_HASHES[curve]
            self._hash = hash_type()

    @property
    def key_id(self) -> str:
        return self._key_id

    @property
    def algorithm(self) -> str:
        return self._algorithm

    @property
    def key_path(self) -> str:
        return key_path(self._account, self._key_id, self._user)

    def sign_bytes(self, data: bytes) -> bytes:
        if isinstance(self._key, rsa.RSAPrivateKey):
            return self._key.sign(data, padding.PKCS1v15(), self._hash)
        return self._key.sign(data, ec.ECDSA(self._hash))

    async def sign(self, headers: Mapping[str, str]) -> Dict[str, str]:
        """Return the authorization header for a request with the given headers."""
        date = request_date(headers)
        signature = self.sign_bytes(f"date: {date}".encode("utf-8"))
        return signature_headers(date, self.key_path, self._algorithm, signature)
