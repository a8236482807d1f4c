"""
Request signing for the storage service.
"""

from .agent import SSHAgentSigner
from .signer import PrivateKeySigner, load_key_material, md5_fingerprint

__all__ = [
    "PrivateKeySigner",
    "SSHAgentSigner",
    "load_key_material",
    "md5_fingerprint",
]
