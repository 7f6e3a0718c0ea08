"""
Self-destruct Authorization Signatures

The token contract only self-destructs when given an ECDSA signature by its
owner over::

    keccak256("Signed for Selfdestruct" || contract address || signer address)

Two strategies produce that signature. Which one is used is chosen by
``ethereum.selfdestruct.mode`` in the settings:

- ``node``: the connected node signs with ``eth_sign`` using the unlocked
  default account
- ``local``: the key is read from an environment variable and the digest is
  signed in-process with eth-account

Both sign the 32-byte digest as an Ethereum signed message
(``\\x19Ethereum Signed Message:\\n32`` prefix), so the contract sees the same
signature either way.
"""
import logging
import os
from dataclasses import dataclass
from typing import Union

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import keccak, to_bytes, to_checksum_address

from eth_ico_admin.errors import ConfigurationError
from eth_ico_admin.schemas import SelfDestructConfig, SigningMode

logger = logging.getLogger(__name__)

SELFDESTRUCT_PREFIX = b"Signed for Selfdestruct"


@dataclass(frozen=True)
class SelfDestructSignature:
    v: int
    r: bytes
    s: bytes


def selfdestruct_digest(contract_address: str, signer_address: str) -> bytes:
    """keccak256 of the prefix followed by the raw 20-byte contract and signer addresses."""
    message = SELFDESTRUCT_PREFIX + to_bytes(hexstr=contract_address) + to_bytes(hexstr=signer_address)
    return keccak(message)


def split_signature(signature: bytes) -> SelfDestructSignature:
    """Split a 65-byte r||s||v signature; v is normalised to 27/28."""
    if len(signature) != 65:
        raise ValueError(f"Expected a 65 byte signature, got {len(signature)} bytes")
    v = signature[64]
    if v < 27:
        v += 27
    return SelfDestructSignature(v=v, r=signature[:32], s=signature[32:64])


class NodeSigner:
    """Asks the connected node to sign with its unlocked account."""

    def __init__(self, ledger, account: str):
        self.ledger = ledger
        self.address = to_checksum_address(account)

    async def sign(self, digest: bytes) -> SelfDestructSignature:
        logger.info(f"Requesting signature from node account {self.address}")
        return split_signature(await self.ledger.sign(self.address, digest))


class LocalSigner:
    """Signs in-process with a raw private key."""

    def __init__(self, private_key: str):
        self._account = Account.from_key(private_key)
        self.address = self._account.address

    async def sign(self, digest: bytes) -> SelfDestructSignature:
        logger.info(f"Signing locally with account {self.address}")
        signed = self._account.sign_message(encode_defunct(primitive=digest))
        return SelfDestructSignature(
            v=signed.v,
            r=signed.r.to_bytes(32, "big"),
            s=signed.s.to_bytes(32, "big"),
        )


Signer = Union[NodeSigner, LocalSigner]


def make_signer(config: SelfDestructConfig, ledger, default_account: str) -> Signer:
    """Build the signer selected by the settings."""
    if config.mode == SigningMode.local:
        private_key = os.getenv(config.private_key_env)
        if not private_key:
            raise ConfigurationError(
                f"Local self-destruct signing requires the {config.private_key_env} environment variable"
            )
        try:
            return LocalSigner(private_key.strip())
        except Exception as e:  # eth-keys raises its own ValidationError for bad key lengths
            raise ConfigurationError(f"{config.private_key_env} does not hold a valid private key: {e}")
    return NodeSigner(ledger, default_account)


async def sign_selfdestruct(signer: Signer, contract_address: str) -> SelfDestructSignature:
    """Produce the (v, r, s) triple authorising destruction of ``contract_address``."""
    digest = selfdestruct_digest(contract_address, signer.address)
    return await signer.sign(digest)
