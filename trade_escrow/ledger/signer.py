"""Signer boundary.

A signer is any async callable that takes the unsigned msgpack encodings of
a transaction group, in order, and returns one entry per transaction: the
signed encoding, or None for a transaction it declines to sign. Wallet
connectors implement the same shape.
"""
import base64
from typing import Awaitable, Callable, Dict, List, Optional

import structlog
from algosdk import account, encoding, mnemonic
from algosdk.atomic_transaction_composer import (
    AccountTransactionSigner, sign_transaction_with_signer
)

logger = structlog.get_logger(__name__)

Signer = Callable[[List[bytes]], Awaitable[List[Optional[bytes]]]]


class KeySigner:
    """Signs with locally held private keys.

    Transactions whose sender is not one of the held keys come back as None,
    so several KeySigners (or a KeySigner and a wallet) can split a group.
    """

    def __init__(self, private_keys: List[str]):
        self._signers: Dict[str, AccountTransactionSigner] = {
            account.address_from_private_key(key): AccountTransactionSigner(key)
            for key in private_keys
        }

    @classmethod
    def from_mnemonics(cls, *phrases: str) -> "KeySigner":
        return cls([mnemonic.to_private_key(phrase) for phrase in phrases])

    @property
    def addresses(self) -> List[str]:
        return list(self._signers)

    async def __call__(self, unsigned: List[bytes]) -> List[Optional[bytes]]:
        signed: List[Optional[bytes]] = []
        for raw in unsigned:
            txn = encoding.msgpack_decode(base64.b64encode(raw).decode("ascii"))
            key_signer = self._signers.get(txn.sender)
            if key_signer is None:
                logger.debug("signer.declined", sender=txn.sender)
                signed.append(None)
                continue
            stxn = sign_transaction_with_signer(txn, key_signer)
            signed.append(base64.b64decode(encoding.msgpack_encode(stxn)))
        return signed
