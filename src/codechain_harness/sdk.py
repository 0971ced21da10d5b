"""
What the harness expects from the CodeChain SDK object passed to `CodeChain`.

The harness never builds or signs parcels itself.  It asks the SDK for parcel
and transaction objects, has them signed with the SDK's key material, and
submits the results through its own RPC layer.  The protocols below only
describe the calls the harness makes; any object providing them works, which
is also how the tests substitute a fake SDK.
"""

import typing

# Secret of the account funded in the genesis of every test chain.
FAUCET_SECRET = 'ede1d4ccb4ec9a8bbbae9a13db3f4a7b56ea04189be86ac3a6a439d9a0a1addd'

# Recipient of the zero-amount payments sent by `send_signed_parcel`.
DEFAULT_PAYMENT_RECIPIENT = 'tccqruq09sfgax77nj4gukjcuq69uzeyv0jcs7vzngg'


class SignedParcel(typing.Protocol):

    def hash(self) -> typing.Any:
        ...

    def rlp_bytes(self) -> bytes:
        ...


class Parcel(typing.Protocol):

    def sign(self, *, secret: str, nonce: int, fee: int) -> SignedParcel:
        ...


class Transaction(typing.Protocol):

    def hash(self) -> typing.Any:
        ...


class Core(typing.Protocol):

    def create_payment_parcel(self, *, recipient, amount) -> Parcel:
        ...

    def create_asset_transaction_group_parcel(
            self, *, transactions: typing.Sequence[Transaction]) -> Parcel:
        ...

    def create_set_regular_key_parcel(self, *, key) -> Parcel:
        ...

    def create_asset_mint_transaction(self, *, scheme: typing.Dict[str,
                                                                   typing.Any],
                                      recipient) -> Transaction:
        ...


class _LockScriptHelper(typing.Protocol):

    def get_lock_script(self) -> bytes:
        ...

    async def create_address(self):
        ...

    async def create_unlock_script(self, public_key_hash: str,
                                   tx_hash) -> bytes:
        ...


class P2PKH(_LockScriptHelper, typing.Protocol):
    """Pay-to-public-key-hash helper bound to a key store."""

    async def sign_input(self, tx, index: int) -> None:
        ...


class P2PKHBurn(_LockScriptHelper, typing.Protocol):
    """Burn variant of `P2PKH`; inputs it signs destroy the spent asset."""

    async def sign_burn(self, tx, index: int) -> None:
        ...


class Key(typing.Protocol):

    async def create_local_key_store(self, path: str):
        ...

    def create_p2pkh(self, *, key_store) -> P2PKH:
        ...

    def create_p2pkh_burn(self, *, key_store) -> P2PKHBurn:
        ...

    async def create_platform_address(self, *, key_store):
        ...

    async def sign_parcel(self, parcel: Parcel, *, key_store, account, fee,
                          nonce) -> SignedParcel:
        ...

    def address_from_secret(self, secret: str):
        """Platform address of the account owning `secret`."""
        ...


class Sdk(typing.Protocol):
    core: Core
    key: Key
