import itertools
import stat
import textwrap

import pytest

from codechain_harness.rpc import Rpc

READY_LINE = 'INFO main Initialization complete'


class FakeClient:
    """JSON-RPC transport answering from a table instead of a node.

    `responses` maps a method name to either a list of results, handed out in
    order with the last one repeated, or a callable receiving the parameters.
    A result that is an exception instance is raised.
    """

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []
        self._served = {}

    async def call(self, method, *params):
        self.calls.append((method, params))
        if method not in self.responses:
            raise AssertionError(f'Unexpected RPC call {method}{params}')
        response = self.responses[method]
        if callable(response):
            result = response(*params)
        else:
            index = self._served.get(method, 0)
            self._served[method] = index + 1
            result = response[min(index, len(response) - 1)]
        if isinstance(result, Exception):
            raise result
        return result

    def methods(self):
        return [method for method, _ in self.calls]


_hashes = itertools.count(1)


def make_hash(n=None):
    if n is None:
        n = next(_hashes)
    return '0x' + f'{n:064x}'


class FakeSignedParcel:

    def __init__(self, kind, fields, secret, nonce, fee):
        self.kind = kind
        self.fields = fields
        self.secret = secret
        self.nonce = nonce
        self.fee = fee

    def rlp_bytes(self):
        return bytes([0xf8, self.nonce & 0xff, self.fee & 0xff])


class FakeParcel:

    def __init__(self, kind, **fields):
        self.kind = kind
        self.fields = fields

    def sign(self, *, secret, nonce, fee):
        return FakeSignedParcel(self.kind, self.fields, secret, nonce, fee)


class FakeTransaction:

    def __init__(self, scheme, recipient):
        self.scheme = scheme
        self.recipient = recipient
        self._hash = make_hash()

    def hash(self):
        return self._hash


class FakeCore:

    def create_payment_parcel(self, *, recipient, amount):
        return FakeParcel('payment', recipient=recipient, amount=amount)

    def create_asset_transaction_group_parcel(self, *, transactions):
        return FakeParcel('group', transactions=transactions)

    def create_set_regular_key_parcel(self, *, key):
        return FakeParcel('set_regular_key', key=key)

    def create_asset_mint_transaction(self, *, scheme, recipient):
        return FakeTransaction(scheme, recipient)


class FakeP2PKH:

    def __init__(self, key_store, burn=False):
        self.key_store = key_store
        self.burn = burn
        self.signed = []

    def get_lock_script(self):
        return b'burn-lock' if self.burn else b'lock'

    async def create_address(self):
        return 'tcaqburnaddress' if self.burn else 'tcaqaddress'

    async def create_unlock_script(self, public_key_hash, tx_hash):
        return f'unlock:{public_key_hash}:{tx_hash}'.encode()

    async def sign_input(self, tx, index):
        self.signed.append((tx, index))

    async def sign_burn(self, tx, index):
        self.signed.append((tx, index))


class FakeKey:

    def __init__(self):
        self.key_store_paths = []
        self.signed_parcels = []
        self.helpers = []

    async def create_local_key_store(self, path):
        self.key_store_paths.append(path)
        return {'path': path}

    def create_p2pkh(self, *, key_store):
        self.helpers.append(FakeP2PKH(key_store))
        return self.helpers[-1]

    def create_p2pkh_burn(self, *, key_store):
        self.helpers.append(FakeP2PKH(key_store, burn=True))
        return self.helpers[-1]

    async def create_platform_address(self, *, key_store):
        return 'tccqplatform'

    async def sign_parcel(self, parcel, *, key_store, account, fee, nonce):
        signed = parcel.sign(secret=f'key-of-{account}', nonce=nonce, fee=fee)
        self.signed_parcels.append(signed)
        return signed

    def address_from_secret(self, secret):
        return 'tccqfaucet'


class FakeSdk:

    def __init__(self):
        self.core = FakeCore()
        self.key = FakeKey()


@pytest.fixture
def fake_sdk():
    return FakeSdk()


@pytest.fixture
def make_rpc():

    def _make_rpc(responses=None):
        client = FakeClient(responses)
        return Rpc(client, invoice_poll_interval=0.01), client

    return _make_rpc


@pytest.fixture
def make_script(tmp_path):
    """Writes an executable /bin/sh script standing in for the node binary."""

    def _make_script(body, name='codechain'):
        path = tmp_path / 'bin' / name
        path.parent.mkdir(exist_ok=True)
        path.write_text('#!/bin/sh\n' + textwrap.dedent(body))
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP |
                   stat.S_IXOTH)
        return str(path)

    return _make_script


@pytest.fixture
def ready_binary(make_script):
    return make_script(f'''\
        echo "INFO main Starting" >&2
        echo "{READY_LINE}" >&2
        exec sleep 60
        ''')


@pytest.fixture
def config(tmp_path, ready_binary):
    return {
        'project_root': str(tmp_path),
        'binary': ready_binary,
        'log_level': 'info',
    }


@pytest.fixture(autouse=True)
def _no_config_file(monkeypatch):
    monkeypatch.delenv('CODECHAIN_HARNESS_CONFIG', raising=False)
    monkeypatch.delenv('CODECHAIN_ROOT', raising=False)
