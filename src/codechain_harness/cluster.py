import asyncio
import itertools
import os
import typing

from .config import (DEFAULT_CHAIN, get_binary_path, is_chain_preset,
                     load_config)
from .configured_logger import logger, node_logger
from .polling import poll_until
from .primitives import Invoice, to_hex
from .process import NodeProcess
from .readiness import ReadinessDetector
from .rpc import Rpc, parse_hash
from .sdk import (DEFAULT_PAYMENT_RECIPIENT, FAUCET_SECRET, P2PKH, P2PKHBurn,
                  Sdk)
from .workspace import provision_workspace

LOCALHOST = '127.0.0.1'
BASE_RPC_PORT = 8081
BASE_PORT = 3486

PARCEL_FEE = 10

CONNECT_POLL_INTERVAL = 0.25
PEERS_POLL_INTERVAL = 0.5
BLOCK_SYNC_POLL_INTERVAL = 0.5

# Node ids are handed out synchronously at construction, so two nodes of one
# test process never share ports or directories.
_node_ids = itertools.count()


class ProcessNotAvailableError(RuntimeError):

    def __init__(self, message: str = "process isn't available") -> None:
        super().__init__(message)


class SdkUnavailableError(RuntimeError):
    pass


class InvoiceError(Exception):
    """A submitted parcel or transaction failed or got no invoice in time.

    Attributes:
        invoice: The failed invoice, or None if none was received.
    """

    def __init__(self, message: str,
                 invoice: typing.Optional[Invoice]) -> None:
        super().__init__(message)
        self.invoice = invoice


class MintError(Exception):
    pass


def check_invoice(invoice: typing.Optional[Invoice], action: str) -> Invoice:
    if invoice is None or not invoice.success:
        error = invoice.error if invoice is not None else None
        raise InvoiceError(f'An error occurred while {action}: {error}',
                           invoice)
    return invoice


def mint_scheme(amount: int) -> typing.Dict[str, typing.Any]:
    return {'shardId': 0, 'worldId': 0, 'metadata': '', 'amount': amount}


class CodeChain:
    """A local CodeChain node under test.

    Creating the object allocates the node id, its ports and its directories;
    nothing is spawned until `start`.  All RPC driven operations require the
    node to be running and raise `ProcessNotAvailableError` otherwise.

    Parcels and transactions are built and signed by `sdk` (see `sdk.py`).
    Operations that need it raise `SdkUnavailableError` when it is missing.

    Args:
        chain: Chain preset name or path of a chain specification file.
        argv: Extra command line arguments used on every start.
        log_flag: Whether stderr lines following readiness are written to
            `log_path`.
        config: Overrides applied on top of `load_config()`.
        sdk: CodeChain SDK object.
        rpc: RPC facade to use instead of HTTP JSON-RPC on `rpc_port`.
        detector: Readiness detector, the `Initialization complete` marker by
            default.
    """

    def __init__(self,
                 *,
                 chain: str = DEFAULT_CHAIN,
                 argv: typing.Optional[typing.Sequence[str]] = None,
                 log_flag: bool = False,
                 config: typing.Optional[typing.Dict[str, typing.Any]] = None,
                 sdk: typing.Optional[Sdk] = None,
                 rpc: typing.Optional[Rpc] = None,
                 detector: typing.Optional[ReadinessDetector] = None) -> None:
        self.id = next(_node_ids)
        self.config = load_config(config)
        self.project_root = str(self.config['project_root'])
        if not is_chain_preset(chain) and not os.path.isfile(
                os.path.join(self.project_root, chain)):
            raise ValueError(f'Unknown chain preset or missing spec: {chain}')
        self.chain = chain
        self.argv = list(argv or [])
        self.log_flag = log_flag
        self.workspace = provision_workspace(self.project_root, self.id)
        self.sdk = sdk
        self.rpc = rpc or Rpc.for_url(self.rpc_url,
                                      timeout=self.config['rpc_timeout'])
        self.detector = detector
        self.logger = node_logger(self.id)
        self._process: typing.Optional[NodeProcess] = None
        self._faucet_address = None

    def __repr__(self) -> str:
        return self.name

    @property
    def name(self) -> str:
        return f'CodeChain({self.id})'

    @property
    def rpc_port(self) -> int:
        return BASE_RPC_PORT + self.id

    @property
    def port(self) -> int:
        return BASE_PORT + self.id

    @property
    def secret_key(self) -> int:
        return 1 + self.id

    @property
    def rpc_url(self) -> str:
        return f'http://{LOCALHOST}:{self.rpc_port}'

    @property
    def db_path(self) -> str:
        return self.workspace.db_path

    @property
    def keys_path(self) -> str:
        return self.workspace.keys_path

    @property
    def local_key_store_path(self) -> str:
        return self.workspace.local_key_store_path

    @property
    def ipc_path(self) -> str:
        return f'/tmp/jsonrpc.{self.id}.ipc'

    @property
    def log_file(self) -> str:
        return self.workspace.log_file

    @property
    def log_path(self) -> str:
        return self.workspace.log_path

    @property
    def process(self) -> typing.Optional[NodeProcess]:
        return self._process

    @property
    def invoice_timeout(self) -> float:
        return self.config['invoice_timeout']

    def command_line(self, argv: typing.Sequence[str] = ()) -> typing.List[str]:
        return [
            get_binary_path(self.config),
            *self.argv,
            *argv,
            '--chain',
            self.chain,
            '--db-path',
            self.db_path,
            '--no-ipc',
            '--keys-path',
            self.keys_path,
            '--no-ws',
            '--jsonrpc-port',
            str(self.rpc_port),
            '--port',
            str(self.port),
            '--instance-id',
            str(self.id),
        ]

    def environment(self,
                    log_level: str,
                    extra_env: typing.Optional[typing.Dict[str, str]] = None
                   ) -> typing.Dict[str, str]:
        env = os.environ.copy()
        env['RUST_LOG'] = log_level
        # Otherwise the node lingers for a while after SIGTERM.
        env['WAIT_BEFORE_SHUTDOWN'] = '0'
        env.update(self.config['extra_env'])
        env.update(extra_env or {})
        return env

    async def start(self,
                    argv: typing.Sequence[str] = (),
                    log_level: typing.Optional[str] = None,
                    *,
                    extra_env: typing.Optional[typing.Dict[str, str]] = None
                   ) -> None:
        """Spawns the node and waits for it to finish initialization.

        Raises:
            OSError: If the binary could not be spawned.
            ProcessExitedError: If the node exited before becoming ready.
            ReadyTimeoutError: If the `ready_timeout` configuration is set and
                passed.
        """
        if self._process is not None:
            raise RuntimeError(f'{self.name} has already been started')

        process = NodeProcess(
            self.command_line(argv),
            cwd=self.project_root,
            env=self.environment(log_level or self.config['log_level'],
                                 extra_env),
            log_path=self.log_path if self.log_flag else None,
            detector=self.detector,
            name=self.name,
            logger=self.logger)
        self.logger.info(f'Starting {self.name}: rpc port {self.rpc_port}, '
                         f'p2p port {self.port}, chain {self.chain}')
        self._process = process
        try:
            await process.start(ready_timeout=self.config['ready_timeout'])
        except OSError:
            self._process = None
            raise

    async def clean(self) -> None:
        """Terminates the node.  A no-op if it is not running.

        Always succeeds; an abnormal exit is only logged.
        """
        process, self._process = self._process, None
        if process is None:
            return
        await process.stop()

    def _require_process(self) -> NodeProcess:
        if self._process is None:
            raise ProcessNotAvailableError()
        return self._process

    def _require_sdk(self):
        if self.sdk is None:
            raise SdkUnavailableError(f'{self.name} was created without an SDK')
        return self.sdk

    def _poll_timeout(self, timeout):
        return self.config['poll_timeout'] if timeout is None else timeout

    @property
    def faucet_address(self):
        if self._faucet_address is None:
            self._faucet_address = self._require_sdk().key.address_from_secret(
                FAUCET_SECRET)
        return self._faucet_address

    async def _nonce(self, nonce) -> int:
        if nonce is not None:
            return nonce
        return (await self.rpc.chain.get_nonce(self.faucet_address)) or 0

    # Network

    async def connect(self,
                      peer: 'CodeChain',
                      *,
                      interval: float = CONNECT_POLL_INTERVAL,
                      timeout: typing.Optional[float] = None) -> None:
        """Connects to `peer` and waits until the connection is established."""
        self._require_process()
        await self.rpc.network.connect(LOCALHOST, peer.port)
        await poll_until(
            lambda: self.rpc.network.is_connected(LOCALHOST, peer.port),
            interval=interval,
            timeout=self._poll_timeout(timeout),
            description=f'{self.name} to connect to {peer.name}')

    async def disconnect(self, peer: 'CodeChain'):
        self._require_process()
        return await self.rpc.network.disconnect(LOCALHOST, peer.port)

    async def wait_peers(self,
                         n: int,
                         *,
                         interval: float = PEERS_POLL_INTERVAL,
                         timeout: typing.Optional[float] = None) -> None:
        self._require_process()

        async def enough_peers():
            return await self.rpc.network.get_peer_count() >= n

        await poll_until(enough_peers,
                         interval=interval,
                         timeout=self._poll_timeout(timeout),
                         description=f'{self.name} to have {n} peers')

    async def wait_block_number_sync(
            self,
            peer: 'CodeChain',
            *,
            interval: float = BLOCK_SYNC_POLL_INTERVAL,
            timeout: typing.Optional[float] = None) -> None:
        """Waits until this node and `peer` report the same best block."""
        self._require_process()

        async def synced():
            return (await self.get_best_block_number() ==
                    await peer.get_best_block_number())

        await poll_until(synced,
                         interval=interval,
                         timeout=self._poll_timeout(timeout),
                         description=f'{self.name} to sync with {peer.name}')

    # Chain queries

    async def get_best_block_number(self) -> int:
        self._require_process()
        return await self.rpc.chain.get_best_block_number()

    async def get_best_block_hash(self):
        return await self.rpc.chain.get_block_hash(
            await self.get_best_block_number())

    # Keys

    async def _key_store(self):
        return await self._require_sdk().key.create_local_key_store(
            self.local_key_store_path)

    async def _p2pkh(self) -> P2PKH:
        return self.sdk.key.create_p2pkh(key_store=await self._key_store())

    async def _p2pkh_burn(self) -> P2PKHBurn:
        return self.sdk.key.create_p2pkh_burn(key_store=await self._key_store())

    async def create_p2pkh_address(self):
        return await (await self._p2pkh()).create_address()

    async def create_p2pkh_burn_address(self):
        return await (await self._p2pkh_burn()).create_address()

    async def create_platform_address(self):
        key_store = await self._key_store()
        return await self.sdk.key.create_platform_address(key_store=key_store)

    async def sign_transaction_p2pkh(self, tx_input, tx_hash) -> None:
        await self._unlock_input(await self._p2pkh(), tx_input, tx_hash)

    async def sign_transaction_p2pkh_burn(self, tx_input, tx_hash) -> None:
        await self._unlock_input(await self._p2pkh_burn(), tx_input, tx_hash)

    @staticmethod
    async def _unlock_input(helper, tx_input, tx_hash) -> None:
        parameters = tx_input.prev_out.parameters
        if parameters is None:
            raise ValueError('prev_out.parameters is None')
        public_key_hash = bytes(parameters[0]).hex()
        tx_input.set_lock_script(helper.get_lock_script())
        tx_input.set_unlock_script(await helper.create_unlock_script(
            public_key_hash, tx_hash))

    async def sign_transfer_input(self, tx, index: int) -> None:
        await (await self._p2pkh()).sign_input(tx, index)

    async def sign_transfer_burn(self, tx, index: int) -> None:
        await (await self._p2pkh_burn()).sign_burn(tx, index)

    # Parcels and transactions

    async def payment(self, recipient, amount) -> Invoice:
        """Pays `amount` from the faucet to `recipient` and waits for success."""
        self._require_process()
        sdk = self._require_sdk()
        parcel = sdk.core.create_payment_parcel(
            recipient=recipient,
            amount=amount).sign(secret=FAUCET_SECRET,
                                nonce=await self._nonce(None),
                                fee=PARCEL_FEE)
        parcel_hash = await self.rpc.chain.send_signed_parcel(parcel)
        invoice = await self.rpc.chain.get_parcel_invoice(
            parcel_hash, timeout=self.invoice_timeout)
        return check_invoice(invoice, 'payment')

    async def send_parcel(self, parcel, *, account, fee=PARCEL_FEE, nonce=None):
        """Signs `parcel` with `account`'s key from the local key store."""
        self._require_process()
        sdk = self._require_sdk()
        key_store = await self._key_store()
        if nonce is None:
            nonce = await self.rpc.chain.get_nonce(account)
        signed = await sdk.key.sign_parcel(parcel,
                                           key_store=key_store,
                                           account=account,
                                           fee=fee,
                                           nonce=nonce)
        return await self.rpc.chain.send_signed_parcel(signed)

    async def send_transaction(self,
                               tx,
                               *,
                               nonce=None,
                               await_invoice: bool = True,
                               secret: str = FAUCET_SECRET
                              ) -> typing.Optional[Invoice]:
        self._require_process()
        sdk = self._require_sdk()
        parcel = sdk.core.create_asset_transaction_group_parcel(
            transactions=[tx]).sign(secret=secret,
                                    fee=PARCEL_FEE + self.id,
                                    nonce=await self._nonce(nonce))
        await self.rpc.chain.send_signed_parcel(parcel)
        if not await_invoice:
            return None
        invoice = await self.rpc.chain.get_transaction_invoice(
            tx.hash(), timeout=self.invoice_timeout)
        return check_invoice(invoice, 'sending a transaction')

    async def send_transactions(self,
                                txs,
                                *,
                                nonce=None,
                                await_invoice: bool = True
                               ) -> typing.Optional[Invoice]:
        self._require_process()
        sdk = self._require_sdk()
        parcel = sdk.core.create_asset_transaction_group_parcel(
            transactions=list(txs)).sign(secret=FAUCET_SECRET,
                                         fee=PARCEL_FEE + self.id,
                                         nonce=await self._nonce(nonce))
        parcel_hash = await self.rpc.chain.send_signed_parcel(parcel)
        if not await_invoice:
            return None
        invoice = await self.rpc.chain.get_parcel_invoice(
            parcel_hash, timeout=self.invoice_timeout)
        return check_invoice(invoice, 'sending transactions')

    async def mint_asset(self, amount: int, *, recipient=None, secret=None):
        """Mints `amount` units of a new asset and returns the minted asset."""
        self._require_process()
        sdk = self._require_sdk()
        if recipient is None:
            recipient = await self.create_p2pkh_address()
        tx = sdk.core.create_asset_mint_transaction(scheme=mint_scheme(amount),
                                                    recipient=recipient)
        await self.send_transaction(tx, secret=secret or FAUCET_SECRET)
        asset = await self.rpc.chain.get_asset(tx.hash(), 0)
        if asset is None:
            raise MintError('Failed to mint asset')
        return asset

    async def mint_assets(self, count: int, *, nonce=None) -> None:
        """Submits `count` single unit mints in one parcel without waiting."""
        self._require_process()
        sdk = self._require_sdk()
        recipient = await self.create_p2pkh_address()
        txs = [
            sdk.core.create_asset_mint_transaction(scheme=mint_scheme(1),
                                                   recipient=recipient)
            for _ in range(count)
        ]
        await self.send_transactions(txs, nonce=nonce, await_invoice=False)

    async def set_regular_key(self,
                              key,
                              *,
                              nonce=None,
                              await_invoice: bool = True,
                              secret: str = FAUCET_SECRET
                             ) -> typing.Optional[Invoice]:
        self._require_process()
        sdk = self._require_sdk()
        parcel = sdk.core.create_set_regular_key_parcel(key=key).sign(
            secret=secret, fee=PARCEL_FEE, nonce=await self._nonce(nonce))
        parcel_hash = await self.rpc.chain.send_signed_parcel(parcel)
        if not await_invoice:
            return None
        invoice = await self.rpc.chain.get_parcel_invoice(
            parcel_hash, timeout=self.invoice_timeout)
        return check_invoice(invoice, 'setting a regular key')

    async def send_signed_parcel(self,
                                 *,
                                 nonce=None,
                                 await_invoice: bool = True,
                                 recipient=DEFAULT_PAYMENT_RECIPIENT,
                                 amount=0,
                                 secret: str = FAUCET_SECRET,
                                 fee=None):
        """Sends a payment parcel.

        Returns the parcel as reported back by the node when awaiting the
        invoice, otherwise the locally signed parcel.
        """
        self._require_process()
        sdk = self._require_sdk()
        if fee is None:
            fee = PARCEL_FEE + self.id
        parcel = sdk.core.create_payment_parcel(
            recipient=recipient,
            amount=amount).sign(secret=secret,
                                fee=fee,
                                nonce=await self._nonce(nonce))
        parcel_hash = await self.rpc.chain.send_signed_parcel(parcel)
        if not await_invoice:
            return parcel
        invoice = await self.rpc.chain.get_parcel_invoice(
            parcel_hash, timeout=self.invoice_timeout)
        check_invoice(invoice, 'sending a signed parcel')
        return await self.rpc.chain.get_parcel(parcel_hash)

    async def send_signed_parcel_with_rlp_bytes(self, rlp_bytes):
        """Submits already encoded parcel bytes and returns the parcel hash.

        Raises:
            MalformedResponseError: If the node's answer is not a valid hash.
        """
        self._require_process()
        result = await self.rpc.send_rpc_request('chain_sendSignedParcel',
                                                 [to_hex(bytes(rlp_bytes))])
        return parse_hash(result, 'sendSignedParcel')


async def start_nodes(num_nodes: int,
                      *,
                      argv: typing.Sequence[str] = (),
                      **kwargs) -> typing.List[CodeChain]:
    """Creates and starts `num_nodes` nodes concurrently.

    Keyword arguments are passed to every `CodeChain` constructor.  If any node
    fails to start, all of them are cleaned and the first error is raised.
    """
    nodes = [CodeChain(**kwargs) for _ in range(num_nodes)]
    logger.info(f'Starting {num_nodes} nodes: {nodes}')
    results = await asyncio.gather(*(node.start(argv) for node in nodes),
                                   return_exceptions=True)
    errors = [r for r in results if isinstance(r, BaseException)]
    if errors:
        await clean_nodes(nodes)
        raise errors[0]
    return nodes


async def connect_nodes(nodes: typing.Sequence[CodeChain]) -> None:
    """Connects every node to the next one, forming a line."""
    for node, peer in zip(nodes, nodes[1:]):
        await node.connect(peer)


async def clean_nodes(nodes: typing.Iterable[CodeChain]) -> None:
    await asyncio.gather(*(node.clean() for node in nodes))
