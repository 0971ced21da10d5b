"""
JSON-RPC access to a CodeChain node.

`JsonRpcClient` is the transport: JSON-RPC 2.0 over HTTP with `requests`, run
in a worker thread so it never blocks the event loop.  `Rpc` groups the node's
procedures the way the node names them (`net_*` under `network`, `chain_*`
under `chain`) and converts results into harness types.
"""

import asyncio
import itertools
import typing

import requests
from retrying import retry

from .configured_logger import logger
from .polling import PollTimeoutError, poll_until
from .primitives import H256, Invoice, parse_invoice, parse_u256, to_hex

# How often an invoice is re-queried while waiting for it.
INVOICE_POLL_INTERVAL = 1.0


class RpcError(Exception):
    """Raised when an RPC call returns an error."""

    def __init__(self, error: typing.Dict[str, typing.Any]) -> None:
        self.code = error.get('code')
        self.message = error.get('message')
        self.data = error.get('data')
        super().__init__(f'RPC Error {self.code}: {self.message}')


class MalformedResponseError(Exception):
    """Raised when a procedure returns something of an unexpected shape."""


def _is_connection_error(exception) -> bool:
    return isinstance(exception, requests.ConnectionError)


def is_read_only(method: str) -> bool:
    """Whether `method` only queries state, e.g. `chain_getNonce`.

    Only such procedures are sent again after a connection error; a dropped
    connection may still have delivered the request to the node.
    """
    _, _, name = method.partition('_')
    return name.startswith(('get', 'is'))


def parse_hash(result, method: str) -> H256:
    try:
        return H256(result)
    except ValueError as e:
        raise MalformedResponseError(
            f'Expected {method}() to return a value of H256, '
            f'but an error occurred: {e}') from e


def parse_invoice_result(result, method: str) -> typing.Optional[Invoice]:
    try:
        return parse_invoice(result)
    except ValueError as e:
        raise MalformedResponseError(
            f'Expected {method}() to return an invoice, '
            f'but an error occurred: {e}') from e


class JsonRpcClient:
    """
    JSON-RPC 2.0 client.

    Usage:
        client = JsonRpcClient('http://localhost:8081')
        number = await client.call('chain_getBestBlockNumber')
    """

    def __init__(self, url: str, *, timeout: float = 30, name=None) -> None:
        self.url = url
        self.name = name or url
        self.timeout = timeout
        self._ids = itertools.count(1)

    def _post(self, payload):
        r = requests.post(self.url, json=payload, timeout=self.timeout)
        r.raise_for_status()
        try:
            response = r.json()
        except ValueError as e:
            raise RpcError({
                'code': -1,
                'message': f'Invalid JSON: {e}'
            }) from e
        if not isinstance(response, dict):
            raise RpcError({
                'code': -1,
                'message': f'Expected a JSON object, got {response!r}'
            })
        return response

    @retry(retry_on_exception=_is_connection_error,
           stop_max_attempt_number=3,
           wait_fixed=200)
    def _post_retrying(self, payload):
        return self._post(payload)

    async def call(self, method: str, *params) -> typing.Any:
        """Calls `method` and returns its result.

        Connection errors are retried for read-only procedures only (see
        `is_read_only`).

        Raises:
            RpcError: If the node answered with an error object or with
                something that is not a JSON object.
            requests.RequestException: If the HTTP request failed.
        """
        payload = {
            'jsonrpc': '2.0',
            'method': method,
            'params': list(params),
            'id': next(self._ids),
        }
        logger.debug(f'{self.name} RPC call: {method}{params}')
        post = self._post_retrying if is_read_only(method) else self._post
        response = await asyncio.to_thread(post, payload)
        if response.get('error') is not None:
            logger.warning(f'{self.name} RPC error: {response["error"]}')
            raise RpcError(response['error'])
        return response.get('result')


class NetworkRpc:

    def __init__(self, client) -> None:
        self._client = client

    async def connect(self, address: str, port: int):
        return await self._client.call('net_connect', address, port)

    async def disconnect(self, address: str, port: int):
        return await self._client.call('net_disconnect', address, port)

    async def is_connected(self, address: str, port: int) -> bool:
        return bool(await self._client.call('net_isConnected', address, port))

    async def get_peer_count(self) -> int:
        return int(await self._client.call('net_getPeerCount'))


class ChainRpc:

    def __init__(self, client,
                 invoice_poll_interval: float = INVOICE_POLL_INTERVAL) -> None:
        self._client = client
        self.invoice_poll_interval = invoice_poll_interval

    async def get_best_block_number(self) -> int:
        return int(await self._client.call('chain_getBestBlockNumber'))

    async def get_block_hash(self, number: int) -> typing.Optional[H256]:
        result = await self._client.call('chain_getBlockHash', number)
        return None if result is None else parse_hash(result,
                                                      'getBlockHash')

    async def get_nonce(self, address) -> typing.Optional[int]:
        result = await self._client.call('chain_getNonce', str(address))
        return None if result is None else parse_u256(result)

    async def get_asset(self, tx_hash, index: int):
        return await self._client.call('chain_getAsset', to_hex(tx_hash),
                                       index)

    async def get_parcel(self, parcel_hash):
        return await self._client.call('chain_getParcel', to_hex(parcel_hash))

    async def send_signed_parcel(self, signed_parcel) -> H256:
        payload = to_hex(bytes(signed_parcel.rlp_bytes()))
        result = await self._client.call('chain_sendSignedParcel', payload)
        return parse_hash(result, 'sendSignedParcel')

    async def get_parcel_invoice(self,
                                 parcel_hash,
                                 *,
                                 timeout: typing.Optional[float] = None
                                ) -> typing.Optional[Invoice]:
        return await self._get_invoice('chain_getParcelInvoice', parcel_hash,
                                       timeout)

    async def get_transaction_invoice(self,
                                      tx_hash,
                                      *,
                                      timeout: typing.Optional[float] = None
                                     ) -> typing.Optional[Invoice]:
        return await self._get_invoice('chain_getTransactionInvoice', tx_hash,
                                       timeout)

    async def _get_invoice(self, method, hash_, timeout):
        """Queries an invoice; with a timeout, waits for it to appear.

        Returns None if the node has no invoice for the hash, or none
        appeared within `timeout` seconds.
        """

        async def query():
            return parse_invoice_result(
                await self._client.call(method, to_hex(hash_)), method)

        if timeout is None:
            return await query()
        try:
            return await poll_until(query,
                                    interval=self.invoice_poll_interval,
                                    timeout=timeout,
                                    description=f'{method}({to_hex(hash_)})')
        except PollTimeoutError:
            logger.warning(f'No invoice for {to_hex(hash_)} after {timeout}s')
            return None


class Rpc:
    """Procedures of one node, grouped by namespace."""

    def __init__(self, client, **kw) -> None:
        self.client = client
        self.network = NetworkRpc(client)
        self.chain = ChainRpc(client, **kw)

    @classmethod
    def for_url(cls, url: str, *, timeout: float = 30) -> 'Rpc':
        return cls(JsonRpcClient(url, timeout=timeout))

    async def send_rpc_request(self, method: str,
                               params: typing.Sequence[typing.Any]):
        return await self.client.call(method, *params)
