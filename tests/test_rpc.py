import asyncio

import pytest
import requests

from conftest import FakeSignedParcel, make_hash
from codechain_harness.primitives import H256, Invoice
from codechain_harness.rpc import (JsonRpcClient, MalformedResponseError,
                                   RpcError, is_read_only)


class FakeResponse:

    def __init__(self, body=None, status=200, text=None):
        self.body = body
        self.status = status
        self.text = text

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f'{self.status} Error')

    def json(self):
        if self.text is not None:
            raise ValueError(f'Expecting value: {self.text!r}')
        return self.body


@pytest.fixture
def posted(monkeypatch):
    """Replaces requests.post; returns the list of requests made."""
    requests_made = []
    replies = []

    def fake_post(url, json=None, timeout=None):
        requests_made.append((url, json, timeout))
        reply = replies.pop(0) if len(replies) > 1 else replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply

    monkeypatch.setattr(requests, 'post', fake_post)
    return requests_made, replies


def test_call_sends_json_rpc_request(posted):
    requests_made, replies = posted
    replies.append(FakeResponse({'jsonrpc': '2.0', 'id': 1, 'result': 42}))
    client = JsonRpcClient('http://127.0.0.1:8081', timeout=5)

    result = asyncio.run(client.call('chain_getBestBlockNumber'))

    assert result == 42
    url, payload, timeout = requests_made[0]
    assert url == 'http://127.0.0.1:8081'
    assert timeout == 5
    assert payload['method'] == 'chain_getBestBlockNumber'
    assert payload['params'] == []
    assert payload['jsonrpc'] == '2.0'


def test_request_ids_increase(posted):
    requests_made, replies = posted
    replies.append(FakeResponse({'result': None}))
    client = JsonRpcClient('http://127.0.0.1:8081')

    async def main():
        await client.call('net_getPeerCount')
        await client.call('net_getPeerCount')

    asyncio.run(main())
    assert [p['id'] for _, p, _ in requests_made] == [1, 2]


def test_error_object_raises(posted):
    _, replies = posted
    replies.append(
        FakeResponse({'error': {
            'code': -32601,
            'message': 'Method not found'
        }}))
    client = JsonRpcClient('http://127.0.0.1:8081')

    with pytest.raises(RpcError) as info:
        asyncio.run(client.call('chain_nope'))
    assert info.value.code == -32601
    assert info.value.message == 'Method not found'


def test_invalid_json_raises(posted):
    _, replies = posted
    replies.append(FakeResponse(text='<html>'))
    client = JsonRpcClient('http://127.0.0.1:8081')

    with pytest.raises(RpcError) as info:
        asyncio.run(client.call('chain_getBestBlockNumber'))
    assert info.value.code == -1


def test_http_error_propagates(posted):
    _, replies = posted
    replies.append(FakeResponse(status=500))
    client = JsonRpcClient('http://127.0.0.1:8081')

    with pytest.raises(requests.HTTPError):
        asyncio.run(client.call('chain_getBestBlockNumber'))


def test_connection_errors_are_retried(posted):
    requests_made, replies = posted
    replies.extend([
        requests.ConnectionError('refused'),
        FakeResponse({'result': 3}),
    ])
    client = JsonRpcClient('http://127.0.0.1:8081')

    assert asyncio.run(client.call('net_getPeerCount')) == 3
    assert len(requests_made) == 2


def test_connection_error_gives_up(posted):
    requests_made, replies = posted
    replies.append(requests.ConnectionError('refused'))
    client = JsonRpcClient('http://127.0.0.1:8081')

    with pytest.raises(requests.ConnectionError):
        asyncio.run(client.call('net_getPeerCount'))
    assert len(requests_made) == 3


@pytest.mark.parametrize('method', [
    'chain_sendSignedParcel',
    'net_connect',
    'net_disconnect',
])
def test_state_changing_calls_are_sent_once(posted, method):
    requests_made, replies = posted
    replies.extend([
        requests.ConnectionError('Connection aborted. RemoteDisconnected'),
        FakeResponse({'result': make_hash()}),
    ])
    client = JsonRpcClient('http://127.0.0.1:8081')

    with pytest.raises(requests.ConnectionError):
        asyncio.run(client.call(method, '0x0102'))
    assert [p['method'] for _, p, _ in requests_made] == [method]


def test_read_only_methods():
    assert is_read_only('chain_getBestBlockNumber')
    assert is_read_only('chain_getParcelInvoice')
    assert is_read_only('net_isConnected')
    assert not is_read_only('chain_sendSignedParcel')
    assert not is_read_only('net_connect')
    assert not is_read_only('getNonce')


def test_non_object_body_raises(posted):
    _, replies = posted
    replies.append(FakeResponse([{'result': 1}]))
    client = JsonRpcClient('http://127.0.0.1:8081')

    with pytest.raises(RpcError) as info:
        asyncio.run(client.call('chain_getBestBlockNumber'))
    assert info.value.code == -1


def test_network_namespace(make_rpc):
    rpc, client = make_rpc({
        'net_connect': [None],
        'net_isConnected': [False, True],
        'net_getPeerCount': [2],
        'net_disconnect': [None],
    })

    async def main():
        await rpc.network.connect('127.0.0.1', 3487)
        assert await rpc.network.is_connected('127.0.0.1', 3487) is False
        assert await rpc.network.is_connected('127.0.0.1', 3487) is True
        assert await rpc.network.get_peer_count() == 2
        await rpc.network.disconnect('127.0.0.1', 3487)

    asyncio.run(main())
    assert client.calls[0] == ('net_connect', ('127.0.0.1', 3487))
    assert client.calls[-1] == ('net_disconnect', ('127.0.0.1', 3487))


def test_chain_queries(make_rpc):
    block_hash = make_hash(0xabc)
    rpc, client = make_rpc({
        'chain_getBestBlockNumber': [12],
        'chain_getBlockHash': [block_hash],
        'chain_getNonce': ['0x1f'],
        'chain_getAsset': [{
            'amount': 100
        }],
    })

    async def main():
        assert await rpc.chain.get_best_block_number() == 12
        assert await rpc.chain.get_block_hash(12) == H256(block_hash)
        assert await rpc.chain.get_nonce('tccqfaucet') == 31
        assert await rpc.chain.get_asset(H256(block_hash), 0) == {
            'amount': 100
        }

    asyncio.run(main())
    assert client.calls[-1] == ('chain_getAsset', (block_hash, 0))


def test_send_signed_parcel_hex_encodes(make_rpc):
    parcel_hash = make_hash()
    rpc, client = make_rpc({'chain_sendSignedParcel': [parcel_hash]})
    parcel = FakeSignedParcel('payment', {}, 'secret', nonce=1, fee=10)

    result = asyncio.run(rpc.chain.send_signed_parcel(parcel))

    assert result == H256(parcel_hash)
    assert client.calls == [('chain_sendSignedParcel', ('0xf8010a',))]


def test_send_signed_parcel_malformed_result(make_rpc):
    rpc, _ = make_rpc({'chain_sendSignedParcel': ['0x1234']})
    parcel = FakeSignedParcel('payment', {}, 'secret', nonce=1, fee=10)

    with pytest.raises(MalformedResponseError) as info:
        asyncio.run(rpc.chain.send_signed_parcel(parcel))
    assert 'sendSignedParcel' in str(info.value)


def test_invoice_without_timeout_is_queried_once(make_rpc):
    rpc, client = make_rpc({'chain_getParcelInvoice': [None]})

    assert asyncio.run(rpc.chain.get_parcel_invoice(make_hash())) is None
    assert len(client.calls) == 1


def test_invoice_is_awaited(make_rpc):
    rpc, client = make_rpc({
        'chain_getTransactionInvoice': [None, None, {
            'success': False,
            'error': {
                'type': 'InsufficientBalance'
            }
        }]
    })

    invoice = asyncio.run(
        rpc.chain.get_transaction_invoice(make_hash(), timeout=5))

    assert invoice == Invoice(success=False,
                              error={'type': 'InsufficientBalance'})
    assert len(client.calls) == 3


def test_invoice_timeout_returns_none(make_rpc):
    rpc, _ = make_rpc({'chain_getParcelInvoice': [None]})

    assert asyncio.run(rpc.chain.get_parcel_invoice(make_hash(),
                                                    timeout=0.05)) is None


def test_raw_request(make_rpc):
    rpc, client = make_rpc({'chain_sendSignedParcel': [make_hash(1)]})

    asyncio.run(rpc.send_rpc_request('chain_sendSignedParcel', ['0x0102']))
    assert client.calls == [('chain_sendSignedParcel', ('0x0102',))]


def test_invoice_of_unexpected_shape(make_rpc):
    rpc, _ = make_rpc({'chain_getTransactionInvoice': [[True, None]]})

    with pytest.raises(MalformedResponseError) as info:
        asyncio.run(rpc.chain.get_transaction_invoice(make_hash(), timeout=1))
    assert 'chain_getTransactionInvoice' in str(info.value)
