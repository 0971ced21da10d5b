from .cluster import (CodeChain, InvoiceError, MintError,
                      ProcessNotAvailableError, SdkUnavailableError,
                      clean_nodes, connect_nodes, start_nodes)
from .polling import PollTimeoutError, poll_until
from .primitives import H256, Invoice
from .process import NodeProcess, ProcessExitedError, ReadyTimeoutError
from .readiness import MarkerReadinessDetector, ReadinessDetector
from .rpc import JsonRpcClient, MalformedResponseError, Rpc, RpcError
