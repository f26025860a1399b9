"""Shared fixtures: a fake settlement node served through httpx.MockTransport."""

import json
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest
from eth_abi import decode
from eth_account import Account
from eth_utils import keccak

from dust_aggregator_sdk import (
    DustAggregatorClient,
    LocalAccountSigner,
    RpcSubmitter,
    recover_typed_data_signer,
)


# Test wallets (DO NOT use in production)
TEST_PRIVATE_KEY = "0x" + "ab" * 32
TEST_ADDRESS = Account.from_key(TEST_PRIVATE_KEY).address
OTHER_PRIVATE_KEY = "0x" + "cd" * 32
OTHER_ADDRESS = Account.from_key(OTHER_PRIVATE_KEY).address

CONTRACT_ADDRESS = "0x989876083eD929BE583b8138e40D469ea3E53a37"
NETWORK_ID = 137
RPC_URL = "https://rpc.test/soroban"

SOLANA_ADDRESS = "4Nd1mBQtrMJVYVfKf2PJy9NZUZdTAsp7D4xWLs4gDB4T"
STELLAR_ADDRESS = "GAHK7EEG2WWHVKDNT4CEQFZGKF2LGDSW2IVM4S5DP42RBW3K6BTODB4A"

DEPOSIT_ARG_TYPES = ["string", "string", "string", "uint64"]

EnvelopeCheck = Callable[[Dict[str, Any]], bool]


def deposit_args(envelope: Dict[str, Any]):
    """Decode (owner, chain, asset, amount) from an auto_deposit envelope."""
    call_data = bytes.fromhex(envelope["callData"][2:])
    return decode(DEPOSIT_ARG_TYPES, call_data[4:])


class FakeNode:
    """In-memory settlement node speaking the aggregator's JSON-RPC dialect.

    Verifies signatures and account sequences like a real node. Failures are
    injected per envelope:
      - ``reject``: sendTransaction answers ERROR
      - ``stall``: the transaction never resolves (NOT_FOUND forever)
      - ``fail``: the transaction resolves as FAILED
    """

    def __init__(self):
        self.sequences: Dict[str, int] = defaultdict(int)
        self.transactions: Dict[str, Dict[str, Any]] = {}
        self.sent: List[Dict[str, Any]] = []
        self.methods: List[str] = []
        self.in_flight: Dict[str, str] = {}
        self.overlaps: List[str] = []
        self.reject: EnvelopeCheck = lambda envelope: False
        self.stall: EnvelopeCheck = lambda envelope: False
        self.fail: EnvelopeCheck = lambda envelope: False
        self.return_values: Dict[str, Optional[Dict[str, Any]]] = {
            "auto_deposit": {"type": "void"},
            "batch_process": {"type": "void"},
            "withdraw": {"type": "u64", "value": "42"},
            "swap": {"type": "u64", "value": "1234"},
        }
        self.simulated_value: Dict[str, Any] = {"type": "u64", "value": "77"}
        self.rpc_error: Optional[Dict[str, Any]] = None

    def operations(self, name: str) -> List[Dict[str, Any]]:
        return [envelope for envelope in self.sent if envelope["operation"] == name]

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.methods.append(body["method"])

        if self.rpc_error is not None:
            return httpx.Response(
                200, json={"jsonrpc": "2.0", "id": body["id"], "error": self.rpc_error}
            )

        handler = getattr(self, "_" + body["method"])
        return httpx.Response(
            200,
            json={"jsonrpc": "2.0", "id": body["id"], "result": handler(body["params"])},
        )

    def _getAccount(self, params):
        return {"id": params["address"], "sequence": str(self.sequences[params["address"].lower()])}

    def _sendTransaction(self, params):
        envelope = params["transaction"]
        source = envelope["source"].lower()

        message = {
            "contract": envelope["contract"],
            "operation": envelope["operation"],
            "callData": bytes.fromhex(envelope["callData"][2:]),
            "sequence": int(envelope["sequence"]),
            "fee": int(envelope["fee"]),
            "deadline": envelope["deadline"],
        }
        signer = recover_typed_data_signer(
            envelope["contract"], envelope["networkId"], message, envelope["signature"]
        )
        if signer.lower() != source:
            return {"status": "ERROR", "errorResult": "txBadAuth"}

        if int(envelope["sequence"]) != self.sequences[source] + 1:
            return {"status": "ERROR", "errorResult": "txBadSeq"}

        if self.reject(envelope):
            return {"status": "ERROR", "errorResult": "txInsufficientFee"}

        if source in self.in_flight:
            self.overlaps.append(source)

        self.sequences[source] += 1
        tx_hash = "0x" + keccak(text=json.dumps(envelope, sort_keys=True)).hex()
        self.sent.append(envelope)
        self.in_flight[source] = tx_hash
        self.transactions[tx_hash] = envelope
        return {"hash": tx_hash, "status": "PENDING"}

    def _getTransaction(self, params):
        envelope = self.transactions.get(params["hash"])
        if envelope is None or self.stall(envelope):
            return {"status": "NOT_FOUND"}

        source = envelope["source"].lower()
        if self.in_flight.get(source) == params["hash"]:
            del self.in_flight[source]

        if self.fail(envelope):
            return {"status": "FAILED", "resultError": "contract panicked"}

        result: Dict[str, Any] = {"status": "SUCCESS"}
        return_value = self.return_values.get(envelope["operation"])
        if return_value is not None:
            result["returnValue"] = return_value
        return result

    def _simulateTransaction(self, params):
        return {"results": [{"returnValue": self.simulated_value}]}


@pytest.fixture
def node() -> FakeNode:
    return FakeNode()


@pytest.fixture
def config() -> Dict[str, Any]:
    return {
        "contract_address": CONTRACT_ADDRESS,
        "network_id": NETWORK_ID,
        "rpc_url": RPC_URL,
        "timeout_seconds": 0.5,
        "poll_interval": 0.01,
    }


@pytest.fixture
def signer() -> LocalAccountSigner:
    return LocalAccountSigner(TEST_PRIVATE_KEY)


@pytest.fixture
def submitter(node: FakeNode) -> RpcSubmitter:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(node.handler))
    return RpcSubmitter(RPC_URL, http_client=http_client, poll_interval=0.01)


@pytest.fixture
def client(config, submitter) -> DustAggregatorClient:
    return DustAggregatorClient(config, submitter=submitter)
