"""
PoWERC20 contract access over Ethereum JSON-RPC

Reads challenge/difficulty for a round and submits mine(nonce).
With a private key the mine transaction is signed locally (eth-account) and
sent with eth_sendRawTransaction. Without one it goes through
eth_sendTransaction and the node must hold the mining account's key.
"""

import itertools
import logging
import time

import requests
import urllib3
from eth_account import Account
from eth_utils import to_checksum_address

from miner_errors import RPCError, SubmissionError
from pow_hash import keccak256, pad32

logger = logging.getLogger(__name__)

HEADERS = {"Content-Type": "application/json"}


def function_selector(signature: str) -> bytes:
    """First 4 bytes of keccak256 of a function signature"""
    return keccak256(signature.encode('ascii'))[:4]


def _hex_to_bytes(value) -> bytes:
    if not isinstance(value, str) or not value.startswith('0x'):
        raise RPCError(f"expected hex string, got {value!r}")
    try:
        return bytes.fromhex(value[2:])
    except ValueError as e:
        raise RPCError(f"malformed hex string {value!r}") from e


def decode_uint256(data: bytes) -> int:
    if len(data) < 32:
        raise RPCError(f"expected 32 byte word, got {len(data)} bytes")
    return int.from_bytes(data[:32], 'big')


def decode_string(data: bytes) -> str:
    """ABI-decode a single dynamic string return value"""
    offset = decode_uint256(data)
    length = decode_uint256(data[offset:offset + 32])
    start = offset + 32
    if start + length > len(data):
        raise RPCError("truncated ABI string")
    return data[start:start + length].decode('utf-8', errors='replace')


class EthRPC:
    """Minimal JSON-RPC 2.0 client"""

    def __init__(self, url, timeout=10.0, verify=True, session=None):
        self.url = url
        self.timeout = timeout
        self.verify = verify
        self.session = session or requests.Session()
        self._ids = itertools.count(1)
        if not verify:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    def call(self, method, params=()):
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": list(params)}
        try:
            response = self.session.post(self.url, json=payload, headers=HEADERS,
                                         timeout=self.timeout, verify=self.verify)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise RPCError(f"{method} failed: {e}") from e
        except ValueError as e:
            raise RPCError(f"{method} returned invalid JSON") from e

        if not isinstance(data, dict):
            raise RPCError(f"{method} returned unexpected payload: {data!r}")
        if data.get('error'):
            error = data['error']
            if isinstance(error, dict):
                error = f"{error.get('message', 'unknown error')} (code {error.get('code')})"
            raise RPCError(f"{method} failed: {error}")
        if 'result' not in data:
            raise RPCError(f"{method} returned no result")
        return data['result']

    def chain_id(self) -> int:
        return int(self.call('eth_chainId'), 16)


class PoWERC20Contract:
    CHALLENGE = function_selector('challenge()')
    DIFFICULTY = function_selector('difficulty()')
    NAME = function_selector('name()')
    MINE = function_selector('mine(uint256)')

    def __init__(self, rpc: EthRPC, address: bytes):
        self.rpc = rpc
        self.address = address

    @property
    def address_hex(self):
        return '0x' + self.address.hex()

    def _call(self, calldata: bytes) -> bytes:
        result = self.rpc.call('eth_call', [{"to": self.address_hex, "data": '0x' + calldata.hex()}, 'latest'])
        return _hex_to_bytes(result)

    def name(self) -> str:
        return decode_string(self._call(self.NAME))

    def challenge(self) -> int:
        return decode_uint256(self._call(self.CHALLENGE))

    def difficulty(self) -> int:
        return decode_uint256(self._call(self.DIFFICULTY))

    def mine_calldata(self, nonce: int) -> bytes:
        return self.MINE + pad32(nonce)

    def send_mine(self, sender: bytes, nonce: int, gas=None) -> str:
        tx = {
            "from": '0x' + sender.hex(),
            "to": self.address_hex,
            "data": '0x' + self.mine_calldata(nonce).hex(),
        }
        if gas is not None:
            tx["gas"] = hex(gas)
        return self.rpc.call('eth_sendTransaction', [tx])

    def send_signed_mine(self, private_key: str, nonce: int, gas=None) -> str:
        """Sign mine(nonce) locally and broadcast the raw transaction"""
        account = Account.from_key(private_key)
        sender = account.address
        data = '0x' + self.mine_calldata(nonce).hex()
        if gas is None:
            gas = int(self.rpc.call('eth_estimateGas',
                                    [{"from": sender, "to": self.address_hex, "data": data}]), 16)
        tx = {
            "to": to_checksum_address(self.address_hex),
            "value": 0,
            "data": data,
            "gas": gas,
            "gasPrice": int(self.rpc.call('eth_gasPrice'), 16),
            "nonce": int(self.rpc.call('eth_getTransactionCount', [sender, 'pending']), 16),
            "chainId": self.rpc.chain_id(),
        }
        signed = account.sign_transaction(tx)
        return self.rpc.call('eth_sendRawTransaction', ['0x' + bytes(signed.raw_transaction).hex()])

    def wait_for_receipt(self, tx_hash, timeout=300.0, poll_interval=2.0):
        """Poll until the transaction is mined, None on timeout"""
        deadline = time.monotonic() + timeout
        while True:
            receipt = self.rpc.call('eth_getTransactionReceipt', [tx_hash])
            if receipt is not None:
                return receipt
            if time.monotonic() >= deadline:
                return None
            time.sleep(poll_interval)


class ContractParameterSource:
    """Round parameters read from the token contract"""

    def __init__(self, contract: PoWERC20Contract, claimant: bytes):
        self.contract = contract
        self.claimant = claimant

    def get_challenge(self) -> int:
        return self.contract.challenge()

    def get_difficulty(self) -> int:
        return self.contract.difficulty()

    def get_claimant_identity(self) -> bytes:
        return self.claimant


class ContractSubmitter:
    """Sends mine(nonce) and waits for the receipt"""

    def __init__(self, contract: PoWERC20Contract, sender: bytes, gas=None,
                 receipt_timeout=300.0, poll_interval=2.0, private_key=None):
        self.contract = contract
        self.sender = sender
        self.private_key = private_key
        self.gas = gas
        self.receipt_timeout = receipt_timeout
        self.poll_interval = poll_interval

    def submit(self, nonce: int) -> str:
        try:
            if self.private_key:
                tx_hash = self.contract.send_signed_mine(self.private_key, nonce, gas=self.gas)
            else:
                tx_hash = self.contract.send_mine(self.sender, nonce, gas=self.gas)
            logger.info(f"Mine transaction sent: {tx_hash}, waiting for confirmation...")
            receipt = self.contract.wait_for_receipt(tx_hash, timeout=self.receipt_timeout,
                                                     poll_interval=self.poll_interval)
        except RPCError as e:
            raise SubmissionError(f"failed to submit mine transaction: {e}") from e

        if receipt is None:
            raise SubmissionError(f"transaction {tx_hash} not mined within {self.receipt_timeout:.0f}s")
        if receipt.get('status') == '0x0':
            raise SubmissionError(f"transaction {tx_hash} reverted")
        return receipt.get('transactionHash', tx_hash)
