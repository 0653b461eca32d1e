"""
End-to-end test of the command line against a fake node
"""

import os
import signal
import threading
import time

from eth_account import Account

import powerc20_rpc
from pow_hash import MiningProblem, pad32
from powerc20_miner import main
from powerc20_rpc import PoWERC20Contract
from test_powerc20_rpc import PRIVATE_KEY, FakeSession, abi_string

ACCOUNT = "0x00000000000000000000000000000000000000aa"
TX_HASH = "0x" + "ef" * 32


def fake_node(difficulty, receipt=None):
    values = {
        "0x" + PoWERC20Contract.CHALLENGE.hex(): pad32(31337),
        "0x" + PoWERC20Contract.DIFFICULTY.hex(): pad32(difficulty),
        "0x" + PoWERC20Contract.NAME.hex(): abi_string("PoWERC20"),
    }
    return FakeSession({
        "eth_chainId": "0x539",
        "eth_call": lambda params: "0x" + values[params[0]["data"]].hex(),
        "eth_sendTransaction": TX_HASH,
        "eth_gasPrice": hex(10 ** 9),
        "eth_getTransactionCount": "0x0",
        "eth_estimateGas": hex(60000),
        "eth_sendRawTransaction": TX_HASH,
        "eth_getTransactionReceipt": receipt or {"status": "0x1", "transactionHash": TX_HASH},
    })


def test_main_mines_and_submits(monkeypatch):
    session = fake_node(difficulty=2)
    monkeypatch.setattr(powerc20_rpc.requests, "Session", lambda: session)

    code = main(["--account", ACCOUNT, "--workers", "2", "--backend", "thread",
                 "--rpc-url", "http://localhost:8545", "--report-interval", "0.05"])

    assert code == 0
    methods = [r["method"] for r in session.requests]
    assert methods.count("eth_sendTransaction") == 1
    [tx] = next(r for r in session.requests if r["method"] == "eth_sendTransaction")["params"]
    nonce = int(tx["data"][10:], 16)
    problem = MiningProblem.create(31337, bytes.fromhex(ACCOUNT[2:]), 2)
    assert problem.evaluate(nonce)[1]


def test_main_rejects_bad_config(capsys):
    assert main(["--account", ACCOUNT, "--workers", "0"]) == 1
    assert "Configuration error" in capsys.readouterr().err


def test_main_reports_invalid_difficulty(monkeypatch):
    session = fake_node(difficulty=512)
    monkeypatch.setattr(powerc20_rpc.requests, "Session", lambda: session)

    code = main(["--account", ACCOUNT, "--workers", "1", "--backend", "thread",
                 "--rpc-url", "http://localhost:8545"])

    assert code == 1
    assert all(r["method"] != "eth_sendTransaction" for r in session.requests)


def test_main_signs_locally_with_private_key(monkeypatch):
    session = fake_node(difficulty=2)
    monkeypatch.setattr(powerc20_rpc.requests, "Session", lambda: session)

    code = main(["--private-key", PRIVATE_KEY, "--workers", "2", "--backend", "thread",
                 "--rpc-url", "http://localhost:8545"])

    assert code == 0
    methods = [r["method"] for r in session.requests]
    assert "eth_sendTransaction" not in methods
    [raw] = next(r for r in session.requests if r["method"] == "eth_sendRawTransaction")["params"]
    assert Account.recover_transaction(raw) == Account.from_key(PRIVATE_KEY).address


def test_sigterm_while_waiting_for_receipt_exits(monkeypatch):
    # the node never mines the transaction
    session = fake_node(difficulty=2, receipt=lambda params: None)
    monkeypatch.setattr(powerc20_rpc.requests, "Session", lambda: session)
    timer = threading.Timer(0.5, os.kill, args=(os.getpid(), signal.SIGTERM))

    previous = signal.getsignal(signal.SIGTERM)
    started = time.monotonic()
    timer.start()
    code = main(["--account", ACCOUNT, "--workers", "1", "--backend", "thread",
                 "--rpc-url", "http://localhost:8545", "--receipt-timeout", "5"])
    elapsed = time.monotonic() - started
    timer.join()

    assert code == 1
    assert elapsed < 3
    assert signal.getsignal(signal.SIGTERM) is previous
    polls = [r for r in session.requests if r["method"] == "eth_getTransactionReceipt"]
    assert 1 <= len(polls) <= 2
