"""
PoWERC20 miner configuration
Command line options with environment fallbacks, parsed once into MinerConfig
"""

import argparse
import os
import re
from dataclasses import dataclass, field
from multiprocessing import cpu_count
from typing import Optional

from eth_account import Account

from miner_errors import ConfigurationError
from search_worker import REPORT_EVERY
from worker_pool import BACKENDS

DEFAULT_RPC_URL = "https://rpc.ankr.com/eth"
DEFAULT_CONTRACT = "0xca9b78435Be8267922E7Ac5cDE70401e7502c9cc"

ADDRESS_RE = re.compile(r'^(0x)?[0-9a-fA-F]{40}$')


def parse_address(value) -> bytes:
    """'0x' + 40 hex chars -> 20 raw bytes"""
    if not isinstance(value, str) or not ADDRESS_RE.match(value.strip()):
        raise ConfigurationError(f"invalid address: {value!r}")
    value = value.strip()
    if value[:2] in ('0x', '0X'):
        value = value[2:]
    return bytes.fromhex(value)


def format_address(address: bytes) -> str:
    return '0x' + address.hex()


def address_from_key(private_key) -> bytes:
    """Account address controlled by a hex private key"""
    try:
        return parse_address(Account.from_key(private_key).address)
    except (ValueError, TypeError) as e:
        raise ConfigurationError("invalid private key") from e


@dataclass(frozen=True)
class MinerConfig:
    rpc_url: str
    contract_address: bytes
    account: bytes
    worker_count: int
    backend: str = 'process'
    report_interval: float = 1.0
    report_every: int = REPORT_EVERY
    rpc_timeout: float = 10.0
    receipt_timeout: float = 300.0
    gas: Optional[int] = None
    verify_tls: bool = True
    verbose: bool = False
    private_key: Optional[str] = field(default=None, repr=False)

    def __post_init__(self):
        if not self.rpc_url.startswith(('http://', 'https://')):
            raise ConfigurationError(f"RPC URL must be http(s), got {self.rpc_url!r}")
        if len(self.contract_address) != 20 or len(self.account) != 20:
            raise ConfigurationError("addresses must be 20 bytes")
        if self.worker_count < 1:
            raise ConfigurationError(f"worker count must be at least 1, got {self.worker_count}")
        if self.backend not in BACKENDS:
            raise ConfigurationError(f"unknown backend {self.backend!r}")
        if self.report_every < 1:
            raise ConfigurationError(f"report-every must be at least 1, got {self.report_every}")
        for name in ('report_interval', 'rpc_timeout', 'receipt_timeout'):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name.replace('_', '-')} must be positive")
        if self.gas is not None and self.gas <= 0:
            raise ConfigurationError(f"gas must be positive, got {self.gas}")

    @property
    def account_hex(self):
        return format_address(self.account)

    @property
    def contract_hex(self):
        return format_address(self.contract_address)


def build_parser():
    parser = argparse.ArgumentParser(
        prog='powerc20-miner',
        description='PoWERC20 Miner - multi-core proof-of-work nonce search')
    parser.add_argument('--rpc-url', default=os.getenv('POWERC20_RPC_URL', DEFAULT_RPC_URL),
                        help=f'Ethereum JSON-RPC endpoint (default: {DEFAULT_RPC_URL})')
    parser.add_argument('--contract-address', default=os.getenv('POWERC20_CONTRACT', DEFAULT_CONTRACT),
                        help='Address of the PoWERC20 token contract')
    parser.add_argument('--account', default=os.getenv('POWERC20_ACCOUNT'),
                        help='Mining account, node-signed unless --private-key is given')
    parser.add_argument('--private-key', default=os.getenv('POWERC20_PRIVATE_KEY'),
                        help='Hex private key of the mining account, transactions are signed locally')
    parser.add_argument('--workers', '-w', type=int,
                        default=int(os.getenv('POWERC20_WORKERS', cpu_count())),
                        help='Number of concurrent mining workers (default: CPU count)')
    parser.add_argument('--backend', choices=BACKENDS, default='process',
                        help='Run workers as processes or threads')
    parser.add_argument('--report-interval', type=float, default=1.0,
                        help='Seconds between hash-rate updates')
    parser.add_argument('--report-every', type=int, default=REPORT_EVERY,
                        help='Hashes a worker batches before reporting them')
    parser.add_argument('--rpc-timeout', type=float, default=10.0,
                        help='Timeout for a single RPC request in seconds')
    parser.add_argument('--receipt-timeout', type=float, default=300.0,
                        help='How long to wait for the mine transaction to confirm')
    parser.add_argument('--gas', type=int, default=None,
                        help='Gas limit for the mine transaction (default: node estimate)')
    parser.add_argument('--insecure', action='store_true',
                        help='Skip TLS certificate verification')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    return parser


def load_config(argv=None) -> MinerConfig:
    """Parse argv (sys.argv[1:] when None) into a validated MinerConfig"""
    try:
        args = build_parser().parse_args(argv)
    except ValueError as e:
        # Malformed POWERC20_WORKERS
        raise ConfigurationError(str(e)) from e
    if args.private_key:
        account = address_from_key(args.private_key)
        if args.account and parse_address(args.account) != account:
            raise ConfigurationError("--account does not match the address of --private-key")
    elif args.account:
        account = parse_address(args.account)
    else:
        raise ConfigurationError("no mining account given, use --private-key or --account")

    return MinerConfig(
        rpc_url=args.rpc_url,
        contract_address=parse_address(args.contract_address),
        account=account,
        worker_count=args.workers,
        backend=args.backend,
        report_interval=args.report_interval,
        report_every=args.report_every,
        rpc_timeout=args.rpc_timeout,
        receipt_timeout=args.receipt_timeout,
        gas=args.gas,
        verify_tls=not args.insecure,
        verbose=args.verbose,
        private_key=args.private_key or None,
    )
