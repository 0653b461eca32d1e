#!/usr/bin/env python3
"""
PoWERC20 Miner - multi-core proof-of-work miner for PoWERC20 tokens
Finds nonce with keccak256(challenge, address, nonce) < 2^(256 - difficulty)
and submits it to the token contract
"""

import logging
import signal
import sys
from datetime import datetime

from hash_telemetry import format_hashrate
from miner_config import load_config
from miner_errors import MinerError
from mining_round import run_round
from powerc20_rpc import ContractParameterSource, ContractSubmitter, EthRPC, PoWERC20Contract

BANNER = r"""
  ____    __        _______ ____   ____ ____   ___    __  __ _
 |  _ \ __\ \      / / ____|  _ \ / ___|___ \ / _ \  |  \/  (_)_ __   ___ _ __
 | |_) / _ \ \ /\ / /|  _| | |_) | |     __) | | | | | |\/| | | '_ \ / _ \ '__|
 |  __/ (_) \ V  V / | |___|  _ <| |___ / __/| |_| | | |  | | | | | |  __/ |
 |_|   \___/ \_/\_/  |_____|_| \_\\____|_____|\___/  |_|  |_|_|_| |_|\___|_|
"""

logger = logging.getLogger("powerc20_miner")


def setup_logging(verbose=False):
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO,
                        format='%(asctime)s | %(levelname)s | %(message)s',
                        datefmt='%Y-%m-%d %H:%M:%S')
    # requests/urllib3 chatter is only useful when debugging the node itself
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def print_hashrate(report):
    timestamp = datetime.fromtimestamp(report.timestamp).strftime('%Y-%m-%d %H:%M:%S')
    print(f"\rMining[{timestamp}] Total hashes per second: {format_hashrate(report.rate):>12} | "
          f"avg {format_hashrate(report.average)} | {report.total:,} hashes",
          end='', flush=True)


def main(argv=None):
    print(BANNER)
    try:
        config = load_config(argv)
    except MinerError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1
    setup_logging(config.verbose)

    rpc = EthRPC(config.rpc_url, timeout=config.rpc_timeout, verify=config.verify_tls)
    contract = PoWERC20Contract(rpc, config.contract_address)
    source = ContractParameterSource(contract, config.account)
    submitter = ContractSubmitter(contract, config.account, gas=config.gas,
                                  receipt_timeout=config.receipt_timeout,
                                  private_key=config.private_key)

    pools = []

    def on_sigterm(signum, frame):
        running = [pool for pool in pools if pool.running]
        if not running:
            # Outside the search there is nothing to cancel, unwind instead
            raise KeyboardInterrupt
        for pool in running:
            pool.cancel()

    previous_handler = signal.signal(signal.SIGTERM, on_sigterm)

    try:
        logger.info("Establishing connection with Ethereum client...")
        chain_id = rpc.chain_id()
        logger.info(f"Successfully connected to Ethereum network with Chain ID: {chain_id}")
        logger.info(f"Mining account: {config.account_hex}")
        logger.info(f"PoWERC20 token contract: {config.contract_hex}")
        logger.info(f"Contract Name: {contract.name()}")

        outcome = run_round(config, source, submitter, on_report=print_hashrate,
                            on_pool=pools.append)
    except MinerError as e:
        print()
        logger.error(f"Mining operation failed due to an error: {e}")
        return 1
    except KeyboardInterrupt:
        print()
        logger.warning("Shutting down...")
        return 1
    finally:
        signal.signal(signal.SIGTERM, previous_handler)

    print()
    logger.info(f"Mining process successfully completed in {outcome.elapsed:.1f}s")
    return 0


if __name__ == "__main__":
    sys.exit(main())
