"""
PoWERC20 mining round
Snapshot parameters, search, then hand the winning nonce to the submitter
"""

import logging
import time
from dataclasses import dataclass
from typing import Protocol

from miner_config import MinerConfig
from pow_hash import MiningProblem
from worker_pool import WorkerPool

logger = logging.getLogger(__name__)


class ParameterSource(Protocol):
    def get_challenge(self) -> int: ...

    def get_difficulty(self) -> int: ...

    def get_claimant_identity(self) -> bytes: ...


class Submitter(Protocol):
    def submit(self, nonce: int) -> str: ...


@dataclass(frozen=True)
class RoundParameters:
    challenge: int
    difficulty: int
    claimant: bytes

    @classmethod
    def fetch(cls, source: ParameterSource) -> "RoundParameters":
        return cls(
            challenge=source.get_challenge(),
            difficulty=source.get_difficulty(),
            claimant=source.get_claimant_identity(),
        )


@dataclass(frozen=True)
class RoundOutcome:
    nonce: int
    tx_hash: str
    elapsed: float


def run_round(config: MinerConfig, source: ParameterSource, submitter: Submitter,
              on_report=None, on_pool=None, **pool_options) -> RoundOutcome:
    """
    Run one complete round.

    Raises the round's error (ConfigurationError, RandomnessError,
    SearchCancelled, WorkerCrashed or SubmissionError); nothing is retried.
    on_pool, when given, receives the WorkerPool before the search starts so
    callers can cancel it.
    """
    params = RoundParameters.fetch(source)
    logger.info(f"Current mining challenge number: {params.challenge}")
    logger.info(f"Current mining difficulty level: {params.difficulty}")

    # Fails fast on a bad difficulty, before any worker exists
    problem = MiningProblem.create(params.challenge, params.claimant, params.difficulty)
    logger.info(f"Target number is: {problem.target}")

    pool = WorkerPool(
        config.worker_count,
        backend=config.backend,
        report_interval=config.report_interval,
        report_every=config.report_every,
        on_report=on_report,
        **pool_options,
    )
    if on_pool is not None:
        on_pool(pool)

    logger.info(f"⛏️  {config.worker_count} mining workers started...")
    start_time = time.time()
    result = pool.run(problem)
    elapsed = time.time() - start_time
    if not result.ok:
        raise result.error

    logger.info(f"💎 Successfully discovered a valid nonce: {result.nonce} ({elapsed:.1f}s)")
    logger.info("Submitting mining transaction with nonce...")
    tx_hash = submitter.submit(result.nonce)
    logger.info(f"✓ Mining transaction successfully confirmed, Transaction Hash: {tx_hash}")
    return RoundOutcome(nonce=result.nonce, tx_hash=tx_hash, elapsed=elapsed)
