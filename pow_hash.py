"""
PoWERC20 hashing - target and candidate evaluation

digest = keccak256(challenge || address || nonce)
challenge and nonce are left-padded to 32 bytes big-endian, the address is
the raw 20 bytes. A candidate is accepted when int(digest) < target.
"""

from dataclasses import dataclass, field

from Crypto.Hash import keccak

from miner_errors import ConfigurationError

MAX_DIFFICULTY = 256
UINT256_MAX = (1 << 256) - 1
WORD_SIZE = 32
ADDRESS_SIZE = 20


def keccak256(data: bytes) -> bytes:
    """Ethereum Keccak-256 (original Keccak padding, not NIST SHA3-256)"""
    return keccak.new(digest_bits=256, data=data).digest()


def compute_target(difficulty: int) -> int:
    """Target for a difficulty level: 2 ** (256 - difficulty)"""
    if isinstance(difficulty, bool) or not isinstance(difficulty, int):
        raise ConfigurationError(f"difficulty must be an integer, got {difficulty!r}")
    if not 0 <= difficulty <= MAX_DIFFICULTY:
        raise ConfigurationError(
            f"difficulty must be between 0 and {MAX_DIFFICULTY}, got {difficulty}")
    return 1 << (MAX_DIFFICULTY - difficulty)


def pad32(value: int) -> bytes:
    """Left-pad an unsigned 256-bit integer to 32 big-endian bytes"""
    if value < 0 or value > UINT256_MAX:
        raise ValueError(f"value out of uint256 range: {value}")
    return value.to_bytes(WORD_SIZE, 'big')


def encode_candidate(challenge: int, claimant: bytes, nonce: int) -> bytes:
    return pad32(challenge) + bytes(claimant) + pad32(nonce)


def accepts(digest: bytes, target: int) -> bool:
    return int.from_bytes(digest, 'big') < target


def evaluate(challenge: int, claimant: bytes, nonce: int, target: int):
    """Hash one candidate, returns (digest, accepted)"""
    digest = keccak256(encode_candidate(challenge, claimant, nonce))
    return digest, accepts(digest, target)


@dataclass(frozen=True)
class MiningProblem:
    """
    One round's search problem, shared read-only by every worker.

    Build it with MiningProblem.create() so the difficulty is checked
    and the target derived before anything starts.
    """

    challenge: int
    claimant: bytes
    difficulty: int
    target: int
    prefix: bytes = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        # Constant part of every candidate: pad32(challenge) || claimant
        object.__setattr__(self, 'prefix', pad32(self.challenge) + self.claimant)

    @classmethod
    def create(cls, challenge: int, claimant: bytes, difficulty: int) -> "MiningProblem":
        target = compute_target(difficulty)
        if isinstance(challenge, bool) or not isinstance(challenge, int):
            raise ConfigurationError(f"challenge must be an integer, got {challenge!r}")
        if not 0 <= challenge <= UINT256_MAX:
            raise ConfigurationError(f"challenge out of uint256 range: {challenge}")
        claimant = bytes(claimant)
        if len(claimant) != ADDRESS_SIZE:
            raise ConfigurationError(
                f"claimant identity must be {ADDRESS_SIZE} bytes, got {len(claimant)}")
        return cls(challenge=challenge, claimant=claimant, difficulty=difficulty, target=target)

    def evaluate(self, nonce: int):
        digest = keccak256(self.prefix + pad32(nonce))
        return digest, accepts(digest, self.target)
