"""
PoWERC20 miner errors
Everything the miner raises on purpose derives from MinerError
"""


class MinerError(Exception):
    """Base class for miner failures"""


class ConfigurationError(MinerError, ValueError):
    """Bad settings detected before any worker starts"""


class RandomnessError(MinerError):
    """A worker could not draw a random nonce"""


class SearchCancelled(MinerError):
    """The round was cancelled before a nonce was found"""


class WorkerCrashed(MinerError):
    """Every worker exited without reporting an outcome"""


class RPCError(MinerError):
    """JSON-RPC request failed"""


class SubmissionError(MinerError):
    """The mine transaction could not be sent or confirmed"""
