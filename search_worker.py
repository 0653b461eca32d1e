"""
PoWERC20 search worker
Draws random nonces until one hashes below the target or the round stops
"""

import secrets

from pow_hash import accepts, keccak256

# Rejected attempts batched per hash-count message
REPORT_EVERY = 1000

FOUND = 'found'
ERROR = 'error'
CRASH = 'crash'


def search_worker(worker_id, problem, stop_event, outcome_queue, hash_queue,
                  report_every=REPORT_EVERY, entropy=secrets.token_bytes):
    """
    Worker loop, runs as a thread or a process target.

    Reports ('found', worker_id, nonce) or ('error', worker_id, message) on
    outcome_queue and exits. Any other exception is reported as
    ('crash', worker_id, message). Rejected attempts go to hash_queue in
    batches of report_every. Once stop_event is set nothing more is reported.
    """
    try:
        _search(worker_id, problem, stop_event, outcome_queue, hash_queue, report_every, entropy)
    except Exception as e:
        outcome_queue.put((CRASH, worker_id, f"{type(e).__name__}: {e}"))


def _search(worker_id, problem, stop_event, outcome_queue, hash_queue, report_every, entropy):
    # Localize for the hot loop
    prefix = problem.prefix
    target = problem.target
    hashes = 0

    while not stop_event.is_set():
        try:
            nonce_bytes = entropy(32)
        except (OSError, NotImplementedError) as e:
            outcome_queue.put((ERROR, worker_id, f"failed to generate random nonce: {e}"))
            return
        if len(nonce_bytes) != 32:
            outcome_queue.put((ERROR, worker_id,
                               f"failed to generate random nonce: short read of {len(nonce_bytes)} bytes"))
            return

        # 32 random bytes are already the padded big-endian nonce
        digest = keccak256(prefix + nonce_bytes)
        if accepts(digest, target):
            outcome_queue.put((FOUND, worker_id, int.from_bytes(nonce_bytes, 'big')))
            return

        hashes += 1
        if hashes >= report_every:
            hash_queue.put(hashes)
            hashes = 0
