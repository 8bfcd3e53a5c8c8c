import hashlib


def sha256_hex(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def signal_fingerprint(signal_type: str, signal_id: int | str, signal_date: str) -> str:
    """Deterministic dedupe key for one signal, shared by every subscriber.

    The (user_id, signal_fingerprint) unique constraint on notification_queue
    turns re-detection of the same signal into a no-op insert.
    """
    return sha256_hex(f"{signal_type}:{signal_id}:{signal_date}")[:32]
