import json
import hashlib
from typing import Optional


def canon_params(obj) -> str:
    # Only object keys are sorted; list order is significant
    return json.dumps(obj, sort_keys=True, ensure_ascii=False, separators=(",", ":"))


def input_hash(obj, algo: str = "sha256", length: Optional[int] = None) -> str:
    """Content digest of canonicalized tool params.

    The full hex digest is returned unless ``length`` asks for a prefix.
    A prefix shrinks the collision space, so dedup lookups additionally
    compare the stored canonical params before reporting a hit.
    """
    digest = hashlib.new(algo, canon_params(obj).encode("utf-8")).hexdigest()
    if length is not None and length > 0:
        return digest[:length]
    return digest
