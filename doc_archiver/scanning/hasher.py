import hashlib
from pathlib import Path
from .. import config

class FileHasher:
    def compute_hash(self, path: Path) -> str:
        """
        SHA-256 fingerprint of the whole file, stored on the record as an
        integrity checksum. Reconciliation never looks at it; size and mtime
        decide whether a path changed.
        """
        h = hashlib.sha256()
        with open(path, 'rb') as f:
            while chunk := f.read(config.HASH_CHUNK_SIZE):
                h.update(chunk)
        return h.hexdigest()
