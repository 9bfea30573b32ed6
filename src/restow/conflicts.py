"""Deterministic resolution of occupied target paths."""

import os
from typing import Optional

from restow.errors import DisambiguationExhaustedError
from restow.fs_utils import LocalStorage
from restow.pathing import with_counter


class ConflictResolver:
    """
    Picks the first free name among path, path+1, path+2, ...

    A candidate equal to `source` counts as free: it is the file being moved.
    Callers hold the ("target", path) lock while resolving and moving so two
    relocations never claim the same name.
    """

    def __init__(self, storage: LocalStorage, max_attempts: int = 100):
        self.storage = storage
        self.max_attempts = max_attempts

    def resolve(self, candidate: str, source: Optional[str] = None) -> str:
        destination = candidate
        own = os.path.normpath(source) if source else None
        count = 0
        while os.path.normpath(destination) != own and self.storage.exists(destination):
            count += 1
            if count > self.max_attempts:
                raise DisambiguationExhaustedError(candidate, self.max_attempts)
            destination = with_counter(candidate, count)
        return destination
