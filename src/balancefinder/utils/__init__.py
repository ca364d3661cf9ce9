"""Utility modules for seeding, shared statistics and result files."""

from balancefinder.utils.fileio import (
    atomic_write_json,
    atomic_write_table,
    to_jsonable,
)
from balancefinder.utils.seeding import (
    spawn_generators,
    map_parallel,
    chunk_sizes,
)
from balancefinder.utils.statistics import (
    gower_center,
    first_max_index,
)

__all__ = [
    # Atomic file-write utilities
    'atomic_write_json',
    'atomic_write_table',
    'to_jsonable',
    # Seeded parallel resampling
    'spawn_generators',
    'map_parallel',
    'chunk_sizes',
    # Statistical utilities
    'gower_center',
    'first_max_index',
]
