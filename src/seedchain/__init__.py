"""
Chain filtering for short-read seed chains: grouping, coverage weighting, ranking,
greedy overlap filtering and compaction of seed chains, one chunk of reads at a time.
"""
from importlib.metadata import version, PackageNotFoundError


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class SeedchainWarning(Warning): pass


# Constants ------------------------------------------------------------------------------------------------------------
try: __version__ = version(__name__)
except PackageNotFoundError: __version__ = '0.0.0'
