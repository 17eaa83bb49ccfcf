"""solbroker — version-aware Solidity compilation broker.

Resolves a requested compiler release, acquires and caches its artifact,
invokes it through whichever protocol that release speaks, and returns
one canonical standard-JSON result.
"""

__version__ = "0.1.0"
