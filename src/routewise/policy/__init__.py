"""Policy lookup and storage."""

from routewise.policy.backends import (
    FilePolicyBackend,
    HTTPPolicyBackend,
    InMemoryPolicyBackend,
    PolicyBackend,
    parse_policies,
)
from routewise.policy.store import PolicyStore, PolicyTable

__all__ = [
    "PolicyStore",
    "PolicyTable",
    "PolicyBackend",
    "InMemoryPolicyBackend",
    "FilePolicyBackend",
    "HTTPPolicyBackend",
    "parse_policies",
]
