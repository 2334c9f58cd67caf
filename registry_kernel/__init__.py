"""
Registry Kernel

The transactional core of the municipal land registry:
- Maker-checker approval of every mutation to a regulated entity
- Typed change-request payloads applied by a total action match
- Effective-dated rate configuration
- Append-only audit log
"""

__version__ = "0.1.0"
