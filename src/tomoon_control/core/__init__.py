"""Core control plane implementation.

This package contains the components that manage the proxy core:
- Shared state cells with per-value read/write locking
- Configuration rewriting into the recommended running profile
- Rule-provider downloads
- Process supervision of the core executable
- Settings persistence and startup health checking
- Exception handling

The external proxy core does the actual routing; everything here only
configures, launches and supervises it.
"""
