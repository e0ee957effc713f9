"""
Services package.

- storage: repository interfaces and the in-memory backend
- market: rate-limited exchange-rate and on-chain balance gateways

Import from the submodules directly; the audit logger depends on storage
and the market gateways depend on the audit logger.
"""
