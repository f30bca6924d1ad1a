# paygate/x402/__init__.py
"""
x402 Payment Protocol Integration Module.

This module gates metered resources behind the x402 payment protocol:
clients send a signed payment instruction in the X-PAYMENT header and the
server verifies and settles it through an external facilitator.

Key components:
- requirements: PaymentRequirements price quote shared per resource
- facilitator: HTTP client for the facilitator's verify/settle endpoints
- guard: PaymentGuard orchestrating header -> verify -> settle
- pricing: Per-resource price catalog
- audit: Payment audit logging

Configuration is loaded from environment variables via paygate.core.config.
"""

__version__ = "0.1.0"
