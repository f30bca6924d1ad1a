# tests/conftest.py
import os

# Settings are created at import time; give them a wallet before any app import
os.environ.setdefault("SELLER_WALLET", "0xSellerWallet000000000000000000000000000001")
os.environ.setdefault("X402_AUDIT_ENABLED", "false")
