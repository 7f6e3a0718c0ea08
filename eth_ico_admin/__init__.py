"""
Ethereum ICO Admin Package Initialization

This package provides an administrative command-line client for a staged token
sale running on Ethereum smart contracts: one fixed-supply token contract plus a
pre-sale and up to three sale stage contracts.

The package includes:
- YAML configuration loading and validation
- Contract deployment with resumable address records
- ICO stage lifecycle control with client-side state guards
- Token supply operations (lock, burn, reserved groups, self-destruct)
- JSON-RPC ledger access over HTTP or IPC
- Custom error handling
"""
