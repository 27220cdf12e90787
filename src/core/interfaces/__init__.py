"""Core interfaces/abstractions.

- Contracts (Protocol) implemented by concrete adapters or test doubles.
- Lets the poller depend on a clock abstraction instead of `time` directly.
"""
