"""MEE smart-account demo harness.

Forks a chain with Anvil, runs the MEE node in Docker and submits
a composed Aave deposit through a fusion quote.
"""
