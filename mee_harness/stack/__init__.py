"""Local stack: Anvil fork, MEE node containers and their lifecycle."""
