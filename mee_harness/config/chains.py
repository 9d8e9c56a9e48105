"""Chain metadata for the chains the harness can fork and deposit on."""

from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class NativeCurrency:
    """Native gas token of a chain."""

    name: str

    symbol: str

    decimals: int


@dataclass(slots=True, frozen=True)
class ChainInfo:
    """Chain metadata.

    Carried in :py:class:`mee_harness.core.sdk.MeeSdk` so callers
    do not need to look the chain up again.
    """

    #: EVM chain id
    id: int

    #: Human-readable chain name
    name: str

    #: Gas token
    native_currency: NativeCurrency

    #: Public RPC used when nothing else is configured
    default_rpc_url: str


MAINNET = ChainInfo(
    id=1,
    name="Ethereum",
    native_currency=NativeCurrency(name="Ether", symbol="ETH", decimals=18),
    default_rpc_url="https://eth.merkle.io",
)

#: Chains with a known address table
AVAILABLE_CHAINS: list[ChainInfo] = [MAINNET]


def get_chain(chain_id: int) -> ChainInfo | None:
    """Look up a supported chain.

    :return:
        ``None`` if the chain is not supported
    """
    for chain in AVAILABLE_CHAINS:
        if chain.id == chain_id:
            return chain
    return None


def get_available_chain_ids() -> list[int]:
    return [c.id for c in AVAILABLE_CHAINS]
