"""Token and lending pool addresses per chain.

The table is static and read-only. USDC is also exposed as a
multichain token so the SDK layer can resolve it per chain.
"""

from dataclasses import dataclass

from eth_typing import HexAddress, HexStr

from mee_harness.config.chains import MAINNET


@dataclass(slots=True, frozen=True)
class ChainAddresses:
    """Contracts the deposit flow touches on one chain."""

    #: USDC token
    usdc: HexAddress

    #: Aave interest bearing USDC
    ausdc: HexAddress

    #: Aave lending pool
    pool: HexAddress


#: Chain id -> addresses
ADDRESSES: dict[int, ChainAddresses] = {
    MAINNET.id: ChainAddresses(
        usdc=HexAddress(HexStr("0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48")),
        ausdc=HexAddress(HexStr("0xbcca60bb61934080951369a648fb03df4f96263c")),
        pool=HexAddress(HexStr("0x7d2768dE32b0b80b7a3454c06BdAc94A69DDc7A9")),
    ),
}


class UnknownTokenDeployment(KeyError):
    """Multichain token is not deployed on the asked chain."""


@dataclass(slots=True, frozen=True)
class MultichainToken:
    """Same token deployed on several chains."""

    symbol: str

    #: Chain id -> token address
    deployments: dict[int, HexAddress]

    def address_on(self, chain_id: int) -> HexAddress:
        try:
            return self.deployments[chain_id]
        except KeyError:
            raise UnknownTokenDeployment(f"{self.symbol} is not deployed on chain {chain_id}") from None


MULTICHAIN_USDC = MultichainToken(
    symbol="USDC",
    deployments={chain_id: addresses.usdc for chain_id, addresses in ADDRESSES.items()},
)
