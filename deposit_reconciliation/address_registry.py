"""
Known Address Registry

Platform receiving addresses per network. Addresses come from the
'deposit_addresses' config section; environment variables
(BSC_WALLET_ADDRESS, ETH_WALLET_ADDRESS, POLYGON_WALLET_ADDRESS,
TRON_WALLET_ADDRESS) take precedence.
"""

import os
from typing import Dict, Optional

from loguru import logger

from .exceptions import MissingDepositAddress
from .network_lookup import Network


class KnownAddressRegistry:
    """
    Deposit address lookup per network

    A network with no configured address is a typed condition
    (MissingDepositAddress), never an empty-string fallback.
    """

    ENV_VARIABLES = {
        Network.BSC: 'BSC_WALLET_ADDRESS',
        Network.ETHEREUM: 'ETH_WALLET_ADDRESS',
        Network.POLYGON: 'POLYGON_WALLET_ADDRESS',
        Network.TRON: 'TRON_WALLET_ADDRESS',
    }

    def __init__(self, addresses: Optional[Dict] = None, use_env: bool = False):
        """
        Initialize registry

        Args:
            addresses: Dict of {network name or Network: address}
            use_env: Let *_WALLET_ADDRESS environment variables override
        """
        self._addresses: Dict[Network, str] = {}

        for name, address in (addresses or {}).items():
            try:
                network = Network.from_name(name)
            except ValueError:
                logger.warning(f"Ignoring deposit address for unknown network '{name}'")
                continue
            if address and str(address).strip():
                self._addresses[network] = str(address).strip()

        if use_env:
            for network, env_name in self.ENV_VARIABLES.items():
                value = os.getenv(env_name)
                if value and value.strip():
                    self._addresses[network] = value.strip()

        configured = ', '.join(n.value for n in self._addresses) or 'none'
        logger.info(f"Address registry initialized (networks: {configured})")

    @classmethod
    def from_config(cls, config: Dict) -> 'KnownAddressRegistry':
        return cls(config.get('deposit_addresses', {}), use_env=True)

    def address_for(self, network: Network) -> str:
        """
        Receiving address for a network

        Raises:
            MissingDepositAddress: If no address is configured
        """
        address = self._addresses.get(Network.from_name(network))
        if address is None:
            raise MissingDepositAddress(Network.from_name(network).value)
        return address

    def has_address(self, network: Network) -> bool:
        return Network.from_name(network) in self._addresses

    def matches(self, network: Network, address: Optional[str]) -> bool:
        """
        Case-insensitive, whitespace-trimmed comparison with our address

        Raises:
            MissingDepositAddress: If no address is configured for network
        """
        expected = self.address_for(network)
        if not address:
            return False
        return address.strip().lower() == expected.lower()

    def as_dict(self) -> Dict[str, str]:
        return {network.value: address for network, address in self._addresses.items()}
