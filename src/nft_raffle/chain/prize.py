"""Prize issuer capability: mints the winner's collectible for a round."""

from __future__ import annotations

from typing import Dict, Optional, Protocol

from nft_raffle.utils.logger import get_logger

logger = get_logger(__name__)


class PrizeIssuer(Protocol):
    def mint(self, recipient: str, prize_id: int) -> None:
        ...

    def uri_of(self, prize_id: int) -> str:
        ...


class InMemoryPrizeIssuer:
    """Keeps prize ownership in a dict and derives metadata URIs from a base URI.

    ``base_uri`` may contain ``{id}``; otherwise the id is appended followed
    by ``.json``.
    """

    def __init__(self, base_uri: str = "ipfs://raffle-prizes/") -> None:
        self.base_uri = base_uri
        self._owners: Dict[int, str] = {}

    def mint(self, recipient: str, prize_id: int) -> None:
        if prize_id in self._owners:
            raise ValueError(f"Prize {prize_id} already minted")
        self._owners[prize_id] = recipient
        logger.info("Minted prize #%s to %s", prize_id, recipient)

    def uri_of(self, prize_id: int) -> str:
        if prize_id not in self._owners:
            raise KeyError(f"Prize {prize_id} does not exist")
        if "{id}" in self.base_uri:
            return self.base_uri.replace("{id}", str(prize_id))
        return f"{self.base_uri}{prize_id}.json"

    def owner_of(self, prize_id: int) -> Optional[str]:
        return self._owners.get(prize_id)
