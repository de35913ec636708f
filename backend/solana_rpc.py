from solana.rpc.api import Client as SolanaClient
from solana.rpc.commitment import Commitment, Finalized

from errors import UpstreamUnavailable


class SolanaLedger:
    """Blockhash source. Call immediately before building a transaction."""

    def __init__(self, rpc_url: str, commitment: Commitment = Finalized, client: SolanaClient = None, logger=None):
        self.client = client or SolanaClient(rpc_url)
        self.commitment = commitment
        self.logger = logger

    def get_recent_blockhash(self) -> str:
        try:
            resp = self.client.get_latest_blockhash(commitment=self.commitment)
            blockhash = resp.value.blockhash
        except Exception as exc:  # noqa: BLE001
            if self.logger:
                self.logger.warning("blockhash_fetch_failed error=%s", exc, exc_info=True)
            raise UpstreamUnavailable(f"Failed to fetch blockhash: {exc}") from exc
        return str(blockhash)
