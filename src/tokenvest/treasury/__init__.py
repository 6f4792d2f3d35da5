"""Token accounts and authority-gated transfers."""

from tokenvest.treasury.token_treasury import AuthorityToken, TokenTreasury, TransferResult, TransferService

__all__ = ["AuthorityToken", "TokenTreasury", "TransferResult", "TransferService"]
