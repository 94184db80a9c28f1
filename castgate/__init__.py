"""castgate: Farcaster signer lifecycle and cast publishing backend."""

__version__ = "0.1.0"
