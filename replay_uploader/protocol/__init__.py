"""JSON RPC client for the recording ingestion service."""

from replay_uploader.protocol.protocol_client import ProtocolClient

__all__ = ["ProtocolClient"]
