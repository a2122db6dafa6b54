"""
Authorization gate

A caller proves control of an identity by signing the transaction message
(EIP-191 personal_sign) together with a one-time nonce. The gate runs
before any handler code; handlers then compare the proven identity with the
`authority` recorded on the accounts they touch.
"""

import json
import logging
import secrets
from typing import Any, List

from eth_account import Account
from eth_account.messages import encode_defunct

from addresses import normalize_identity
from errors import InvalidAddress, Unauthorized
from schemas import NonceResponse, TransactionRequest

logger = logging.getLogger(__name__)


def generate_nonce() -> str:
    return secrets.token_hex(16)


def signing_message(operation: str, args: List[Any], accounts: List[str], nonce: str) -> str:
    payload = json.dumps({"args": args, "accounts": accounts}, sort_keys=True, separators=(",", ":"))
    return f"{operation.upper()}:{payload}:{nonce}"


def require_authority(record, caller: str, message: str = None):
    if record.authority != caller:
        raise Unauthorized(message or "Signer is not the account authority.")


class AuthorizationGate:
    def __init__(self, backend):
        self.backend = backend

    def issue_nonce(self, address: str) -> NonceResponse:
        identity = normalize_identity(address)
        nonce = generate_nonce()
        self.backend.issue_nonce(identity, nonce)
        return NonceResponse(address=identity, nonce=nonce)

    def authenticate(self, request: TransactionRequest) -> str:
        """Return the proven caller identity or raise Unauthorized."""
        try:
            caller = normalize_identity(request.caller)
        except InvalidAddress:
            raise Unauthorized("Invalid caller identity")

        # Verify signature recovers to the address (EIP-191 personal_sign style)
        message = encode_defunct(text=signing_message(request.operation, request.args, request.accounts, request.nonce))
        try:
            recovered = Account.recover_message(message, signature=request.signature)
        except Exception as e:
            raise Unauthorized(f"Invalid signature: {str(e)[:60]}")
        if recovered.lower() != caller:
            raise Unauthorized("Signature verification failed")

        if not self.backend.consume_nonce(caller, request.nonce):
            raise Unauthorized("Invalid or used nonce")
        logger.debug("authenticated %s for %s", caller, request.operation)
        return caller
