"""Federated credential exchange and caching."""

from cloud_backup.credentials.broker import CredentialBroker
from cloud_backup.credentials.exchange import CognitoIdentityExchange, IdentityExchange
from cloud_backup.credentials.models import ExchangeRequest, TemporaryCredentials

__all__ = [
    "CognitoIdentityExchange",
    "CredentialBroker",
    "ExchangeRequest",
    "IdentityExchange",
    "TemporaryCredentials",
]
