# src/folio_sync/broker/token_manager.py

"""
Access-token lifecycle per broker account.

Per api_key the credential moves through:

    NoToken -> HasRequestToken -> HasValidAccessToken <-> HasExpiredAccessToken

Validity is never tracked locally; it is only known by probing the provider.
The acquisition loop is driven by RefreshCycle, which owns the attempt bound:

    PROBE --valid--------------------------------------------> DONE
    PROBE --request token cached--> EXCHANGE --ok------------> DONE
    PROBE --nothing cached--------> LOGIN --ok--> EXCHANGE
    LOGIN/EXCHANGE --failed, attempts left--> LOGIN (fresh request token)
    LOGIN/EXCHANGE --failed, bound reached--> MANUAL (operator fallback)
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import StrEnum

from ..core.ports import AccountSource, BrokerApi, LoginEmulator
from ..errors import AuthenticationError, CredentialError, ProtocolError
from .accounts import BrokerAccount
from .credential_store import AccountCredential, CredentialStore
from .login_flow import announce_manual_login, mask

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3


class RefreshStep(StrEnum):
    PROBE = "probe"
    LOGIN = "login"
    EXCHANGE = "exchange"
    DONE = "done"
    MANUAL = "manual"


@dataclass(slots=True)
class RefreshCycle:
    """
    Transition table for one get_valid_access_token() call.

    An attempt is one failed LOGIN or EXCHANGE. With max_attempts=3 the exchange
    endpoint is hit at most 3 times and the emulator runs at most 3 times.
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    emulation_enabled: bool = True
    failed_attempts: int = 0
    step: RefreshStep = RefreshStep.PROBE

    def _move(self, step: RefreshStep) -> RefreshStep:
        self.step = step
        return step

    def _failed(self) -> RefreshStep:
        self.failed_attempts += 1
        if not self.emulation_enabled or self.failed_attempts >= self.max_attempts:
            return self._move(RefreshStep.MANUAL)
        return self._move(RefreshStep.LOGIN)

    def after_probe(self, *, token_valid: bool, has_request_token: bool) -> RefreshStep:
        if token_valid:
            return self._move(RefreshStep.DONE)
        if has_request_token:
            return self._move(RefreshStep.EXCHANGE)
        if self.emulation_enabled:
            return self._move(RefreshStep.LOGIN)
        return self._move(RefreshStep.MANUAL)

    def after_login(self, *, ok: bool) -> RefreshStep:
        return self._move(RefreshStep.EXCHANGE) if ok else self._failed()

    def after_exchange(self, *, ok: bool) -> RefreshStep:
        return self._move(RefreshStep.DONE) if ok else self._failed()

    @property
    def exhausted(self) -> bool:
        return self.step is RefreshStep.MANUAL


class TokenManager:
    def __init__(
        self,
        *,
        accounts: AccountSource,
        store: CredentialStore,
        broker: BrokerApi,
        emulator: LoginEmulator | None,
        web_url: str,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        emulation_enabled: bool = True,
    ) -> None:
        self._accounts = accounts
        self._store = store
        self._broker = broker
        self._emulator = emulator
        self._web_url = web_url
        self._max_attempts = max(1, int(max_attempts))
        self._emulation_enabled = bool(emulation_enabled and emulator is not None)

        # Two tasks refreshing the same account would burn each other's request tokens.
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, api_key: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(api_key)
            if lock is None:
                lock = self._locks[api_key] = threading.Lock()
            return lock

    def _cached_request_token(self, account: BrokerAccount, cred: AccountCredential | None) -> str | None:
        """
        Request token to try first: the stored one, else one pasted into the accounts
        file by the operator (unless that exact token was already used once).
        """
        if cred is not None and cred.request_token:
            return cred.request_token

        supplied = account.request_token
        if not supplied:
            return None
        if cred is not None and supplied in (cred.supplied_request_token, cred.consumed_request_token):
            logger.debug("Ignoring already used request token from config for %s", account.name)
            return None

        self._store.store_supplied_request_token(account.api_key, supplied)
        logger.info("Using request token supplied in config for account %s", account.name)
        return supplied

    def get_valid_access_token(self, api_key: str) -> str:
        account = self._accounts.get(api_key)
        account.require_secrets()

        with self._lock_for(api_key):
            return self._acquire(account)

    def _acquire(self, account: BrokerAccount) -> str:
        api_key = account.api_key
        cycle = RefreshCycle(max_attempts=self._max_attempts, emulation_enabled=self._emulation_enabled)

        cred = self._store.get(api_key)
        token_valid = False
        if cred is not None and cred.access_token:
            token_valid = self._broker.probe_access_token(api_key, cred.access_token)

        request_token = None if token_valid else self._cached_request_token(account, cred)
        step = cycle.after_probe(token_valid=token_valid, has_request_token=bool(request_token))

        if step is RefreshStep.DONE and cred is not None and cred.access_token:
            return cred.access_token

        last_error: Exception | None = None
        while True:
            if step is RefreshStep.LOGIN:
                assert self._emulator is not None
                logger.info(
                    "Starting login flow for account %s (attempt %d/%d)",
                    account.name,
                    cycle.failed_attempts + 1,
                    self._max_attempts,
                )
                try:
                    request_token = self._emulator.login(account)
                except (ProtocolError, AuthenticationError) as exc:
                    last_error = exc
                    logger.warning("Login flow failed for account %s: %s", account.name, exc)
                    step = cycle.after_login(ok=False)
                    continue
                self._store.store_request_token(api_key, request_token)
                step = cycle.after_login(ok=True)

            elif step is RefreshStep.EXCHANGE:
                assert request_token is not None
                try:
                    access_token = self._broker.exchange_request_token(api_key, account.api_secret, request_token)
                except AuthenticationError as exc:
                    last_error = exc
                    logger.warning(
                        "Exchange of request token %s failed for account %s: %s",
                        mask(request_token),
                        account.name,
                        exc,
                    )
                    # Never offer this request token again.
                    self._store.consume_request_token(api_key)
                    request_token = None
                    step = cycle.after_exchange(ok=False)
                    continue

                self._store.store_access_token(api_key, access_token, request_token=request_token)
                cycle.after_exchange(ok=True)
                logger.info("Obtained new access token %s for account %s", mask(access_token), account.name)
                return access_token

            else:
                announce_manual_login(self._web_url, account)
                raise CredentialError(
                    f"Could not obtain an access token for account {account.name} "
                    f"after {cycle.failed_attempts} attempt(s)"
                ) from last_error
