"""
Account poller: fetch Wealthsimple accounts on a fixed interval and publish
them into the gauge store.

A 401 gets exactly one re-authentication (refresh, falling back to a full
login) and one retried fetch. Anything else, including a second 401, is raised
to the caller; the previous snapshot stays in the store untouched.
"""
from __future__ import annotations
import time
from typing import Callable, List, Optional

from loguru import logger

from broker.base import Account
from broker.errors import AuthError, Unauthorized
from broker.wealthsimple_api import WealthsimpleClient
from broker.wealthsimple_session import SessionManager
from tools.metrics import GaugeStore, accounts_to_samples

POLL_SECONDS = 300


class AccountPoller:
    def __init__(
        self,
        session: SessionManager,
        client: WealthsimpleClient,
        store: GaugeStore,
        interval: float = POLL_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session = session
        self.client = client
        self.store = store
        self.interval = interval
        self.sleep = sleep

    def _reauthenticate(self) -> None:
        self.session.invalidate()
        try:
            self.session.refresh()
        except AuthError as e:
            logger.warning("Token refresh failed ({}), logging in again", e)
            self.session.login()

    def _token(self) -> str:
        try:
            return self.session.current_token()
        except AuthError as e:
            logger.warning("No usable token ({}), logging in again", e)
            self.session.login()
            return self.session.current_token()

    def _fetch(self) -> List[Account]:
        try:
            return self.client.list_accounts(self._token())
        except Unauthorized as e:
            logger.warning("Got 401, need to log in again: {}", e)
        self._reauthenticate()
        return self.client.list_accounts(self.session.current_token())

    def poll_once(self) -> int:
        accounts = self._fetch()
        samples = accounts_to_samples(accounts)
        self.store.replace_all(samples)
        logger.info("Polled {} accounts -> {} samples", len(accounts), len(samples))
        return len(samples)

    def run(self, cycles: Optional[int] = None) -> None:
        logger.info("Polling accounts every {}s", self.interval)
        done = 0
        while True:
            self.poll_once()
            done += 1
            if cycles is not None and done >= cycles:
                break
            self.sleep(self.interval)
