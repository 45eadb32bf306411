#!/usr/bin/env python3
from __future__ import annotations
import argparse
import getpass
import sys

from dotenv import load_dotenv
from loguru import logger

from broker.base import Credentials
from broker.errors import ExporterError
from broker.wealthsimple_api import WealthsimpleClient
from broker.wealthsimple_session import SessionManager
from tools.account_poller import AccountPoller
from tools.metrics import GaugeStore, build_registry
from tools.metrics_server import start_metrics_server
from utils.config import ExporterCfg, load_config
from utils.logger import setup_logging


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="ws-exporter",
        description="Export Wealthsimple account values as Prometheus gauges",
    )
    ap.add_argument("--config", help="YAML config file")
    ap.add_argument("--port", type=int, help="metrics port (default 8080)")
    ap.add_argument("--interval", type=float, help="poll interval in seconds (default 300)")
    ap.add_argument("--log-level", help="DEBUG, INFO, WARNING, ...")
    return ap


def _apply_args(cfg: ExporterCfg, args) -> ExporterCfg:
    if args.port is not None:
        cfg.server.port = args.port
    if args.interval is not None:
        cfg.poll_seconds = args.interval
    if args.log_level:
        cfg.general.log_level = args.log_level
    return cfg


def prompt_credentials(username: str | None = None) -> Credentials:
    user = username or input("Email: ").strip()
    password = getpass.getpass("Password: ")
    return Credentials(username=user, password=password)


def prompt_otp() -> str:
    return input("2FA code: ").strip()


def run(cfg: ExporterCfg) -> None:
    creds = prompt_credentials(cfg.api.username)
    session = SessionManager(
        base_url=cfg.api.base_url, otp_prompt=prompt_otp, timeout=cfg.api.request_timeout
    )
    session.login(creds)

    store = GaugeStore()
    httpd = start_metrics_server(
        build_registry(store), cfg.server.host, cfg.server.port, cfg.server.path
    )
    try:
        client = WealthsimpleClient(cfg.api.base_url, timeout=cfg.api.request_timeout)
        AccountPoller(session, client, store, interval=cfg.poll_seconds).run()
    finally:
        httpd.shutdown()
        httpd.server_close()


def main(argv=None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    try:
        cfg = _apply_args(load_config(args.config), args)
        setup_logging(cfg.general.log_level)
        run(cfg)
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting")
        raise SystemExit(130)
    except ExporterError as e:
        logger.error("[FAIL] {}: {}", type(e).__name__, e)
        raise SystemExit(2)
    return 0


if __name__ == "__main__":
    sys.exit(main())
