"""Runtime wiring for CLI entrypoints."""

from __future__ import annotations

from dataclasses import dataclass
from functools import partial

import httpx

from .config import AppConfig, load_config
from .extractor import fetch_spot_prices
from .fetcher import ResilientFetcher
from .logging import configure_logging
from .reconciler import LedgerReconciler, RunReport
from .store import LedgerStore
from .usage_client import UsageClient


@dataclass(slots=True)
class Runtime:
    config: AppConfig
    client: httpx.Client
    fetcher: ResilientFetcher
    usage_client: UsageClient
    store: LedgerStore
    reconciler: LedgerReconciler

    def close(self) -> None:
        self.client.close()


def build_runtime(config: AppConfig | None = None) -> Runtime:
    cfg = config or load_config()
    configure_logging(cfg.log_level)

    client = httpx.Client(
        timeout=cfg.http_timeout,
        headers={"User-Agent": cfg.http_user_agent},
        follow_redirects=True,
        limits=httpx.Limits(max_connections=4, max_keepalive_connections=2),
    )
    fetcher = ResilientFetcher(client)
    usage_client = UsageClient(
        fetcher,
        base_url=cfg.usage_api_base_url,
        retries=cfg.http_retries,
        retry_delay_ms=cfg.http_retry_delay_ms,
    )
    store = LedgerStore(cfg.ledger_path, cfg.output_paths)
    reconciler = LedgerReconciler(
        fetch_spot_prices=partial(
            fetch_spot_prices,
            fetcher,
            cfg.tariff_page_url,
            cfg.http_retries,
            cfg.http_retry_delay_ms,
        ),
        usage_client=usage_client,
        credentials=cfg.credentials,
        start_month=cfg.start_month,
        verify_site_users=cfg.verify_site_users,
    )

    return Runtime(
        config=cfg,
        client=client,
        fetcher=fetcher,
        usage_client=usage_client,
        store=store,
        reconciler=reconciler,
    )


def run_once(runtime: Runtime) -> RunReport:
    return runtime.reconciler.run(runtime.store)
