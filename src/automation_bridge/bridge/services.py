"""Wire the bridge components together once per process."""

from __future__ import annotations

from dataclasses import dataclass

import requests

from automation_bridge.bridge.config import BridgeSettings
from automation_bridge.bridge.dispatch import ExecutionDispatcher
from automation_bridge.bridge.events import EventTrigger
from automation_bridge.bridge.reconcile import ExecutionReconciler
from automation_bridge.bridge.remote.client import RemoteCatalogClient
from automation_bridge.bridge.stats import StatisticsAggregator
from automation_bridge.bridge.store import MirrorStore
from automation_bridge.bridge.sync import CatalogSynchronizer
from automation_bridge.bridge.worker import ReconciliationWorker


@dataclass(frozen=True, slots=True)
class BridgeServices:
    settings: BridgeSettings
    client: RemoteCatalogClient
    store: MirrorStore
    stats: StatisticsAggregator
    synchronizer: CatalogSynchronizer
    dispatcher: ExecutionDispatcher
    reconciler: ExecutionReconciler
    events: EventTrigger

    def start_worker(self) -> ReconciliationWorker:
        return ReconciliationWorker(
            reconciler=self.reconciler,
            store=self.store,
            max_workers=self.settings.reconcile_workers,
            max_attempts=self.settings.reconcile_max_attempts,
            interval_ms=self.settings.reconcile_interval_ms,
        )

    def close(self) -> None:
        self.client.close()


def build_services(
    settings: BridgeSettings,
    *,
    client: RemoteCatalogClient | None = None,
    session: requests.Session | None = None,
) -> BridgeServices:
    client = client or RemoteCatalogClient.from_settings(settings, session=session)
    store = MirrorStore(settings.state_path)
    stats = StatisticsAggregator(store=store)
    dispatcher = ExecutionDispatcher(client=client, store=store, stats=stats)
    return BridgeServices(
        settings=settings,
        client=client,
        store=store,
        stats=stats,
        synchronizer=CatalogSynchronizer(client=client, store=store),
        dispatcher=dispatcher,
        reconciler=ExecutionReconciler(client=client, store=store, stats=stats),
        events=EventTrigger(dispatcher=dispatcher, store=store),
    )
