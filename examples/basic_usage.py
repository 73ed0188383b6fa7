#!/usr/bin/env python3
"""Programmatic sync-and-run example.

This demonstrates using the bridge components directly:

* load settings from `.env`
* mirror the remote workflow catalog for one integration
* run a workflow by name and wait for its outcome

The organization and integration ids are passed as arguments (not read from `.env`).
"""

from __future__ import annotations

import argparse
import json
from typing import Sequence

from automation_bridge.bridge.config import BridgeSettings
from automation_bridge.bridge.errors import BridgeError
from automation_bridge.bridge.logging import configure_logging
from automation_bridge.bridge.models import Integration
from automation_bridge.bridge.services import build_services


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync, then run one workflow by name.")
    parser.add_argument("--organization", required=True, help="Organization id")
    parser.add_argument("--integration", default="default", help="Integration id")
    parser.add_argument("--workflow-name", required=True, help="Name of the remote workflow")
    parser.add_argument("--input", default="{}", help="JSON object passed to the workflow")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = BridgeSettings()
    configure_logging(settings.log_level)

    services = build_services(settings)
    try:
        services.store.upsert_integration(
            Integration(id=args.integration, organization_id=args.organization)
        )

        sync = services.synchronizer.sync(args.integration, args.organization)
        print(f"Synced {sync.synced} workflow(s): +{sync.added} ~{sync.updated} -{sync.removed}")
        for error in sync.errors:
            print(f"  error: {error}")

        matches = [
            wf
            for wf in services.store.list_workflows(organization_id=args.organization)
            if wf.name == args.workflow_name and wf.synced
        ]
        if not matches:
            print(f"No synced workflow named {args.workflow_name!r}")
            return 3

        dispatched = services.dispatcher.dispatch(
            matches[0].id, args.organization, "example", json.loads(args.input)
        )
        if not dispatched.ok:
            print(f"Dispatch failed: {dispatched.error}")
            return 4

        result = services.reconciler.reconcile(
            dispatched.execution_id,
            settings.reconcile_max_attempts,
            settings.reconcile_interval_ms,
        )
        print(f"Execution {dispatched.execution_id}: {result.status.value}")
        if result.error:
            print(f"  error: {result.error}")
        return 0 if result.ok else 4
    except BridgeError as exc:
        print(str(exc))
        return 2
    finally:
        services.close()


if __name__ == "__main__":
    raise SystemExit(main())
