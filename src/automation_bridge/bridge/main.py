"""CLI entrypoint for the bridge.

Exit codes are designed to be CI-friendly:
0 ok, 1 unexpected error, 2 configuration, 3 not found, 4 remote failure or timeout.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

from pydantic import ValidationError

from automation_bridge import __version__
from automation_bridge.bridge.config import BridgeSettings
from automation_bridge.bridge.errors import (
    IntegrationNotConfigured,
    NotFound,
    ReconcileTimeout,
    RemoteUnavailable,
)
from automation_bridge.bridge.logging import configure_logging
from automation_bridge.bridge.models import ExecutionStatus, Integration, TriggerSource
from automation_bridge.bridge.services import BridgeServices, build_services

logger = logging.getLogger(__name__)


def _parse_input(value: str | None) -> dict[str, Any]:
    if not value:
        return {}
    data = json.loads(value)
    if not isinstance(data, dict):
        raise ValueError("--input must be a JSON object")
    return data


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="automation-bridge",
        description="Mirror, run and reconcile workflows on a remote automation engine",
    )
    parser.add_argument("--version", action="version", version=f"automation-bridge {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("health", help="Check connectivity to the remote engine")

    add_integration = subparsers.add_parser(
        "add-integration", help="Register (or update) an integration for an organization"
    )
    add_integration.add_argument("--integration", required=True, help="Integration id")
    add_integration.add_argument("--organization", required=True, help="Organization id")
    add_integration.add_argument("--name", default="", help="Display name")
    add_integration.add_argument(
        "--inactive", action="store_true", help="Register the integration as disabled"
    )

    sync = subparsers.add_parser("sync", help="Mirror the remote workflow catalog")
    sync.add_argument("--integration", required=True, help="Integration id")
    sync.add_argument("--organization", required=True, help="Organization id")

    run = subparsers.add_parser("run", help="Dispatch a mirrored workflow")
    run.add_argument("--workflow", required=True, help="Local workflow id")
    run.add_argument("--organization", required=True, help="Organization id")
    run.add_argument("--user", default="cli", help="User recorded as the trigger")
    run.add_argument("--input", default=None, help="JSON object passed to the workflow")
    run.add_argument(
        "--source",
        choices=[s.value for s in TriggerSource],
        default=TriggerSource.MANUAL.value,
    )
    run.add_argument(
        "--wait", action="store_true", help="Reconcile inline until a terminal state"
    )

    reconcile = subparsers.add_parser("reconcile", help="Poll an execution until it finishes")
    reconcile.add_argument("--execution", required=True, help="Local execution id")
    reconcile.add_argument("--organization", default=None, help="Restrict to this organization")
    reconcile.add_argument(
        "--repoll", action="store_true", help="Poll again even if the execution timed out"
    )
    reconcile.add_argument("--max-attempts", type=int, default=None)
    reconcile.add_argument("--interval-ms", type=int, default=None)

    sweep = subparsers.add_parser(
        "sweep", help="Reconcile every running execution in the background pool"
    )
    sweep.add_argument(
        "--timeout-seconds",
        type=float,
        default=None,
        help="Give up waiting for the pool after this long",
    )

    serve = subparsers.add_parser("serve", help="Run the REST API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    return parser


def _print_json(payload: object) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _reconcile(
    services: BridgeServices, execution_id: str, args: argparse.Namespace, *, repoll: bool
) -> int:
    settings = services.settings
    max_attempts = getattr(args, "max_attempts", None)
    interval_ms = getattr(args, "interval_ms", None)
    result = services.reconciler.reconcile(
        execution_id,
        settings.reconcile_max_attempts if max_attempts is None else max_attempts,
        settings.reconcile_interval_ms if interval_ms is None else interval_ms,
        organization_id=getattr(args, "organization", None),
        repoll_timeout=repoll,
    )
    _print_json(
        {
            "execution_id": execution_id,
            "status": result.status.value,
            "output_data": result.output_data,
            "error": result.error,
        }
    )
    if result.status == ExecutionStatus.TIMEOUT:
        raise ReconcileTimeout(result.error or f"Execution {execution_id} did not finish")
    return 0 if result.ok else 4


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = BridgeSettings()
    except ValidationError as e:
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    if args.command == "serve":
        import uvicorn

        from automation_bridge.server.app import create_app

        uvicorn.run(create_app(settings), host=args.host, port=args.port)
        return 0

    services = build_services(settings)
    try:
        if args.command == "health":
            health = services.client.check_health()
            _print_json(
                {
                    "connected": health.connected,
                    "instance_url": health.instance_url,
                    "error": health.error,
                }
            )
            return 0 if health.connected else 4

        if args.command == "add-integration":
            integration = services.store.upsert_integration(
                Integration(
                    id=args.integration,
                    organization_id=args.organization,
                    name=args.name,
                    active=not args.inactive,
                )
            )
            print(f"Integration {integration.id} registered for {integration.organization_id}")
            return 0

        if args.command == "sync":
            result = services.synchronizer.sync(args.integration, args.organization)
            _print_json(
                {
                    "success": result.success,
                    "synced": result.synced,
                    "added": result.added,
                    "updated": result.updated,
                    "removed": result.removed,
                    "errors": result.errors,
                }
            )
            return 0 if result.success else 4

        if args.command == "run":
            dispatched = services.dispatcher.dispatch(
                args.workflow,
                args.organization,
                args.user,
                _parse_input(args.input),
                TriggerSource(args.source),
            )
            print(
                f"Execution {dispatched.execution_id} "
                f"remote={dispatched.remote_execution_id or '-'}"
                + (f" error={dispatched.error}" if dispatched.error else "")
            )
            if not dispatched.ok:
                return 4
            if args.wait:
                return _reconcile(services, dispatched.execution_id, args, repoll=False)
            return 0

        if args.command == "reconcile":
            return _reconcile(services, args.execution, args, repoll=args.repoll)

        if args.command == "sweep":
            worker = services.start_worker()
            try:
                queued = worker.sweep()
                print(f"Queued {queued} running execution(s)")
                finished = worker.wait(timeout=args.timeout_seconds)
            finally:
                worker.shutdown(wait=True)
            return 0 if finished else 4

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except IntegrationNotConfigured as e:
        logger.warning(str(e))
        print(str(e), file=sys.stderr)
        return 2

    except NotFound as e:
        logger.warning(str(e))
        print(str(e), file=sys.stderr)
        return 3

    except RemoteUnavailable as e:
        logger.error(str(e), extra={"status_code": e.status_code})
        print(str(e), file=sys.stderr)
        return 4

    except ReconcileTimeout as e:
        logger.warning(str(e))
        print(str(e), file=sys.stderr)
        return 4

    except Exception:
        logger.exception("Command failed")
        return 1

    finally:
        services.close()


if __name__ == "__main__":
    raise SystemExit(main())
