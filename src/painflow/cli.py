"""CLI entrypoint for painflow."""

import argparse
import json
import logging
import os
import sys
import time
from concurrent.futures import Future, wait
from pathlib import Path

import httpx

from painflow import __version__
from painflow.commands import (
    create_flow,
    delete_cluster,
    delete_cluster_member,
    delete_flow,
    delete_item,
    edit_cluster,
    get_status,
    list_clusters,
    list_flows,
    merge_clusters,
    request_cancel,
)
from painflow.config import Settings
from painflow.control import RunController
from painflow.db import SessionFactory, create_session_factory, init_database, session_scope
from painflow.errors import (
    AnalysisInternalError,
    AnalysisSetupError,
    LLMUnavailableError,
    NoActiveAnalysisError,
    PreconditionError,
)
from painflow.ingest import ingest_items, ingest_paste
from painflow.io import ItemsDatasetError, load_items_jsonl, validate_items_jsonl
from painflow.models import OpenAICompatibleJsonClient
from painflow.pipeline import AnalysisOrchestrator, AnalysisOutcome
from painflow.schemas import AnalysisMode, AnalysisProgress, AnalysisStatus

logger = logging.getLogger(__name__)

EXIT_CANCELED = 2


def _format_duration(seconds: float) -> str:
    if seconds < 0 or not (seconds < float("inf")):
        return "--:--"
    total = int(seconds)
    minutes, secs = divmod(total, 60)
    hours, minutes = divmod(minutes, 60)
    if hours > 0:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


class _EtaProgressPrinter:
    """Print one line per completed batch with elapsed time and ETA."""

    def __init__(self, label: str) -> None:
        self._label = label
        self._started_at = time.perf_counter()
        self._last_batch = -1

    def __call__(self, progress: AnalysisProgress) -> None:
        if progress.batch == self._last_batch:
            return
        total = max(progress.total_batches, 1)
        done = max(0, min(progress.batch, total))
        elapsed = max(0.0, time.perf_counter() - self._started_at)

        eta = float("inf")
        if done > 0 and elapsed > 0:
            eta = (total - done) / (done / elapsed)

        print(
            "    "
            f"{self._label}: batch {done}/{total} ({done / total:.0%}) "
            f"| items {progress.items_processed}/{progress.total_items} "
            f"| elapsed {_format_duration(elapsed)} | ETA {_format_duration(eta)}"
        )
        self._last_batch = progress.batch


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="painflow",
        description="Cluster pasted or scraped user complaints into pain points with a local LLM",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config",
        type=str,
        default="configs/default.yaml",
        help="Path to YAML config file (default: configs/default.yaml)",
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("info", help="Show current configuration")
    doctor_parser = sub.add_parser(
        "doctor",
        help="Run environment and database diagnostics.",
    )
    doctor_parser.add_argument(
        "--network-check",
        action="store_true",
        help="Probe the LLM models endpoint.",
    )
    sub.add_parser("init-db", help="Create database tables if they do not exist.")

    create_parser = sub.add_parser("create-flow", help="Create a new flow.")
    create_parser.add_argument("--name", type=str, required=True)
    create_parser.add_argument("--description", type=str, default=None)

    list_flows_parser = sub.add_parser("list-flows", help="List flows, newest first.")
    list_flows_parser.add_argument("--json", action="store_true", help="Print JSON.")

    delete_flow_parser = sub.add_parser("delete-flow", help="Delete a flow and all its data.")
    delete_flow_parser.add_argument("--flow-id", type=str, required=True)

    paste_parser = sub.add_parser(
        "ingest-paste",
        help="Add pasted text to a flow; blank lines separate items.",
    )
    paste_parser.add_argument("--flow-id", type=str, required=True)
    paste_source = paste_parser.add_mutually_exclusive_group(required=True)
    paste_source.add_argument("--text", type=str, default=None)
    paste_source.add_argument("--file", type=str, default=None, help="Read pasted text from file.")

    jsonl_parser = sub.add_parser("ingest-jsonl", help="Add normalized items from a JSONL file.")
    jsonl_parser.add_argument("--flow-id", type=str, required=True)
    jsonl_parser.add_argument("--input", type=str, required=True)

    validate_parser = sub.add_parser(
        "validate-items",
        help="Validate an items JSONL file without importing it.",
    )
    validate_parser.add_argument("--input", type=str, required=True)
    validate_parser.add_argument(
        "--max-errors",
        type=int,
        default=100,
        help="Maximum detailed line-level errors to retain in report output.",
    )
    validate_parser.add_argument("--json", action="store_true", help="Print the full report as JSON.")

    analyze_parser = sub.add_parser(
        "analyze",
        help="Run batch analysis for a flow (Ctrl-C requests cancellation).",
    )
    analyze_parser.add_argument("--flow-id", type=str, required=True)
    analyze_parser.add_argument(
        "--mode",
        type=str,
        choices=[mode.value for mode in AnalysisMode],
        default=AnalysisMode.FULL.value,
        help="full replaces existing clusters; refine folds new findings into them.",
    )

    status_parser = sub.add_parser("status", help="Show analysis status for a flow.")
    status_parser.add_argument("--flow-id", type=str, required=True)
    status_parser.add_argument("--json", action="store_true", help="Print JSON.")

    clusters_parser = sub.add_parser("list-clusters", help="List clusters of a flow.")
    clusters_parser.add_argument("--flow-id", type=str, required=True)
    clusters_parser.add_argument("--json", action="store_true", help="Print JSON.")

    edit_parser = sub.add_parser("edit-cluster", help="Edit a cluster's label or summary.")
    edit_parser.add_argument("--flow-id", type=str, required=True)
    edit_parser.add_argument("--cluster-id", type=str, required=True)
    edit_parser.add_argument("--label", type=str, default=None)
    edit_parser.add_argument("--summary", type=str, default=None)

    merge_parser = sub.add_parser("merge-clusters", help="Merge a source cluster into a target.")
    merge_parser.add_argument("--flow-id", type=str, required=True)
    merge_parser.add_argument("--source-id", type=str, required=True)
    merge_parser.add_argument("--target-id", type=str, required=True)

    delete_cluster_parser = sub.add_parser("delete-cluster", help="Delete one cluster.")
    delete_cluster_parser.add_argument("--flow-id", type=str, required=True)
    delete_cluster_parser.add_argument("--cluster-id", type=str, required=True)

    delete_member_parser = sub.add_parser("delete-member", help="Remove an item from a cluster.")
    delete_member_parser.add_argument("--flow-id", type=str, required=True)
    delete_member_parser.add_argument("--cluster-id", type=str, required=True)
    delete_member_parser.add_argument("--member-id", type=str, required=True)

    delete_item_parser = sub.add_parser("delete-item", help="Delete one source item.")
    delete_item_parser.add_argument("--flow-id", type=str, required=True)
    delete_item_parser.add_argument("--item-id", type=str, required=True)

    return parser


def _print_json(payload: dict | list[dict]) -> None:
    """Pretty-print JSON payload."""

    print(json.dumps(payload, indent=2, ensure_ascii=True))


def _configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _open_database(settings: Settings) -> SessionFactory:
    factory = create_session_factory(settings)
    init_database(factory)
    return factory


def _build_orchestrator(
    settings: Settings,
    session_factory: SessionFactory,
    controller: RunController,
) -> AnalysisOrchestrator:
    llm_client = OpenAICompatibleJsonClient(
        base_url=settings.resolved_llm_api_base(),
        model=settings.llm_model,
        api_key=settings.llm_api_key,
        temperature=settings.llm_temperature,
        timeout_seconds=settings.llm_request_timeout_seconds,
        max_attempts=settings.llm_max_attempts,
        backoff_seconds=settings.llm_backoff_seconds,
    )
    return AnalysisOrchestrator(
        session_factory=session_factory,
        llm_client=llm_client,
        controller=controller,
        settings=settings,
        max_background_runs=1,
    )


def cmd_info(settings: Settings) -> None:
    print(f"painflow v{__version__}")
    print(f"  LLM base URL:     {settings.llm_base_url}")
    print(f"  LLM API root:     {settings.resolved_llm_api_base()}")
    print(f"  LLM model:        {settings.llm_model}")
    print(f"  LLM temp:         {settings.llm_temperature}")
    print(f"  Request timeout:  {settings.llm_request_timeout_seconds:g}s")
    print(f"  Health timeout:   {settings.llm_health_timeout_seconds:g}s")
    print(f"  LLM attempts:     {settings.llm_max_attempts}")
    print(f"  Batch size:       {settings.analysis_batch_size}")
    print(f"  Item char limit:  {settings.item_char_limit}")
    print(f"  History limit:    {settings.status_history_limit}")
    print(f"  Database URL:     {settings.database_url}")
    print(f"  Environment:      {settings.environment}")
    print(f"  Log level:        {settings.log_level}")


def _check_write_access(directory: Path) -> tuple[bool, str]:
    """Verify write permission for one directory via temp file probe."""

    try:
        directory.mkdir(parents=True, exist_ok=True)
        probe = directory / f".doctor_write_probe_{os.getpid()}"
        probe.write_text("ok", encoding="utf-8")
        probe.unlink()
    except OSError as exc:
        return False, str(exc)
    return True, "writable"


def _probe_endpoint(url: str, *, timeout_seconds: float = 5.0) -> tuple[bool, str]:
    """Best-effort network reachability probe for one URL."""

    try:
        response = httpx.get(url, timeout=timeout_seconds, follow_redirects=True)
    except httpx.HTTPError as exc:
        return False, str(exc)
    return response.is_success, f"http_status={response.status_code}"


def cmd_doctor(settings: Settings, args: argparse.Namespace) -> None:
    """Run local environment diagnostics."""

    checks: list[dict[str, str]] = []

    sqlite_path = settings.sqlite_path()
    if sqlite_path is not None:
        write_ok, write_detail = _check_write_access(sqlite_path.parent)
        checks.append(
            {
                "name": "database_dir_writable",
                "status": "pass" if write_ok else "fail",
                "detail": f"{sqlite_path.parent} ({write_detail})",
            }
        )

    model = settings.llm_model.strip()
    checks.append(
        {
            "name": "llm_model_configured",
            "status": "pass" if model else "fail",
            "detail": model or "(missing)",
        }
    )
    checks.append(
        {
            "name": "batch_size",
            "status": "pass" if settings.analysis_batch_size <= 200 else "warn",
            "detail": str(settings.analysis_batch_size),
        }
    )

    if args.network_check:
        models_url = settings.resolved_models_url()
        llm_ok, llm_detail = _probe_endpoint(
            models_url,
            timeout_seconds=settings.llm_health_timeout_seconds,
        )
        checks.append(
            {
                "name": "llm_endpoint_reachable",
                "status": "pass" if llm_ok else "warn",
                "detail": f"{models_url} ({llm_detail})",
            }
        )

    print("painflow doctor")
    for item in checks:
        print(f"  - {item['name']}: {item['status']} ({item['detail']})")

    fail_count = sum(1 for item in checks if item["status"] == "fail")
    warn_count = sum(1 for item in checks if item["status"] == "warn")
    print("")
    print(f"Doctor result: {fail_count} fail, {warn_count} warn")
    if fail_count > 0:
        sys.exit(1)


def cmd_init_db(settings: Settings) -> None:
    _open_database(settings)
    print(f"Database ready: {settings.database_url}")


def cmd_create_flow(factory: SessionFactory, args: argparse.Namespace) -> None:
    with session_scope(factory) as session:
        flow = create_flow(session, args.name, args.description)
    print(f"Created flow {flow.id} ({flow.name})")


def cmd_list_flows(factory: SessionFactory, args: argparse.Namespace) -> None:
    with session_scope(factory) as session:
        flows = list_flows(session)
    if args.json:
        _print_json([flow.model_dump(mode="json") for flow in flows])
        return

    print(f"Flows: {len(flows)}")
    for flow in flows:
        print(
            "  - "
            f"{flow.id} | {flow.name} | status={flow.analysis_status.value} | "
            f"items={flow.items_count} | clusters={flow.clusters_count}"
        )


def cmd_delete_flow(factory: SessionFactory, args: argparse.Namespace) -> None:
    with session_scope(factory) as session:
        delete_flow(session, args.flow_id)
    print(f"Deleted flow {args.flow_id}")


def cmd_ingest_paste(factory: SessionFactory, args: argparse.Namespace) -> None:
    if args.file:
        text = Path(args.file).read_text(encoding="utf-8")
    else:
        text = args.text
    with session_scope(factory) as session:
        items = ingest_paste(session, args.flow_id, text)
        count = len(items)
    print(f"Added {count} items to flow {args.flow_id}")


def cmd_ingest_jsonl(factory: SessionFactory, args: argparse.Namespace) -> None:
    try:
        items = load_items_jsonl(args.input)
    except ItemsDatasetError as exc:
        print(f"Item import failed: {exc}")
        sys.exit(1)
    with session_scope(factory) as session:
        rows = ingest_items(session, args.flow_id, items)
        count = len(rows)
    print(f"Added {count} items to flow {args.flow_id}")


def cmd_validate_items(args: argparse.Namespace) -> None:
    """Validate an items JSONL file and print a report."""

    try:
        report = validate_items_jsonl(args.input, max_errors=args.max_errors)
    except ItemsDatasetError as exc:
        print(f"Input validation failed: {exc}")
        sys.exit(1)
    except ValueError as exc:
        print(f"Input validation configuration error: {exc}")
        sys.exit(1)

    if args.json:
        _print_json(report.to_dict())
    else:
        print("Input validation complete.")
        print(f"  Schema version:  {report.schema_version}")
        print(f"  Input path:      {report.input_path}")
        print(f"  Total lines:     {report.total_lines}")
        print(f"  Non-empty lines: {report.non_empty_lines}")
        print(f"  Valid items:     {report.valid_item_count}")
        print(f"  Invalid lines:   {report.invalid_line_count}")
        print(f"  Duplicate IDs:   {report.duplicate_reddit_id_count}")
        if report.errors:
            print("  Sample errors:")
            for item in report.errors[:5]:
                print(f"    - line {item.line_number} [{item.code}] {item.message}")
            if report.dropped_error_count > 0:
                print(
                    "    - "
                    f"... {report.dropped_error_count} additional errors omitted "
                    f"(max-errors={args.max_errors})."
                )

    if not report.is_valid:
        sys.exit(1)


def _wait_for_outcome(
    future: Future[AnalysisOutcome],
    factory: SessionFactory,
    controller: RunController,
    flow_id: str,
) -> AnalysisOutcome:
    cancel_sent = False
    while True:
        try:
            done, _ = wait([future], timeout=0.5)
            if done:
                return future.result()
        except KeyboardInterrupt:
            if cancel_sent:
                raise
            print("    Cancel requested; stopping after the current batch (Ctrl-C again to abort).")
            try:
                with session_scope(factory) as session:
                    request_cancel(session, controller, flow_id)
            except NoActiveAnalysisError:
                # The run finished before the cancel landed.
                logger.info("Run for flow %s already finished; waiting for its outcome", flow_id)
            cancel_sent = True


def _print_outcome(outcome: AnalysisOutcome) -> None:
    print("")
    print(f"Analysis {outcome.status.value}.")
    print(f"  Items analyzed:     {outcome.items_analyzed}")
    print(f"  Batches processed:  {outcome.batches_processed}")
    print(f"  Duration:           {_format_duration(outcome.duration_ms / 1000)}")
    if outcome.skipped_batches:
        skipped = ", ".join(str(index + 1) for index in outcome.skipped_batches)
        print(f"  Skipped batches:    {skipped}")
    if outcome.reconciliation is not None:
        result = outcome.reconciliation
        print(f"  Clusters created:   {len(result.created_cluster_ids)}")
        print(f"  Clusters updated:   {len(result.updated_cluster_ids)}")
        print(f"  Members linked:     {result.members_created}")
    if outcome.error_message:
        print(f"  Error:              {outcome.error_message}")


def cmd_analyze(settings: Settings, factory: SessionFactory, args: argparse.Namespace) -> None:
    controller = RunController()
    orchestrator = _build_orchestrator(settings, factory, controller)
    try:
        try:
            future = orchestrator.submit(
                args.flow_id,
                AnalysisMode(args.mode),
                progress_callback=_EtaProgressPrinter("analyze"),
            )
        except LLMUnavailableError as exc:
            print(f"Analysis not started: {exc}")
            sys.exit(1)
        except AnalysisSetupError as exc:
            print(f"Analysis not started: {exc}")
            sys.exit(1)

        print(f"Analysis started for flow {args.flow_id} (mode={args.mode})")
        try:
            outcome = _wait_for_outcome(future, factory, controller, args.flow_id)
        except AnalysisInternalError as exc:
            print(f"Analysis failed: {exc}")
            if exc.details:
                print(f"  Details: {exc.details}")
            sys.exit(1)
    finally:
        orchestrator.shutdown(wait=True)

    _print_outcome(outcome)
    if outcome.status is AnalysisStatus.CANCELED:
        sys.exit(EXIT_CANCELED)
    if not outcome.succeeded:
        sys.exit(1)


def cmd_status(settings: Settings, factory: SessionFactory, args: argparse.Namespace) -> None:
    with session_scope(factory) as session:
        snapshot = get_status(session, args.flow_id, history_limit=settings.status_history_limit)
    if args.json:
        _print_json(snapshot.model_dump(mode="json", by_alias=True))
        return

    print(f"Flow {snapshot.flow_id}")
    print(f"  Status:             {snapshot.status.value}")
    if snapshot.progress is not None:
        progress = snapshot.progress
        print(
            f"  Progress:           batch {progress.batch}/{progress.total_batches}, "
            f"items {progress.items_processed}/{progress.total_items}"
        )
    if snapshot.error:
        print(f"  Error:              {snapshot.error}")
    print(f"  Last analyzed:      {snapshot.last_analyzed_at or '(never)'}")
    print(f"  Items:              {snapshot.items_count}")
    print(f"  New data available: {snapshot.new_data_available}")
    if snapshot.history:
        print("  Recent runs:")
        for run in snapshot.history:
            print(
                "    - "
                f"{run.id} | {run.status.value} | started={run.started_at} | "
                f"items={run.items_analyzed} | batches={run.batches_processed}"
            )


def cmd_list_clusters(factory: SessionFactory, args: argparse.Namespace) -> None:
    with session_scope(factory) as session:
        clusters = list_clusters(session, args.flow_id)
    if args.json:
        _print_json([cluster.model_dump(mode="json") for cluster in clusters])
        return

    print(f"Clusters: {len(clusters)}")
    for cluster in clusters:
        total = "-" if cluster.total_score is None else f"{cluster.total_score:.2f}"
        print(f"  - {cluster.id} | {cluster.label} | total={total} | members={cluster.member_count}")
        if cluster.tags:
            print(f"      tags: {', '.join(cluster.tags)}")


def cmd_edit_cluster(factory: SessionFactory, args: argparse.Namespace) -> None:
    with session_scope(factory) as session:
        cluster = edit_cluster(
            session,
            args.flow_id,
            args.cluster_id,
            label=args.label,
            summary=args.summary,
        )
    print(f"Updated cluster {cluster.id} ({cluster.label})")


def cmd_merge_clusters(factory: SessionFactory, args: argparse.Namespace) -> None:
    with session_scope(factory) as session:
        cluster = merge_clusters(session, args.flow_id, args.source_id, args.target_id)
    print(f"Merged {args.source_id} into {cluster.id} ({cluster.member_count} members)")


def cmd_delete_cluster(factory: SessionFactory, args: argparse.Namespace) -> None:
    with session_scope(factory) as session:
        delete_cluster(session, args.flow_id, args.cluster_id)
    print(f"Deleted cluster {args.cluster_id}")


def cmd_delete_member(factory: SessionFactory, args: argparse.Namespace) -> None:
    with session_scope(factory) as session:
        delete_cluster_member(session, args.flow_id, args.cluster_id, args.member_id)
    print(f"Removed member {args.member_id} from cluster {args.cluster_id}")


def cmd_delete_item(factory: SessionFactory, args: argparse.Namespace) -> None:
    with session_scope(factory) as session:
        delete_item(session, args.flow_id, args.item_id)
    print(f"Deleted item {args.item_id}")


_DATABASE_COMMANDS = {
    "create-flow": cmd_create_flow,
    "list-flows": cmd_list_flows,
    "delete-flow": cmd_delete_flow,
    "ingest-paste": cmd_ingest_paste,
    "ingest-jsonl": cmd_ingest_jsonl,
    "list-clusters": cmd_list_clusters,
    "edit-cluster": cmd_edit_cluster,
    "merge-clusters": cmd_merge_clusters,
    "delete-cluster": cmd_delete_cluster,
    "delete-member": cmd_delete_member,
    "delete-item": cmd_delete_item,
}


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = Settings.from_yaml(args.config)
    _configure_logging(settings)

    if args.command == "info":
        cmd_info(settings)
        return
    if args.command == "doctor":
        cmd_doctor(settings, args)
        return
    if args.command == "validate-items":
        cmd_validate_items(args)
        return
    if args.command == "init-db":
        cmd_init_db(settings)
        return
    if args.command is None:
        parser.print_help()
        sys.exit(0)

    factory = _open_database(settings)
    try:
        if args.command == "analyze":
            cmd_analyze(settings, factory, args)
        elif args.command == "status":
            cmd_status(settings, factory, args)
        else:
            _DATABASE_COMMANDS[args.command](factory, args)
    except PreconditionError as exc:
        print(f"Error [{exc.code}]: {exc}")
        sys.exit(1)


if __name__ == "__main__":
    main()
