import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from agent_gateway.app_container import build_container
from agent_gateway.config import GatewayConfig, apply_env_defaults, load_config, load_env_file
from agent_gateway.domain.contracts import ExecutionRequest
from agent_gateway.domain.operations import OperationType
from agent_gateway.errors import ConfigurationError
from agent_gateway.services.credentials import CredentialResolver


def _configure_logging(level: str) -> None:
    level = (level or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _print_config(config: GatewayConfig) -> None:
    credentials = CredentialResolver(secrets_dir=config.secrets_dir)
    print(f"Bot username: {config.bot_username}")
    print(f"Image: {config.image}")
    print(f"Sessions dir: {config.sessions_dir}")
    print(f"Retention days: {config.retention_days}")
    print(f"Container lifetime ms: {config.container_lifetime_ms}")
    print(f"Privileged: {'yes' if config.privileged else 'no'}")
    print(f"Test mode: {'yes' if config.test_mode else 'no'}")
    for name in ("GITHUB_TOKEN", "ANTHROPIC_API_KEY", "CLAUDE_API_SECRET"):
        print(f"{name} present: {'yes' if credentials.resolve(name) else 'no'}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Containerized assistant session gateway")
    parser.add_argument("--host", default="0.0.0.0", help="HTTP bind host")
    parser.add_argument("--port", type=int, default=int(os.environ.get("PORT", "8082")), help="HTTP bind port")
    parser.add_argument("--log-level", default=os.environ.get("LOG_LEVEL", "INFO"))
    parser.add_argument("--env-file", default=".env", help="Optional .env file; existing env vars win")
    parser.add_argument("--print-config", action="store_true", help="Print active config summary")
    parser.add_argument("--list-sessions", action="store_true", help="List stored sessions and exit")
    parser.add_argument("--cleanup-sessions", action="store_true", help="Delete expired sessions and exit")
    parser.add_argument("--show-prompt", action="store_true", help="Print the prompt for a command and exit")
    parser.add_argument("--operation-type", default=OperationType.DEFAULT.value)
    parser.add_argument("--repo", default=None, help="owner/name")
    parser.add_argument("--issue", type=int, default=None)
    parser.add_argument("--pr", action="store_true", help="Target is a pull request")
    parser.add_argument("--branch", default=None)
    parser.add_argument("--command", default="", help="Command text for --show-prompt")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args.log_level)
    apply_env_defaults(load_env_file(Path(args.env_file).expanduser()))

    try:
        config = load_config()
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    if args.print_config:
        _print_config(config)
        return 0

    container = build_container(config)

    if args.list_sessions:
        for meta in container.store.list_sessions():
            print(f"{meta.id}  {meta.timestamp}  {meta.operation_type or '-'}  {meta.repo_full_name or '-'}")
        return 0

    if args.cleanup_sessions:
        result = container.retention.apply()
        print(f"Pruned {result.pruned_old} session(s)")
        return 0

    if args.show_prompt:
        try:
            operation_type = OperationType.parse(args.operation_type)
        except ValueError as exc:
            print(str(exc), file=sys.stderr)
            return 2
        request = ExecutionRequest(
            command=args.command,
            operation_type=operation_type,
            repo_full_name=args.repo,
            issue_number=args.issue,
            is_pull_request=args.pr,
            branch_name=args.branch,
        )
        print(container.orchestrator.generate_prompt(request))
        return 0

    from agent_gateway.http_api.app import create_app
    import uvicorn

    app = create_app(container)
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level.lower())
    return 0


if __name__ == "__main__":
    sys.exit(main())
