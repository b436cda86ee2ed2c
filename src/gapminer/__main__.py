"""GapMiner key service entry point.

Usage:
  python -m gapminer serve [--host HOST] [--port PORT]
  python -m gapminer create-key OWNER NAME [--scope SCOPE ...] [--expires-in-days N]
"""

import argparse
import asyncio
import logging

from gapminer import __version__
from gapminer.config import get_settings
from gapminer.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def run_serve(host: str, port: int) -> None:
    import uvicorn

    from gapminer.api.app import create_app

    uvicorn.run(create_app(), host=host, port=port, log_config=None)


async def run_create_key(owner: str, name: str, scopes: list[str] | None, days: int | None) -> int:
    from gapminer.keys.manager import APIKeyManager
    from gapminer.keys.store import FileKeyStore
    from gapminer.security.audit import AuditLogger

    settings = get_settings()
    audit = AuditLogger(settings.config_dir / "audit.jsonl") if settings.audit_enabled else None
    manager = APIKeyManager(
        FileKeyStore(settings.config_dir),
        audit=audit,
        default_rate_limit=settings.api_key_default_rate_limit,
    )
    try:
        issued = await manager.create(
            owner_id=owner,
            name=name,
            scopes=scopes or list(settings.api_key_default_scopes),
            expires_in_days=days,
        )
    except ValueError as e:
        logger.error("Could not create key: %s", e)
        return 1
    print(issued.plaintext)
    logger.info("Key %s created; store the value above, it is not shown again", issued.credential.id)
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(prog="gapminer", description="GapMiner API key service")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the API server")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    create = sub.add_parser("create-key", help="Issue an API key and print it once")
    create.add_argument("owner")
    create.add_argument("name")
    create.add_argument("--scope", action="append", dest="scopes")
    create.add_argument("--expires-in-days", type=int, default=None)

    args = parser.parse_args()
    setup_logging(level=get_settings().log_level)

    if args.command == "serve":
        run_serve(args.host, args.port)
    else:
        raise SystemExit(
            asyncio.run(run_create_key(args.owner, args.name, args.scopes, args.expires_in_days))
        )


if __name__ == "__main__":
    main()
