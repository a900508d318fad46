#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import inspect
import logging
import os
from pathlib import Path
from typing import List, Optional, Tuple

import httpx

from oidc_rp.api.services.discovery import ProviderConfigResolver
from oidc_rp.errors import ConfigError
from oidc_rp.settings import load_settings

logger = logging.getLogger(__name__)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]
DOTENV_OPT_OUT = {"1", "true", "yes", "on"}


def _parse_env_line(raw_line: str) -> Optional[Tuple[str, str]]:
    line = raw_line.strip()
    if line.startswith("export "):
        line = line[len("export ") :].lstrip()
    if not line or line.startswith("#"):
        return None
    key, sep, value = line.partition("=")
    key, value = key.strip(), value.strip()
    if not sep or not key:
        return None
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
        value = value[1:-1]
    return key, value


def _load_dotenv(path: Path) -> int:
    """Copy ``KEY=value`` pairs from ``path`` into ``os.environ``.

    Variables already set in the environment win. Returns the number added.
    """
    if not path.is_file():
        return 0
    loaded = 0
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        parsed = _parse_env_line(raw_line)
        if parsed is None or parsed[0] in os.environ:
            continue
        key, value = parsed
        os.environ[key] = value
        loaded += 1
    return loaded


def _cmd_serve(ns: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run(
        "oidc_rp.api.main:app",
        host=ns.host,
        port=ns.port,
        log_level=ns.log_level.lower(),
    )
    return 0


async def _cmd_check_config(_ns: argparse.Namespace) -> int:
    try:
        settings = load_settings()
        async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
            config = await ProviderConfigResolver(settings, client).resolve()
    except ConfigError as exc:
        logger.error("Configuration invalid: %s", exc)
        return 1

    endpoints = config.endpoints
    print(f"issuer:          {config.issuer}")
    print(f"client_id:       {config.client_id}")
    print(f"redirect_uri:    {config.redirect_uri}")
    print(f"scopes:          {' '.join(config.scopes)}")
    print(f"pkce:            {'on' if config.pkce_enabled else 'off'}")
    print(f"userinfo_policy: {config.userinfo_policy.value}")
    print(f"authorization:   {endpoints.authorization}")
    print(f"token:           {endpoints.token}")
    print(f"jwks:            {endpoints.jwks}")
    print(f"userinfo:        {endpoints.userinfo or '-'}")
    print(f"logout:          {endpoints.logout or '-'}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="oidc-rp", description="OpenID Connect relying party."
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        choices=LOG_LEVELS,
        type=str.upper,
        help="Logging level (default: INFO).",
    )
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the web application.")
    serve.add_argument("--host", default=os.getenv("HOST", "127.0.0.1"))
    serve.add_argument("--port", type=int, default=int(os.getenv("PORT", "8000")))
    serve.set_defaults(func=_cmd_serve)

    check = sub.add_parser(
        "check-config", help="Resolve the provider configuration and print it."
    )
    check.set_defaults(func=_cmd_check_config)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    if os.getenv("DISABLE_DOTENV", "").strip().lower() not in DOTENV_OPT_OUT:
        _load_dotenv(Path.cwd() / ".env")

    parser = build_parser()
    ns = parser.parse_args(argv)

    level = getattr(logging, ns.log_level, logging.INFO)
    logging.basicConfig(
        level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    func = getattr(ns, "func", None)
    if func is None:
        parser.print_help()
        return 2
    if inspect.iscoroutinefunction(func):
        return asyncio.run(func(ns))
    return int(func(ns))


if __name__ == "__main__":
    raise SystemExit(main())
