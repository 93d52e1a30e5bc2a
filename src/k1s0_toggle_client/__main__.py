"""dump-features: トグル定義を 1 回取得して JSON で出力する"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any

from .config import ToggleClientConfig, load_config
from .exceptions import ToggleClientError
from .models import ToggleSnapshot
from .transport import HttpTransport


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="k1s0-toggle-client",
        description="Fetch feature toggle definitions once and print them as JSON",
    )
    parser.add_argument("--config", help="YAML config file (overrides all other options)")
    parser.add_argument("--api-url", help="API base URL (env: TOGGLE_API_URL)")
    parser.add_argument("--app-name", help="Application name (env: TOGGLE_APP_NAME)")
    parser.add_argument("--instance-id", help="Instance id (env: TOGGLE_INSTANCE_ID)")
    parser.add_argument("--secret", help="Client secret (env: TOGGLE_CLIENT_SECRET)")
    return parser


def resolve_config(args: argparse.Namespace) -> ToggleClientConfig:
    if args.config:
        return load_config(Path(args.config))
    env = dict(os.environ)
    overrides = {
        "TOGGLE_API_URL": args.api_url,
        "TOGGLE_APP_NAME": args.app_name,
        "TOGGLE_INSTANCE_ID": args.instance_id,
        "TOGGLE_CLIENT_SECRET": args.secret,
    }
    env.update({name: value for name, value in overrides.items() if value})
    return ToggleClientConfig.from_env(env)


async def dump_features(config: ToggleClientConfig) -> dict[str, Any]:
    result = await HttpTransport(config).fetch_toggles(None)
    snapshot = ToggleSnapshot.from_document(result.document, revision=result.revision)
    return snapshot.to_document()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = resolve_config(args)
        document = asyncio.run(dump_features(config))
    except ToggleClientError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    json.dump(document, sys.stdout, indent=2, ensure_ascii=False)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
