"""Command-line entry point: collect one context snapshot and print it.

Useful for checking permissions and window selection without a dictation
front end attached.

    $ ambient-context --delay 3
    $ ambient-context --json --include-image > snapshot.json
    $ ambient-context --init-config
"""

import argparse
import getpass
import json
import logging
import sys
import time
from typing import Optional

from .config import ConfigManager
from .credentials import CredentialStore
from .pipeline import ContextCollector


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Collect the ambient context snapshot used for dictation")
    parser.add_argument("--config", type=str, default=None,
                        help=f"Config file path (default: {ConfigManager.DEFAULT_PATH})")
    parser.add_argument("--delay", type=float, default=0.0,
                        help="Seconds to wait before collecting, to switch windows (default: 0)")
    parser.add_argument("--json", action="store_true", help="Print the snapshot as JSON")
    parser.add_argument("--include-image", action="store_true",
                        help="Include the screenshot data URI in JSON output")
    parser.add_argument("--init-config", action="store_true",
                        help="Write the default config file and exit")
    parser.add_argument("--set-api-key", action="store_true",
                        help="Prompt for the inference API key, store it and exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config_mgr = ConfigManager(args.config)

    if args.init_config:
        created = config_mgr.create_default_file()
        print(f"{'Created' if created else 'Kept existing'} config at {config_mgr.path}")
        return 0

    if args.set_api_key:
        store = CredentialStore.from_config(config_mgr.config.credentials)
        key = getpass.getpass("API key: ").strip()
        if not key:
            print("No key entered; stored key left unchanged", file=sys.stderr)
            return 1
        store.save(key, store.account)
        print(f"Saved API key to {store.path}")
        return 0

    if args.delay > 0:
        time.sleep(args.delay)

    snapshot = ContextCollector(config_mgr.config).collect_context_sync()

    if args.json:
        print(json.dumps(snapshot.to_dict(include_image=args.include_image), indent=2))
    else:
        print(snapshot.context_summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())
