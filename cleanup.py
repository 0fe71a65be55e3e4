#!/usr/bin/env python3
"""Remove every AWS resource of an application, without the CDK app.

Usage: ``python cleanup.py <slug> [app_env]``. Prints the per-type counts
and exits non-zero while anything is left behind (retry-later or fatal).
"""
import argparse
import json
import sys
from typing import Optional, Sequence

from common.log import logger
from teardown.aws_targets import teardown


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("slug", help="Slugified application name")
    parser.add_argument("app_env", nargs="?", default=None, help="Limit to one environment")
    args = parser.parse_args(argv)

    report = teardown(args.slug, app_env=args.app_env)
    print(json.dumps(report.counts(), indent=2, sort_keys=True))
    if not report.complete:
        logger.warning("Teardown incomplete, run it again later", slug=args.slug)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
