"""Lambda@Edge origin request handler for the documentation site.

Replicated functions cannot carry layers, so this module sticks to the
standard library.
"""
import re
from typing import Any

SUFFIX = ".html"
SUFFIXLESS = re.compile(r"/[^/.]+$")
TRAILING_SLASH = re.compile(r".+/$")


def rewrite_uri(uri: str) -> str:
    if uri == "/":
        return "/index.html"
    if SUFFIXLESS.search(uri):
        return uri + SUFFIX
    if TRAILING_SLASH.match(uri):
        return uri[:-1] + SUFFIX
    return uri


def handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    request = event["Records"][0]["cf"]["request"]
    request["uri"] = rewrite_uri(request["uri"])
    return request
