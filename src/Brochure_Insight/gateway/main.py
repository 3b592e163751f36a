"""Command line entry point for the gateway.

Example:
-------
    >>> brochure-insight --serve --port 8000
    >>> brochure-insight --export-openapi openapi.yaml
"""

from __future__ import annotations

import argparse
from pathlib import Path

import uvicorn
from yaml import safe_dump

from .app import create_app


def export_openapi(target: Path | None) -> str:
    document = safe_dump(create_app().openapi(), sort_keys=False)
    if target is not None:
        target.write_text(document, encoding="utf-8")
    return document


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Brochure insight gateway")
    parser.add_argument("--serve", action="store_true", help="Run the HTTP server")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--export-openapi", nargs="?", const="-", metavar="PATH")
    args = parser.parse_args(argv)

    if args.export_openapi:
        target = None if args.export_openapi == "-" else Path(args.export_openapi)
        document = export_openapi(target)
        if target is None:
            print(document)
        return
    if args.serve:
        uvicorn.run(create_app(), host=args.host, port=args.port)
        return
    parser.print_help()


if __name__ == "__main__":  # pragma: no cover
    main()
