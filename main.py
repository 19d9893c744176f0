#!/usr/bin/env python3
"""datachat: command-line client.

Talks to the FastAPI backend over HTTP/SSE. Start the server first with
``python api_server.py``.

Usage:
    python main.py upload sales.csv [--name "Q3 sales"]
    python main.py list
    python main.py ask DATASET_ID "Which region sold the most?"
    python main.py ask DATASET_ID "..." --no-stream
    python main.py history DATASET_ID [--page 2 --page-size 10 | --all]
    python main.py --url http://host:9000 list
"""

import argparse
import json
import sys
from pathlib import Path

import requests

# ---- ANSI colors ----

_USE_COLOR = True


def _c(code: str, text: str) -> str:
    if not _USE_COLOR:
        return text
    return f"\033[{code}m{text}\033[0m"


def dim(text: str) -> str:
    return _c("2", text)


def cyan(text: str) -> str:
    return _c("36", text)


def green(text: str) -> str:
    return _c("32", text)


def red(text: str) -> str:
    return _c("31", text)


def bold(text: str) -> str:
    return _c("1", text)


# ---- SSE parsing ----

def iter_sse_events(response: requests.Response):
    """Parse SSE events from a streaming requests response.

    Yields (event_type, data_dict) tuples.
    """
    event_type = "message"
    data_lines = []

    for line in response.iter_lines(decode_unicode=True):
        if line is None:
            continue

        if line == "":
            # Empty line = end of event
            if data_lines:
                raw = "\n".join(data_lines)
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError:
                    data = {"raw": raw}
                yield event_type, data
            event_type = "message"
            data_lines = []
            continue

        if line.startswith("event:"):
            event_type = line[len("event:"):].strip()
        elif line.startswith("data:"):
            data_lines.append(line[len("data:"):].strip())


# ---- API helpers ----

class APIClient:
    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip("/")

    def _url(self, path: str) -> str:
        return f"{self.base_url}/api{path}"

    def upload(self, path: Path, display_name: str | None = None) -> dict:
        with open(path, "rb") as f:
            resp = requests.post(
                self._url("/datasets"),
                files={"file": (path.name, f)},
                data={"display_name": display_name} if display_name else None,
                timeout=300,
            )
        resp.raise_for_status()
        return resp.json()

    def list_datasets(self) -> list[dict]:
        resp = requests.get(self._url("/datasets"), timeout=10)
        resp.raise_for_status()
        return resp.json()

    def history(self, dataset_id: str, **params) -> dict:
        resp = requests.get(
            self._url(f"/datasets/{dataset_id}/history"), params=params, timeout=10
        )
        resp.raise_for_status()
        return resp.json()

    def ask(self, dataset_id: str, question: str) -> str:
        resp = requests.post(
            self._url(f"/datasets/{dataset_id}/chat"),
            params={"stream": "false"},
            json={"message": question},
            timeout=900,
        )
        resp.raise_for_status()
        return resp.json()["response"]

    def ask_stream(self, dataset_id: str, question: str):
        """Yield (event_type, frame) pairs as the server reasons."""
        with requests.post(
            self._url(f"/datasets/{dataset_id}/chat"),
            json={"message": question},
            stream=True,
            timeout=(10, 900),
        ) as resp:
            resp.raise_for_status()
            yield from iter_sse_events(resp)


def _detail(e: requests.HTTPError) -> str:
    try:
        return e.response.json().get("detail", str(e))
    except ValueError:
        return str(e)


# ---- Commands ----

def cmd_upload(client: APIClient, args) -> None:
    path = Path(args.file)
    result = client.upload(path, args.name)
    print(green(f"Uploaded {path.name} as dataset {result['dataset_id']}"))
    print(dim(f"  {result['row_count']} rows, {result['column_count']} columns"))
    print(dim(f"  columns: {', '.join(result['normalized_columns'])}"))


def cmd_list(client: APIClient, args) -> None:
    datasets = client.list_datasets()
    if not datasets:
        print(dim("No datasets yet. Upload one with: main.py upload FILE"))
        return
    for d in datasets:
        label = d.get("display_name") or d["name"]
        print(f"{cyan(d['id'])}  {bold(label)}  "
              + dim(f"{d['row_count']} rows, {d['column_count']} cols, {d['created_at']}"))


def cmd_ask(client: APIClient, args) -> None:
    if args.no_stream:
        print(client.ask(args.dataset_id, args.question))
        return
    for event_type, frame in client.ask_stream(args.dataset_id, args.question):
        if event_type == "reasoning":
            print(dim(f"  · {frame.get('content', '')}"))
        elif event_type == "response":
            print()
            print(frame.get("content", ""))


def _print_turns(turns: list[dict]) -> None:
    for t in turns:
        print(dim(f"[{t['created_at']}]"))
        print(f"{bold('You:')} {t['user_text']}")
        print(f"{bold('AI:')}  {t['agent_text']}")
        print()


def cmd_history(client: APIClient, args) -> None:
    if args.all:
        result = client.history(args.dataset_id, mode="all")
    elif args.page:
        result = client.history(
            args.dataset_id, mode="page", page=args.page, page_size=args.page_size
        )
    else:
        result = client.history(args.dataset_id, mode="recent")
    _print_turns(result["items"])
    if "total_count" in result:
        more = " (more available)" if result["has_more"] else ""
        print(dim(f"Page {args.page}, {result['total_count']} turn(s) total{more}"))


def main():
    global _USE_COLOR

    parser = argparse.ArgumentParser(description="CLI client for the datachat FastAPI backend")
    parser.add_argument(
        "--url", default="http://localhost:8000",
        help="API server URL (default: http://localhost:8000)",
    )
    parser.add_argument("--no-color", action="store_true", help="Disable ANSI color output")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("upload", help="Upload a CSV or Excel file")
    p.add_argument("file")
    p.add_argument("--name", default=None, help="Display name for the dataset")
    p.set_defaults(func=cmd_upload)

    p = sub.add_parser("list", help="List datasets")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("ask", help="Ask a question about a dataset")
    p.add_argument("dataset_id")
    p.add_argument("question")
    p.add_argument("--no-stream", action="store_true", help="Wait for the full answer")
    p.set_defaults(func=cmd_ask)

    p = sub.add_parser("history", help="Show conversation history")
    p.add_argument("dataset_id")
    p.add_argument("--page", type=int, default=0)
    p.add_argument("--page-size", type=int, default=20)
    p.add_argument("--all", action="store_true")
    p.set_defaults(func=cmd_history)

    args = parser.parse_args()
    if args.no_color or not sys.stdout.isatty():
        _USE_COLOR = False

    client = APIClient(args.url)
    try:
        args.func(client, args)
    except requests.HTTPError as e:
        print(red(f"Error: {_detail(e)}"), file=sys.stderr)
        sys.exit(1)
    except requests.ConnectionError:
        print(red(f"Cannot reach server at {args.url}. Start it with: python api_server.py"),
              file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
