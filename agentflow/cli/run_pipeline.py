#!/usr/bin/env python3
"""
agentflow-run: run the paid pipeline against a running stack and follow its progress

Usage:
    agentflow-run "Ethereum rollups" [--url http://127.0.0.1:4000] [--user-address 0x...] [--json]
"""

import argparse
import asyncio
import json as json_lib
import sys
from typing import AsyncIterator, Optional

import httpx
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from agentflow.config import get_config

console = Console()


async def read_events(response: httpx.Response) -> AsyncIterator[dict]:
    """Parse `data: <json>` frames out of a server-sent event stream"""
    async for line in response.aiter_lines():
        if not line.startswith("data:"):
            continue
        payload = line[len("data:"):].strip()
        if payload:
            yield json_lib.loads(payload)


class PipelineCLI:
    """Follows one /run stream and renders it"""

    def __init__(self, base_url: str, json_output: bool = False, timeout: float = 300.0):
        self.base_url = base_url.rstrip("/")
        self.json_output = json_output
        self.timeout = timeout

    def render(self, event: dict):
        if self.json_output:
            print(json_lib.dumps(event))
            return

        kind = event.get("type")
        if kind == "step_start":
            console.print(f"[cyan]▶ {event['step']}[/cyan] [dim]paying {event['price']} USDC...[/dim]")
        elif kind == "step_complete":
            console.print(f"[green]✓ {event['step']}[/green] [dim]tx {event.get('tx') or 'n/a'}[/dim]")
        elif kind == "receipt":
            table = Table(title="Receipt", show_header=True, header_style="bold yellow")
            table.add_column("Step")
            table.add_column("Transaction")
            for step in ("research", "analyst", "writer"):
                table.add_row(step, event.get(f"{step}Tx") or "n/a")
            table.add_row("[bold]total[/bold]", f"[bold]{event['total']} USDC[/bold]")
            console.print(table)
        elif kind == "report":
            console.print(Panel(Markdown(event.get("markdown") or ""), title="Report", border_style="green"))
            console.print(Panel(event.get("summary") or "", title="Summary", border_style="cyan"))
        elif kind == "error":
            step = f" ({event['step']})" if event.get("step") else ""
            console.print(f"[bold red]✗ Pipeline failed{step}:[/bold red] {event['message']}")

    async def run(self, task: str, user_address: Optional[str] = None) -> bool:
        """Returns True when the run ended with a report"""
        body = {"task": task}
        if user_address:
            body["userAddress"] = user_address

        succeeded = False
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            async with client.stream("POST", f"{self.base_url}/run", json=body) as response:
                if response.is_error:
                    await response.aread()
                    self.render({"type": "error", "message": f"HTTP {response.status_code}: {response.text}"})
                    return False
                async for event in read_events(response):
                    self.render(event)
                    if event.get("type") == "report":
                        succeeded = True
        return succeeded


def main():
    config = get_config()
    parser = argparse.ArgumentParser(
        description="Run the AgentFlow research pipeline",
        epilog=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("task", help="What to research")
    parser.add_argument("--url", default=f"http://{config.host}:{config.port}", help="Public API base URL")
    parser.add_argument("--user-address", default=None, help="Connected wallet, must match the server signer")
    parser.add_argument("--json", action="store_true", help="Print raw events as JSON lines")
    args = parser.parse_args()

    cli = PipelineCLI(args.url, json_output=args.json)
    try:
        ok = asyncio.run(cli.run(args.task, args.user_address))
    except httpx.HTTPError as e:
        console.print(f"[red]Could not reach {args.url}: {e}[/red]")
        sys.exit(2)
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
