#!/usr/bin/env python3
"""CLI for the subreddit discovery and crawl pipeline."""

import asyncio
import json
import os
import uuid
from enum import Enum
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from config import settings, setup_logging
from crawl import CrawlService, CrawlValidationError, PollSnapshot, SessionConflictError
from scrapers import Community, DiscoveryError, Post, ScrapeStatus
from storage import get_storage


class StorageBackendType(str, Enum):
    """Storage backend types."""
    memory = "memory"
    sqlite = "sqlite"


app = typer.Typer(help="Subreddit Crawler - Discover communities and collect matching posts")
console = Console()

STATUS_STYLES = {
    ScrapeStatus.PENDING: "[dim]pending[/dim]",
    ScrapeStatus.IN_PROGRESS: "[yellow]in-progress[/yellow]",
    ScrapeStatus.COMPLETED: "[green]completed[/green]",
    ScrapeStatus.ERROR: "[red]error[/red]",
}


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Log level (DEBUG, INFO, WARNING, ERROR)"
    ),
):
    """Configure logging for every command."""
    setup_logging(log_level)


def _build_service(storage: StorageBackendType, db_path: Optional[str] = None, **kwargs) -> CrawlService:
    store_kwargs = {"db_path": db_path} if db_path and storage.value == "sqlite" else {}
    return CrawlService(store=get_storage(backend=storage.value, **store_kwargs), **kwargs)


def _communities_table(communities: List[Community]) -> Table:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Community", style="cyan", no_wrap=True)
    table.add_column("Subscribers", justify="right")
    table.add_column("Quality")
    table.add_column("Relevance", justify="right")
    table.add_column("Description")

    for community in communities:
        table.add_row(
            community.display_name,
            f"{community.subscribers:,}",
            community.quality.value,
            f"{community.relevance_score:.1f}",
            community.description[:60],
        )
    return table


def _progress_table(records) -> Table:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Community", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Processed", justify="right")
    table.add_column("Errors")

    for record in records:
        table.add_row(
            f"r/{record.subreddit}",
            STATUS_STYLES[record.status],
            f"{record.processed_posts}/{record.total_posts}",
            "; ".join(record.errors)[:60],
        )
    return table


def _posts_table(posts: List[Post]) -> Table:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Community", style="cyan", no_wrap=True)
    table.add_column("Title")
    table.add_column("Score", justify="right")
    table.add_column("Comments", justify="right")
    table.add_column("Matched")

    for post in posts:
        table.add_row(
            f"r/{post.subreddit}",
            post.title[:60],
            str(post.score),
            str(post.num_comments),
            ", ".join(post.matched_keywords),
        )
    return table


@app.command()
def discover(
    keywords: List[str] = typer.Argument(..., help="Keywords to search communities for"),
):
    """Discover subreddits relevant to KEYWORDS."""
    asyncio.run(_discover(keywords))


async def _discover(keywords: List[str]):
    service = CrawlService(store=get_storage("memory"))
    try:
        with console.status("Searching Reddit..."):
            communities = await service.discover(keywords)
    except (CrawlValidationError, DiscoveryError) as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1)
    finally:
        await service.close()

    console.print(f"\n[bold]🔎 {len(communities)} communities for {', '.join(keywords)}[/bold]\n")
    console.print(_communities_table(communities))


@app.command()
def crawl(
    communities: Optional[List[str]] = typer.Argument(
        None, help="Subreddits to crawl (omit with --discover)"
    ),
    keyword: Optional[List[str]] = typer.Option(
        None, "--keyword", "-k", help="Keyword to match; repeatable. None matches everything"
    ),
    use_discovery: bool = typer.Option(
        False, "--discover", help="Discover communities from the keywords first"
    ),
    top: int = typer.Option(5, "--top", "-t", help="Communities to crawl when discovering"),
    comments: bool = typer.Option(False, "--comments", help="Attach top comments afterwards"),
    session_id: Optional[str] = typer.Option(None, "--session-id", help="Session identifier"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write posts as JSON"),
    concurrency: int = typer.Option(
        1, "--concurrency", "-c", help="Communities crawled at once (still rate limited)"
    ),
    storage: StorageBackendType = typer.Option(
        StorageBackendType.memory, "--storage", help="Storage backend: memory or sqlite"
    ),
    db_path: Optional[str] = typer.Option(
        None, "--db-path", help="SQLite database path (only for sqlite backend)"
    ),
):
    """Crawl subreddits and collect posts matching the keywords."""
    asyncio.run(
        _crawl(
            communities or [],
            keyword or [],
            use_discovery,
            top,
            comments,
            session_id or uuid.uuid4().hex[:12],
            output,
            concurrency,
            storage,
            db_path,
        )
    )


async def _crawl(
    communities: List[str],
    keywords: List[str],
    use_discovery: bool,
    top: int,
    comments: bool,
    session_id: str,
    output: Optional[Path],
    concurrency: int,
    storage: StorageBackendType,
    db_path: Optional[str],
):
    """Async crawl implementation."""
    service = _build_service(storage, db_path, max_concurrent_sources=concurrency)
    try:
        if use_discovery:
            with console.status("Discovering communities..."):
                found = await service.discover(keywords)
            communities = [c.name for c in found[:top]]
            console.print(f"[blue]Discovered: {', '.join(communities)}[/blue]")

        await service.start_crawl(session_id, communities, keywords)
        console.print(f"\n[bold blue]Crawl {session_id} started[/bold blue]")

        poller = service.poller(session_id)
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.completed}/{task.total}"),
            console=console,
        ) as progress:
            task = progress.add_task("Crawling...", total=len(poller.communities))

            def on_update(snap: PollSnapshot) -> None:
                active = [n for n, s in snap.statuses.items() if s is ScrapeStatus.IN_PROGRESS]
                description = f"Crawling r/{active[0]}" if active else "Crawling..."
                progress.update(task, completed=snap.completed + snap.errored, description=description)

            outcome = await poller.wait(on_update)

        if outcome.timed_out:
            console.print(f"[yellow]⚠ {outcome.message}[/yellow]")
            service.cancel_crawl(session_id)
        else:
            await service.wait_for_crawl(session_id)

        posts = outcome.items
        if comments and outcome.done and posts:
            with console.status("Fetching comments..."):
                posts = await service.enrich_comments(session_id)
    except (CrawlValidationError, SessionConflictError, DiscoveryError) as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1)
    finally:
        await service.close()

    console.print(_progress_table(outcome.snapshot.records if outcome.snapshot else []))
    console.print(
        f"\n[bold green]Collected {len(posts)} posts "
        f"({outcome.success_rate:.0%} of communities completed)[/bold green]"
    )

    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(json.dumps([p.model_dump(mode="json") for p in posts], indent=2))
        console.print(f"[green]✓ Wrote {output}[/green]")


@app.command()
def progress(
    session_id: str = typer.Argument(..., help="Session identifier"),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="SQLite database path"),
):
    """Show per-community progress of a stored session."""
    store = get_storage("sqlite", **({"db_path": db_path} if db_path else {}))
    session = store.get_session(session_id)
    if session is None:
        console.print(f"[yellow]No session {session_id}[/yellow]")
        raise typer.Exit(code=1)

    console.print(f"\n[bold]📊 Session {session_id}[/bold]\n")
    console.print(_progress_table(store.get_progress(session_id)))
    console.print(f"\nPosts collected: {len(session.items)}")


@app.command()
def items(
    session_id: str = typer.Argument(..., help="Session identifier"),
    limit: int = typer.Option(20, "--limit", "-l", help="Max posts to show"),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="SQLite database path"),
):
    """List posts collected by a stored session."""
    store = get_storage("sqlite", **({"db_path": db_path} if db_path else {}))
    posts = store.get_items(session_id)
    if not posts:
        console.print(f"[yellow]No posts for session {session_id}[/yellow]")
        return

    console.print(f"\n[bold]📝 {len(posts)} posts[/bold]\n")
    console.print(_posts_table(posts[:limit]))


@app.command()
def cleanup(
    db_path: Optional[str] = typer.Option(None, "--db-path", help="SQLite database path"),
):
    """Delete stored sessions older than the retention period."""
    service = CrawlService(store=get_storage("sqlite", **({"db_path": db_path} if db_path else {})))
    removed = service.cleanup_expired_sessions()
    asyncio.run(service.close())
    console.print(f"[green]✓ Removed {removed} expired session(s)[/green]")


@app.command()
def health():
    """Check connectivity to Reddit."""
    asyncio.run(_health())


async def _health():
    """Async health check implementation."""
    console.print("\n[bold]🏥 Health Check[/bold]\n")

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Service", style="cyan")
    table.add_column("Status")
    table.add_column("Notes")

    try:
        status, notes = await _check_reddit()
        if status:
            table.add_row("Reddit API", "[green]✓ OK[/green]", notes)
        else:
            table.add_row("Reddit API", "[red]✗ Failed[/red]", notes)
    except Exception as e:
        table.add_row("Reddit API", "[red]✗ Error[/red]", str(e)[:50])

    console.print(table)


async def _check_reddit() -> tuple[bool, str]:
    service = CrawlService(store=get_storage("memory"))
    try:
        ok = await service.client.health_check()
    finally:
        await service.close()
    mode = "OAuth" if service.client.has_credentials else "public JSON"
    return ok, f"Connected ({mode})" if ok else "Connection failed"


def _env_path() -> str:
    return os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env")


@app.command()
def init():
    """Initialize the project with a sample .env file."""
    env_content = f"""# Subreddit Crawler Configuration

# Reddit API (optional, https://www.reddit.com/prefs/apps)
REDDIT_CLIENT_ID=
REDDIT_CLIENT_SECRET=
REDDIT_USER_AGENT={settings.reddit_user_agent}

# Request pacing
REQUEST_TIMEOUT_SECONDS=10
MIN_REQUEST_INTERVAL_SECONDS=1.5
CIRCUIT_BREAKER_THRESHOLD=2
CIRCUIT_BREAKER_COOLDOWN_SECONDS=60
INTER_SOURCE_DELAY_SECONDS=3

# Sessions
SESSION_TIMEOUT_SECONDS=300
POLL_TIMEOUT_SECONDS=120
STORAGE_BACKEND=memory
SQLITE_DB_PATH=./data/crawl.db

LOG_LEVEL=INFO
"""

    env_path = _env_path()

    if os.path.exists(env_path):
        console.print("[yellow]⚠ .env file already exists[/yellow]")
        if not typer.confirm("Overwrite?"):
            return

    with open(env_path, "w") as f:
        f.write(env_content)

    console.print("[green]✓ Created .env file[/green]")
    console.print("\nNext steps:")
    console.print("1. Optionally fill in Reddit app credentials in .env")
    console.print("2. Run [cyan]python main.py health[/cyan] to verify connectivity")
    console.print("3. Run [cyan]python main.py crawl --discover -k <keyword>[/cyan] to start collecting posts")


if __name__ == "__main__":
    app()
