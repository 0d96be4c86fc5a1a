from __future__ import annotations

import asyncio
import json
import logging

import typer

from twitter_session.application.use_cases.ensure_user_session import EnsureUserSessionUseCase
from twitter_session.config import settings
from twitter_session.domain.errors import TwitterSessionError
from twitter_session.domain.model import Credentials
from twitter_session.infrastructure.adapters.session.sqlite_store import SQLiteSnapshotStore
from twitter_session.infrastructure.client import TwitterSessionClient

app = typer.Typer(help="Guest and user sessions for x.com")


@app.callback()
def main(log_level: str = typer.Option(settings.log_level, "--log-level", "-l")) -> None:
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _restore(client: TwitterSessionClient, store: SQLiteSnapshotStore) -> bool:
    cookies, _, is_active = store.load()
    if cookies and is_active:
        client.set_cookies(cookies)
        return True
    return False


@app.command("guest-token")
def guest_token() -> None:
    async def run() -> str:
        async with TwitterSessionClient() as client:
            token = await client.guest_tokens.ensure_fresh()
            return token.value

    try:
        typer.echo(asyncio.run(run()))
    except TwitterSessionError as e:
        typer.echo(f"Guest activation failed: {e}", err=True)
        raise typer.Exit(code=1)


@app.command()
def login(
    db_path: str = typer.Option(settings.session_db_path, "--db", "-d"),
    verify: bool = typer.Option(True, "--verify/--no-verify"),
) -> None:
    if not settings.username or not settings.password:
        typer.echo("TWITTER_USERNAME and TWITTER_PASSWORD must be set.", err=True)
        raise typer.Exit(code=2)
    credentials = Credentials(
        username=settings.username,
        password=settings.password,
        email=settings.email or None,
        two_factor_secret=settings.two_factor_secret or None,
    )

    async def run():
        async with TwitterSessionClient() as client:
            uc = EnsureUserSessionUseCase(
                store=SQLiteSnapshotStore(db_path),
                auth=client.user_auth,
                credentials=credentials,
                ttl_hours=settings.session_ttl_hours,
                verify=verify,
            )
            return await uc.execute()

    res = asyncio.run(run())
    typer.echo(f"{res.status}: {res.message}")
    if res.status == "ERROR":
        raise typer.Exit(code=1)


@app.command()
def status(
    db_path: str = typer.Option(settings.session_db_path, "--db", "-d"),
    verify: bool = typer.Option(False, "--verify/--no-verify"),
) -> None:
    async def run() -> bool:
        async with TwitterSessionClient() as client:
            if not _restore(client, SQLiteSnapshotStore(db_path)):
                return False
            return await client.is_logged_in(verify=verify)

    typer.echo("logged in" if asyncio.run(run()) else "logged out")


@app.command()
def logout(db_path: str = typer.Option(settings.session_db_path, "--db", "-d")) -> None:
    store = SQLiteSnapshotStore(db_path)

    async def run() -> None:
        async with TwitterSessionClient() as client:
            _restore(client, store)
            await client.logout()

    asyncio.run(run())
    store.mark_inactive()
    typer.echo("logged out")


@app.command()
def cookies(db_path: str = typer.Option(settings.session_db_path, "--db", "-d")) -> None:
    """Print the stored session cookies as JSON."""
    saved, expires_at, is_active = SQLiteSnapshotStore(db_path).load()
    typer.echo(
        json.dumps(
            {
                "active": is_active,
                "expires_at": expires_at.isoformat() if expires_at else None,
                "cookies": saved,
            },
            indent=2,
        )
    )


if __name__ == "__main__":
    app()
