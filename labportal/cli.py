"""Command line front end for the lab checkoff portal.

Why:
    Staff and students can drive the whole portal from a terminal: sign in
    once (tokens persist in the token cache file), then list labs, submit
    videos or work through the review queue.

Usage:
    labportal signin --email gburdell3@gatech.edu
    labportal labs
    labportal submit-video lab2 part1 ./demo.mp4 --notes "second try"
    labportal queue --status pending
    labportal reject <submission-id> --feedback "needs better lighting"

Configuration:
    Environment variables (see `labportal.config`), optionally loaded from a
    local `.env` file. Set LABPORTAL_ENABLE_DOTENV=false to skip the file.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar
import json
import logging
import os
import sys

import anyio
import click
import httpx

from labportal.api import BackendApi
from labportal.config import Settings, ensure_secure_config, load_settings
from labportal.errors import PortalError
from labportal.identity_access.credentials import CognitoCredentialStore, CredentialStoreConfig
from labportal.identity_access.session import AuthStatus, SessionManager
from labportal.identity_access.stores import FileTokenCache, MessageStore
from labportal.learning.labs import LabCatalog
from labportal.learning.progress import my_progress
from labportal.learning.uploads import SelfCheckoff, UploadProgress, VideoFile, VideoPartUploader
from labportal.teaching.labs import LabAdmin
from labportal.teaching.review_queue import (
    QueueFilters,
    ReviewQueueController,
    display_name,
    name_status_indicator,
)
from labportal.teaching.students import StudentDirectory

T = TypeVar("T")

ClientFactory = Callable[[Settings], httpx.AsyncClient]


def _should_load_dotenv() -> bool:
    """Load `.env` unless running under pytest or explicitly disabled."""
    if "pytest" in sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("LABPORTAL_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


def _default_client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.http_timeout_seconds)


@dataclass
class Portal:
    settings: Settings
    api: BackendApi
    session: SessionManager
    messages: MessageStore


def _run(ctx: click.Context, fn: Callable[[Portal], Awaitable[T]]) -> T:
    """Build the portal objects inside an event loop and run `fn`.

    `PortalError`s and invalid settings surface as `click.ClickException`
    with the verbatim message.
    """
    try:
        settings = load_settings()
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    ensure_secure_config(settings)
    factory: ClientFactory = (ctx.obj or {}).get("client_factory") or _default_client

    async def _main() -> T:
        async with factory(settings) as client:
            api = BackendApi(settings.api_endpoint, client=client)
            credentials = CognitoCredentialStore(
                CredentialStoreConfig(
                    region=settings.region,
                    client_id=settings.user_pool_client_id,
                    endpoint=settings.credential_endpoint,
                    timeout_seconds=float(settings.http_timeout_seconds),
                ),
                client=client,
            )
            session = SessionManager(
                credentials=credentials,
                cache=FileTokenCache(settings.token_cache_path),
                api=api,
                allowed_email_suffix=settings.allowed_email_suffix,
            )
            messages = MessageStore(FileTokenCache(settings.message_store_path))
            return await fn(Portal(settings=settings, api=api, session=session, messages=messages))

    try:
        return anyio.run(_main)
    except PortalError as exc:
        raise click.ClickException(exc.message) from exc
    except httpx.HTTPError as exc:
        raise click.ClickException(f"Network error: {exc}") from exc


async def _require_session(portal: Portal, *, staff: bool = False) -> None:
    await portal.session.check_auth_state()
    state = portal.session.state
    if not state.is_authenticated:
        raise click.ClickException("Not signed in. Run `labportal signin` first.")
    if staff and not (state.user and state.user.is_staff):
        raise click.ClickException("This command requires a staff account.")


def _echo_json(data: object) -> None:
    click.echo(json.dumps(data, indent=2, sort_keys=True, default=str))


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging verbosity for the labportal.* loggers.",
)
@click.pass_context
def cli(ctx: click.Context, log_level: str) -> None:
    """Lab checkoff portal client."""
    if _should_load_dotenv():
        from dotenv import load_dotenv

        load_dotenv()
    logging.basicConfig(level=log_level.upper(), format="%(levelname)s %(name)s: %(message)s")
    ctx.ensure_object(dict)


# --- Identity ------------------------------------------------------------------------


@cli.command()
@click.option("--email", required=True, help="Institution email address.")
@click.password_option(confirmation_prompt=False)
@click.pass_context
def signin(ctx: click.Context, email: str, password: str) -> None:
    """Sign in and persist the session in the token cache."""

    async def _go(portal: Portal) -> None:
        await portal.session.sign_in(email, password)
        state = portal.session.state
        click.echo(f"Signed in as {state.user.username if state.user else email}.")
        if state.status == AuthStatus.NEEDS_NAME:
            click.echo("Your full name is not set yet. Run `labportal set-name \"First Last\"`.")

    _run(ctx, _go)


@cli.command()
@click.pass_context
def signout(ctx: click.Context) -> None:
    """Revoke the session and clear the token cache."""

    async def _go(portal: Portal) -> None:
        await portal.session.sign_out()
        click.echo("Signed out.")

    _run(ctx, _go)


@cli.command()
@click.pass_context
def whoami(ctx: click.Context) -> None:
    """Show the signed-in user."""

    async def _go(portal: Portal) -> None:
        await portal.session.check_auth_state()
        state = portal.session.state
        if not state.is_authenticated or state.user is None:
            click.echo("Not signed in.")
            return
        user = state.user
        click.echo(f"username:   {user.username}")
        click.echo(f"role:       {user.role}")
        click.echo(f"student id: {user.student_id or '-'}")
        click.echo(f"full name:  {user.full_name or '(not set)'}")

    _run(ctx, _go)


@cli.command()
@click.option("--email", required=True, help="Institution email address.")
@click.password_option()
@click.pass_context
def signup(ctx: click.Context, email: str, password: str) -> None:
    """Register a student account; a verification code is emailed."""

    async def _go(portal: Portal) -> None:
        await portal.session.sign_up(email, password)
        click.echo("Registered. Check your email and run `labportal confirm-signup`.")

    _run(ctx, _go)


@cli.command("confirm-signup")
@click.option("--email", required=True)
@click.option("--code", required=True, help="Verification code from the email.")
@click.pass_context
def confirm_signup(ctx: click.Context, email: str, code: str) -> None:
    async def _go(portal: Portal) -> None:
        await portal.session.confirm_sign_up(email, code)
        click.echo("Account confirmed. You can sign in now.")

    _run(ctx, _go)


@cli.command("resend-code")
@click.option("--email", required=True)
@click.pass_context
def resend_code(ctx: click.Context, email: str) -> None:
    async def _go(portal: Portal) -> None:
        await portal.session.resend_verification_code(email)
        click.echo("Verification code sent.")

    _run(ctx, _go)


@cli.command("forgot-password")
@click.option("--email", required=True)
@click.pass_context
def forgot_password(ctx: click.Context, email: str) -> None:
    async def _go(portal: Portal) -> None:
        await portal.session.forgot_password(email)
        click.echo("Reset code sent. Run `labportal reset-password`.")

    _run(ctx, _go)


@cli.command("reset-password")
@click.option("--email", required=True)
@click.option("--code", required=True)
@click.password_option("--new-password")
@click.pass_context
def reset_password(ctx: click.Context, email: str, code: str, new_password: str) -> None:
    async def _go(portal: Portal) -> None:
        await portal.session.confirm_forgot_password(email, code, new_password)
        click.echo("Password updated. You can sign in now.")

    _run(ctx, _go)


@cli.command("set-name")
@click.argument("full_name")
@click.pass_context
def set_name(ctx: click.Context, full_name: str) -> None:
    """Store your full name (shown to staff next to your submissions)."""

    async def _go(portal: Portal) -> None:
        await _require_session(portal)
        await portal.session.update_user_attributes(full_name)
        click.echo("Name updated.")

    _run(ctx, _go)


# --- Learning ------------------------------------------------------------------------


@cli.command()
@click.pass_context
def labs(ctx: click.Context) -> None:
    """List labs in course order."""

    async def _go(portal: Portal) -> None:
        await _require_session(portal)
        catalog = LabCatalog(portal.api, portal.session, portal.messages)
        notice = catalog.pop_lab_access_error()
        if notice:
            click.echo(f"Note: {notice}", err=True)
        for lab in await catalog.list_labs():
            marker = " [locked]" if lab.locked else ""
            click.echo(f"{lab.lab_id}\t{lab.title}{marker}")

    _run(ctx, _go)


@cli.command()
@click.argument("lab_id")
@click.pass_context
def lab(ctx: click.Context, lab_id: str) -> None:
    """Show one lab and your latest submission per part."""

    async def _go(portal: Portal) -> None:
        await _require_session(portal)
        catalog = LabCatalog(portal.api, portal.session, portal.messages)
        item = await catalog.get_lab(lab_id)
        click.echo(f"{item.title} ({item.status})")
        if item.description:
            click.echo(item.description)
        subs = await catalog.part_submissions(lab_id)
        for part_id, sub in sorted(subs.items()):
            line = f"  {part_id}: {sub.status.value}"
            if sub.feedback:
                line += f" - {sub.feedback}"
            click.echo(line)

    _run(ctx, _go)


@cli.command("submit-video")
@click.argument("lab_id")
@click.argument("part_id")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--notes", default="", help="Optional notes for the reviewer.")
@click.option("--content-type", default=None, help="Override the guessed MIME type.")
@click.pass_context
def submit_video(
    ctx: click.Context, lab_id: str, part_id: str, path: Path, notes: str, content_type: Optional[str]
) -> None:
    """Upload a video as evidence for one lab part."""

    def _report(progress: UploadProgress) -> None:
        if progress.progress and progress.progress % 25 == 0:
            click.echo(f"{progress.file_name}: {progress.progress}%")

    async def _go(portal: Portal) -> None:
        await _require_session(portal)
        uploader = VideoPartUploader(portal.api, portal.session, lab_id, part_id, on_progress=_report)
        if not uploader.select(VideoFile.from_path(path, content_type=content_type)):
            raise click.ClickException(uploader.progress.error or "File rejected")
        result = await uploader.upload(notes)
        if result is None:
            raise click.ClickException(uploader.progress.error or "Upload failed")
        click.echo(f"Submitted {result.submission_id} ({result.file_key}).")

    _run(ctx, _go)


@cli.command("self-checkoff")
@click.argument("lab_id")
@click.argument("part_id")
@click.option("--notes", default="")
@click.pass_context
def self_checkoff(ctx: click.Context, lab_id: str, part_id: str, notes: str) -> None:
    """Mark a lab part complete without video evidence."""

    async def _go(portal: Portal) -> None:
        await _require_session(portal)
        submission_id = await SelfCheckoff(portal.api, portal.session, lab_id, part_id).submit(notes)
        click.echo(f"Self-checkoff submitted ({submission_id}).")

    _run(ctx, _go)


@cli.command("my-progress")
@click.pass_context
def my_progress_cmd(ctx: click.Context) -> None:
    """Show your grades and checkoffs."""

    async def _go(portal: Portal) -> None:
        await _require_session(portal)
        _echo_json(await my_progress(portal.api, portal.session))

    _run(ctx, _go)


# --- Teaching ------------------------------------------------------------------------


@cli.command()
@click.argument("lab_id")
@click.pass_context
def lock(ctx: click.Context, lab_id: str) -> None:
    """Lock a lab for all students."""

    async def _go(portal: Portal) -> None:
        await _require_session(portal, staff=True)
        await LabAdmin(portal.api, portal.session).lock(lab_id)
        click.echo(f"Lab {lab_id} locked.")

    _run(ctx, _go)


@cli.command()
@click.argument("lab_id")
@click.pass_context
def unlock(ctx: click.Context, lab_id: str) -> None:
    """Unlock a lab for all students."""

    async def _go(portal: Portal) -> None:
        await _require_session(portal, staff=True)
        await LabAdmin(portal.api, portal.session).unlock(lab_id)
        click.echo(f"Lab {lab_id} unlocked.")

    _run(ctx, _go)


@cli.command()
@click.option("--status", type=click.Choice(["pending", "approved", "rejected", "all"]), default="pending", show_default=True)
@click.option("--lab", "lab_id", default=None)
@click.option("--part", "part_id", default=None)
@click.option("--student", "student_id", default=None)
@click.option("--sort-by", type=click.Choice(["submittedAt", "updatedAt"]), default="submittedAt", show_default=True)
@click.option("--direction", type=click.Choice(["asc", "desc"]), default="asc", show_default=True)
@click.pass_context
def queue(
    ctx: click.Context,
    status: str,
    lab_id: Optional[str],
    part_id: Optional[str],
    student_id: Optional[str],
    sort_by: str,
    direction: str,
) -> None:
    """Show the review queue."""
    filters = QueueFilters(
        status=status, lab_id=lab_id, part_id=part_id, student_id=student_id, sort_by=sort_by, sort_direction=direction
    )

    async def _go(portal: Portal) -> None:
        await _require_session(portal, staff=True)
        ctl = ReviewQueueController(portal.api, portal.session)
        items = await ctl.fetch(filters)
        click.echo(f"pending: {ctl.pending_count}  total: {ctl.total_count}")
        for sub in items:
            kind = "self-checkoff" if sub.is_self_checkoff else "video"
            click.echo(
                f"{sub.submission_id}\t{sub.lab_id}/{sub.part_id}\t"
                f"{display_name(sub)}{name_status_indicator(sub)}\t{kind}\t{sub.submitted_at.isoformat()}"
            )
        if ctl.current is not None and ctl.current.video_url:
            click.echo(f"next video: {ctl.current.video_url}")

    _run(ctx, _go)


@cli.command()
@click.argument("submission_id")
@click.option("--feedback", default="", help="Defaults to a canned approval message.")
@click.pass_context
def approve(ctx: click.Context, submission_id: str, feedback: str) -> None:
    """Approve a submission."""

    async def _go(portal: Portal) -> None:
        await _require_session(portal, staff=True)
        ctl = ReviewQueueController(portal.api, portal.session)
        await ctl.approve(await ctl.load(submission_id), feedback)
        click.echo(f"Approved {submission_id}.")

    _run(ctx, _go)


@cli.command()
@click.argument("submission_id")
@click.option("--feedback", required=True, help="Explain why the submission was rejected.")
@click.pass_context
def reject(ctx: click.Context, submission_id: str, feedback: str) -> None:
    """Reject a submission with feedback."""

    async def _go(portal: Portal) -> None:
        await _require_session(portal, staff=True)
        ctl = ReviewQueueController(portal.api, portal.session)
        await ctl.reject(await ctl.load(submission_id), feedback)
        click.echo(f"Rejected {submission_id}.")

    _run(ctx, _go)


@cli.command()
@click.option("--search", default="", help="Case-insensitive name filter.")
@click.option("--section", default=None, help="Section filter ('all' for every section).")
@click.pass_context
def students(ctx: click.Context, search: str, section: Optional[str]) -> None:
    """List students."""

    async def _go(portal: Portal) -> None:
        await _require_session(portal, staff=True)
        for s in await StudentDirectory(portal.api, portal.session).list_students(search, section):
            account = "" if s.has_account else " (no account)"
            click.echo(f"{s.name}\t{s.section}{account}")

    _run(ctx, _go)


@cli.command()
@click.argument("name")
@click.argument("lab_id")
@click.argument("grade", type=float, required=False)
@click.pass_context
def grade(ctx: click.Context, name: str, lab_id: str, grade: Optional[float]) -> None:
    """Set a student's lab grade (omit GRADE to clear it)."""

    async def _go(portal: Portal) -> None:
        await _require_session(portal, staff=True)
        await StudentDirectory(portal.api, portal.session).save_grade(name, lab_id, grade)
        click.echo(f"Grade for {name} / {lab_id} saved.")

    _run(ctx, _go)


if __name__ == "__main__":  # pragma: no cover - manual entry
    cli()
