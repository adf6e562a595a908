"""submitrepo CLI: inspect and write submission repositories."""

from __future__ import annotations

import click

from .config import RepositoryConfig
from .exceptions import ConfigurationError, RepositoryError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _status(ctx, msg):
    """Emit a status message to stderr when verbose mode (-v) is on."""
    if ctx.obj.get("verbose"):
        click.echo(msg, err=True)


def _config(ctx) -> RepositoryConfig:
    try:
        return RepositoryConfig(
            repo_type=ctx.obj["repo_type"],
            storage=ctx.obj.get("storage"),
            external_url=ctx.obj.get("external_url"),
        )
    except ConfigurationError as exc:
        raise click.ClickException(str(exc))


def _open_repo(ctx, name: str):
    config = _config(ctx)
    try:
        return config.backend_class().open(config.location(name))
    except (RepositoryError, ValueError) as exc:
        raise click.ClickException(str(exc))


def _revision(repo, revision_id: str | None):
    if revision_id is None:
        return repo.get_latest_revision()
    try:
        return repo.get_revision(revision_id)
    except RepositoryError as exc:
        raise click.ClickException(str(exc))


def _revision_option(f):
    """Shared --revision option decorator."""
    return click.option(
        "--revision", "revision_id", default=None,
        help="Revision identifier (default: latest).",
    )(f)


# ---------------------------------------------------------------------------
# Main group
# ---------------------------------------------------------------------------

@click.group()
@click.option("--storage", "-s", type=click.Path(file_okay=False), envvar="SUBMITREPO_STORAGE",
              help="Directory holding the repositories (or set SUBMITREPO_STORAGE).")
@click.option("--type", "-t", "repo_type", default="git", envvar="SUBMITREPO_TYPE",
              show_default=True, help="Backend type (or set SUBMITREPO_TYPE).")
@click.option("--external-url", envvar="SUBMITREPO_EXTERNAL_URL",
              help="Base URL students clone from (or set SUBMITREPO_EXTERNAL_URL).")
@click.option("-v", "--verbose", is_flag=True, help="Verbose output on stderr.")
@click.pass_context
def main(ctx, storage, repo_type, external_url, verbose):
    """submitrepo: versioned storage for student submissions.

    \b
    Quick start:
      submitrepo -s repos init group_0001
      submitrepo -s repos add group_0001 main.py A1/main.py -u alice
      submitrepo -s repos ls group_0001 A1
      submitrepo -s repos log group_0001
    """
    ctx.ensure_object(dict)
    ctx.obj["storage"] = storage
    ctx.obj["repo_type"] = repo_type
    ctx.obj["external_url"] = external_url
    ctx.obj["verbose"] = verbose


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@main.command()
@click.argument("name")
@click.pass_context
def init(ctx, name):
    """Create the repository NAME."""
    config = _config(ctx)
    try:
        repo = config.backend_class().create(config.location(name))
    except (RepositoryError, ValueError) as exc:
        raise click.ClickException(str(exc))
    with repo:
        _status(ctx, f"Created {repo.location}")
        click.echo(repo.get_latest_revision().revision_identifier_ui)


@main.command()
@click.argument("name")
@click.pass_context
def log(ctx, name):
    """Show the revisions of NAME, newest first."""
    with _open_repo(ctx, name) as repo:
        for revision in reversed(repo.get_all_revisions()):
            stamp = revision.timestamp.isoformat() if revision.timestamp else "-"
            user = revision.user_id or "-"
            click.echo(f"{revision.revision_identifier_ui}  {stamp}  {user}  {revision.comment}")


@main.command("ls")
@click.argument("name")
@click.argument("path", required=False, default="/")
@_revision_option
@click.pass_context
def ls_cmd(ctx, name, path, revision_id):
    """List the files and directories directly in PATH."""
    with _open_repo(ctx, name) as repo:
        revision = _revision(repo, revision_id)
        try:
            if not revision.path_exists(path):
                raise click.ClickException(f"{path}: no such path at {revision.revision_identifier_ui}")
            for dir_name in sorted(revision.directories_at_path(path)):
                click.echo(f"{dir_name}/")
            for file_name, entry in sorted(revision.files_at_path(path).items()):
                marker = "*" if entry.changed else " "
                click.echo(f"{file_name}{marker}")
        except ValueError as exc:
            raise click.ClickException(str(exc))


@main.command()
@click.argument("name")
@click.argument("path")
@_revision_option
@click.pass_context
def cat(ctx, name, path, revision_id):
    """Write the content of the file at PATH to stdout."""
    from ._paths import normalize_path, split_path

    with _open_repo(ctx, name) as repo:
        revision = _revision(repo, revision_id)
        try:
            directory, file_name = split_path(normalize_path(path))
        except ValueError as exc:
            raise click.ClickException(str(exc))
        entry = revision.files_at_path(directory).get(file_name)
        if entry is None:
            raise click.ClickException(f"{path}: no such file at {revision.revision_identifier_ui}")
        click.echo(repo.stringify_files(entry), nl=False)


@main.command()
@click.argument("name")
@click.argument("local_file", type=click.File("rb"))
@click.argument("repo_path")
@click.option("--user", "-u", "user_id", required=True, help="User making the change.")
@click.option("--message", "-m", default=None, help="Commit comment.")
@click.option("--replace", is_flag=True, help="Overwrite the file if it already exists.")
@click.pass_context
def add(ctx, name, local_file, repo_path, user_id, message, replace):
    """Commit LOCAL_FILE to REPO_PATH in repository NAME."""
    from ._paths import normalize_path, split_path

    data = local_file.read()
    with _open_repo(ctx, name) as repo:
        try:
            txn = repo.get_transaction(user_id, message or f"Add {repo_path}")
            existing = None
            if replace:
                directory, file_name = split_path(normalize_path(repo_path))
                existing = repo.get_latest_revision().files_at_path(directory).get(file_name)
            if existing is not None:
                txn.replace(repo_path, data, None, existing.last_modified_revision)
            else:
                txn.add(repo_path, data)
        except ValueError as exc:
            raise click.ClickException(str(exc))
        repo.commit(txn)
        if txn.has_conflicts:
            for conflict in txn.conflicts:
                click.echo(f"Conflict: {conflict}", err=True)
            ctx.exit(1)
        _status(ctx, f"Committed {repo_path}")
        click.echo(txn.revision.revision_identifier_ui)


@main.command("checkout-command")
@click.argument("name")
@click.argument("revision_id")
@click.argument("group_name")
@click.option("--folder", default=None, help="Only check out this folder.")
@click.pass_context
def checkout_command(ctx, name, revision_id, group_name, folder):
    """Print the shell command that checks out NAME at REVISION_ID."""
    config = _config(ctx)
    try:
        click.echo(config.checkout_command(name, revision_id, group_name, folder))
    except ConfigurationError as exc:
        raise click.ClickException(str(exc))
