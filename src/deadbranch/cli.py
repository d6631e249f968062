"""Command line interface for deadbranch."""

from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, NoReturn, Optional

import typer
from rich import print
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from deadbranch.backup import (
    BackupEntry,
    BackupFile,
    list_all_backups,
    list_repo_backups,
    list_unreadable_backups,
    write_backup,
)
from deadbranch.branch import BranchRecord, Reason, Verdict, classify_all, display_order, partition
from deadbranch.config import (
    SETTABLE_KEYS,
    Config,
    get_config_path,
    load_config,
    load_config_from_file,
    set_config_value,
    write_default_config,
)
from deadbranch.errors import DeadbranchError
from deadbranch.git import BranchScope, GitError, GitRepo
from deadbranch.log import setup_logging
from deadbranch.restore import RestoreSelector, resolve
from deadbranch.retention import prune, select_for_removal

app = typer.Typer(help="Clean up stale git branches safely")
backup_app = typer.Typer(help="List, restore and clean up branch backups")
config_app = typer.Typer(help="Manage configuration")
app.add_typer(backup_app, name="backup")
app.add_typer(config_app, name="config")
console = Console()

PathOption = Annotated[Path, typer.Option(help="Path to git repository")]
DaysOption = Annotated[
    Optional[int],
    typer.Option("--days", "-d", min=0, help="Only branches older than N days (default: from config or 30)"),
]
LocalOption = Annotated[bool, typer.Option("--local", help="Only local branches")]
RemoteOption = Annotated[bool, typer.Option("--remote", help="Only remote branches")]

CLEAN_PANEL = Panel(
    "[green]Your branches are clean ✨[/green]",
    style="green",
    padding=(0, 2),
    expand=False,
)


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Show debug logging")] = False,
) -> None:
    """Clean up stale git branches safely."""
    setup_logging("DEBUG" if verbose else "WARNING")


def fail(err: Exception) -> NoReturn:
    """Print an error and exit with status 1."""
    print(f"[red]Error:[/red] {escape(str(err))}")
    raise typer.Exit(code=1) from err


def confirm(prompt: str) -> bool:
    """Ask a yes/no question, defaulting to no."""
    try:
        answer = input(f"{prompt} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() == "y"


def confirm_remote_deletion(count: int) -> bool:
    """Ask the user to type the exact phrase before deleting remote branches."""
    branch_word = pluralize_branch(count)
    expected = f"delete {count} remote {branch_word}"

    console.print()
    console.print(f"[bold yellow]⚠  WARNING: You are about to delete remote {branch_word}![/bold yellow]")
    console.print()
    console.print("This action:")
    console.print("  • [red]Cannot be undone[/red] easily")
    console.print("  • Will [red]affect[/red] all team members")
    console.print(f"  • Removes {branch_word} from the remote [red]permanently[/red]")
    console.print()
    console.print(f'To confirm, type exactly: [yellow]"{expected}"[/yellow]')

    try:
        answer = input("Type confirmation: ")
    except EOFError:
        return False
    return answer.strip() == expected


def get_repo(path: Path) -> GitRepo:
    """Get git repository instance."""
    try:
        return GitRepo(path)
    except GitError as err:
        fail(err)


def get_config() -> Config:
    """Load configuration or exit with an error."""
    try:
        return load_config()
    except DeadbranchError as err:
        fail(err)


def get_scope(local: bool, remote: bool) -> BranchScope:
    """Turn --local/--remote flags into a branch scope."""
    if local and remote:
        fail(typer.BadParameter("--local and --remote cannot be used together"))
    if local:
        return BranchScope.LOCAL
    if remote:
        return BranchScope.REMOTE
    return BranchScope.ALL


def get_default_branch(config: Config, repo: GitRepo) -> str:
    """Default branch from config, or detected from the repository."""
    default_branch = config.branches.default_branch or repo.get_default_branch()
    console.print(f"[dim]Using '{escape(default_branch)}' as the default branch for merge detection[/dim]")
    return default_branch


def pluralize_branch(count: int) -> str:
    """Pluralize "branch" for a count."""
    return "branch" if count == 1 else "branches"


def status_display(branch: BranchRecord) -> str:
    """Color-coded merge status."""
    return "[green]merged[/green]" if branch.is_merged else "[bright_yellow]unmerged[/bright_yellow]"


def cleanable_display(verdict: Verdict) -> str:
    """Cleanable column: a check mark, or the reason the branch is kept."""
    if verdict.eligible:
        return "[green]✅[/green]"
    return f"[yellow]✋ {verdict.reason.value}[/yellow]"


def create_branch_table(title: str, with_cleanable: bool = False) -> Table:
    """Create a table with standard branch columns."""
    table = Table(
        title=title,
        show_header=True,
        header_style="bold",
        title_style="bold blue",
        show_edge=True,
    )
    table.add_column("Branch", style="cyan", no_wrap=True)
    table.add_column("Age", style="yellow", justify="right", no_wrap=True)
    table.add_column("Status", style="magenta", justify="center", no_wrap=True)
    table.add_column("Last Commit", no_wrap=True)
    if with_cleanable:
        table.add_column("Cleanable?", justify="center", no_wrap=True)
    return table


def add_branch_row(table: Table, branch: BranchRecord, now: datetime, verdict: Optional[Verdict] = None) -> None:
    """Add a branch to a table created by create_branch_table."""
    display_name = escape(branch.name)
    if branch.is_current:
        display_name = f"{display_name} [turquoise2](current)[/turquoise2]"
    row = [
        display_name,
        branch.format_age(now),
        status_display(branch),
        branch.last_commit_time.astimezone().strftime("%Y-%m-%d"),
    ]
    if verdict is not None:
        row.append(cleanable_display(verdict))
    table.add_row(*row)


def show_verdicts(verdicts: list[Verdict], title: str, now: datetime) -> None:
    """Display verdicts as a table with a Cleanable column."""
    table = create_branch_table(title, with_cleanable=True)
    for verdict in sorted(verdicts, key=lambda v: display_order(v.branch)):
        add_branch_row(table, verdict.branch, now, verdict)
    console.print(table)


def show_branches(branches: list[BranchRecord], title: str, now: datetime) -> None:
    """Display branches as a table."""
    table = create_branch_table(title)
    for branch in sorted(branches, key=display_order):
        add_branch_row(table, branch, now)
    console.print(table)


@app.command("list")
def list_command(
    path: PathOption = Path("."),
    days: DaysOption = None,
    local: LocalOption = False,
    remote: RemoteOption = False,
    merged: Annotated[bool, typer.Option("--merged", help="Only merged branches")] = False,
    show_all: Annotated[bool, typer.Option("--all", "-a", help="Also show protected, excluded and recent branches")] = False,
) -> None:
    """List stale branches and whether `clean` would delete them."""
    config = get_config()
    repo = get_repo(path)
    scope = get_scope(local, remote)

    try:
        default_branch = get_default_branch(config, repo)
        branches = repo.list_branches(default_branch, scope)
        verdicts = classify_all(branches, config.to_policy(days), default_branch)
    except (DeadbranchError, GitError) as err:
        fail(err)

    # Stale branches are the ones that are only held back by their merge status, if at all
    if not show_all:
        verdicts = [v for v in verdicts if v.reason in (Reason.ELIGIBLE, Reason.UNMERGED)]
    if merged:
        verdicts = [v for v in verdicts if v.branch.is_merged]

    local_verdicts = [v for v in verdicts if not v.branch.is_remote]
    remote_verdicts = [v for v in verdicts if v.branch.is_remote]

    now = datetime.now(timezone.utc)
    if local_verdicts:
        show_verdicts(local_verdicts, "Local Branches", now)
    if remote_verdicts:
        show_verdicts(remote_verdicts, "Remote Branches", now)

    cleanable = [v.branch.name for v in verdicts if v.eligible]
    if cleanable:
        msg = "The following branches would be deleted if you run [dim]`deadbranch clean`[/dim] next:\n" + "\n".join(
            f"  [blue]{escape(name)}[/blue]" for name in cleanable
        )
        console.print(Panel(msg, title="Cleanable Branches", title_align="left", padding=(0, 2), expand=False))
    elif not verdicts:
        console.print(CLEAN_PANEL)


def print_dry_run(local_branches: list[BranchRecord], remote_branches: list[BranchRecord]) -> None:
    """Print the git commands a clean would run."""
    console.print()
    console.print("[bold yellow]Dry run[/bold yellow] - no branches will be deleted. Commands that would run:")
    for branch in local_branches:
        console.print(f"  git branch -D {escape(branch.name)}")
    for branch in remote_branches:
        console.print(f"  git push {escape(branch.remote_name or 'origin')} --delete {escape(branch.short_name)}")


def backup_branches(repo: GitRepo, branches: list[BranchRecord]) -> BackupFile:
    """Write the backup for a deletion batch, aborting the command if it fails."""
    entries = [BackupEntry(branch_name=b.short_name, sha=b.head_sha, source=b.name) for b in branches]
    try:
        return write_backup(entries, repo.get_repo_identifier(), working_dir=repo.working_dir)
    except (OSError, ValueError) as err:
        print(f"[red]Error:[/red] Could not write backup, no branches were deleted: {escape(str(err))}")
        raise typer.Exit(code=1) from err


def delete_batch(repo: GitRepo, branches: list[BranchRecord], kind: str) -> None:
    """Delete branches one by one and report the outcome."""
    console.print()
    console.print(f"Deleting {kind} {pluralize_branch(len(branches))}...")

    deleted = 0
    failed = 0
    for branch in branches:
        try:
            if branch.is_remote:
                repo.delete_remote_branch(branch)
            else:
                # Merge status was already checked against the default branch
                repo.delete_local_branch(branch.name, force=True)
        except GitError as err:
            console.print(f"  [red]✗[/red] {escape(branch.name)} ({escape(str(err))})")
            failed += 1
        else:
            console.print(f"  [green]✓[/green] {escape(branch.name)}")
            deleted += 1

    if failed:
        console.print(f"[yellow]Deleted {deleted} {kind} {pluralize_branch(deleted)}, {failed} failed[/yellow]")
    else:
        console.print(f"[green]Deleted {deleted} {kind} {pluralize_branch(deleted)}[/green]")


@app.command()
def clean(
    path: PathOption = Path("."),
    days: DaysOption = None,
    merged: Annotated[bool, typer.Option("--merged", help="Only delete merged branches (the default)")] = False,
    force: Annotated[bool, typer.Option("--force", "-f", help="Also delete unmerged branches (dangerous!)")] = False,
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Show what would be deleted without doing it")] = False,
    local: LocalOption = False,
    remote: RemoteOption = False,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompts")] = False,
) -> None:
    """Delete stale branches, writing a backup first."""
    config = get_config()
    repo = get_repo(path)
    scope = get_scope(local, remote)

    if scope is not BranchScope.LOCAL and repo.repo.remotes:
        try:
            repo.fetch_and_prune()
        except GitError as err:
            console.print(f"[yellow]Could not fetch remote, remote branch data may be stale: {escape(str(err))}[/yellow]")

    merged_only = merged or not force
    try:
        default_branch = get_default_branch(config, repo)
        branches = repo.list_branches(default_branch, scope)
        policy = config.to_policy(days, merged_only=merged_only, force_unmerged=not merged_only)
        eligible, _ = partition(classify_all(branches, policy, default_branch))
    except (DeadbranchError, GitError) as err:
        fail(err)

    if not eligible:
        console.print(CLEAN_PANEL)
        return

    local_branches = sorted((v.branch for v in eligible if not v.branch.is_remote), key=display_order)
    remote_branches = sorted((v.branch for v in eligible if v.branch.is_remote), key=display_order)
    now = datetime.now(timezone.utc)

    if local_branches:
        show_branches(local_branches, f"Local {pluralize_branch(len(local_branches)).capitalize()} to Delete", now)
    if remote_branches:
        show_branches(remote_branches, f"Remote {pluralize_branch(len(remote_branches)).capitalize()} to Delete", now)

    if dry_run:
        print_dry_run(local_branches, remote_branches)
        return

    if local_branches and not yes:
        console.print()
        if not confirm(f"Delete {len(local_branches)} local {pluralize_branch(len(local_branches))}?"):
            console.print("[yellow]Skipped local branch deletion[/yellow]")
            local_branches = []

    if remote_branches and not yes:
        if not confirm_remote_deletion(len(remote_branches)):
            console.print("[yellow]Skipped remote branch deletion[/yellow]")
            remote_branches = []

    if not local_branches and not remote_branches:
        console.print("\n[yellow]Operation cancelled[/yellow] 🛑")
        return

    # Backup before delete: nothing is removed unless the backup was written
    backup = backup_branches(repo, local_branches + remote_branches)

    if local_branches:
        delete_batch(repo, local_branches, "local")
    if remote_branches:
        delete_batch(repo, remote_branches, "remote")

    console.print(f"  [dim]↪ Backup: {escape(str(backup.path))}[/dim]")


def get_backup_repo_name(current: bool, repo_name: Optional[str], path: Path) -> Optional[str]:
    """Repository selected by --current or --repo, if any."""
    if current and repo_name:
        fail(typer.BadParameter("--current and --repo cannot be used together"))
    if current:
        return get_repo(path).get_repo_identifier()
    return repo_name


def backups_hint() -> None:
    """Explain where backups come from."""
    console.print()
    console.print("  [dim]↪ Backups are created automatically when running 'deadbranch clean'.[/dim]")


def create_backup_table(title: str) -> Table:
    """Create a table listing backup files."""
    table = Table(title=title, show_header=True, header_style="bold", title_style="bold blue", show_edge=True)
    table.add_column("Backup", style="cyan", no_wrap=True)
    table.add_column("Age", style="yellow", no_wrap=True)
    table.add_column("Branches", justify="right")
    return table


@backup_app.command("list")
def backup_list(
    current: Annotated[bool, typer.Option("--current", help="Only backups of the current repository")] = False,
    repo_name: Annotated[Optional[str], typer.Option("--repo", help="Only backups of this repository")] = None,
    path: PathOption = Path("."),
) -> None:
    """List backups."""
    target = get_backup_repo_name(current, repo_name, path)

    if target:
        backups = list_repo_backups(target)
        warn_unreadable_backups(target)
        if not backups:
            console.print(f"No backups found for repository '{escape(target)}'")
            backups_hint()
            return
        table = create_backup_table(f"Backups for {escape(target)}")
        for backup in backups:
            table.add_row(backup.filename, backup.format_age(), str(backup.branch_count))
        console.print(table)
        return

    all_backups = list_all_backups()
    if not all_backups:
        console.print("No backups found.")
        backups_hint()
        return

    table = Table(title="Backups", show_header=True, header_style="bold", title_style="bold blue", show_edge=True)
    table.add_column("Repository", style="cyan", no_wrap=True)
    table.add_column("Backups", justify="right")
    table.add_column("Latest", style="yellow")
    table.add_column("Branches", justify="right")
    for name, backups in sorted(all_backups.items()):
        table.add_row(
            escape(name),
            str(len(backups)),
            backups[0].format_age(),
            str(sum(b.branch_count for b in backups)),
        )
    console.print(table)


@backup_app.command("restore")
def backup_restore(
    branch: Annotated[str, typer.Argument(help="Name of the deleted branch")],
    path: PathOption = Path("."),
    from_backup: Annotated[
        Optional[str], typer.Option("--from", help="Restore from this backup file instead of the most recent one")
    ] = None,
    new_name: Annotated[Optional[str], typer.Option("--as", help="Restore under a different name")] = None,
    force: Annotated[bool, typer.Option("--force", "-f", help="Overwrite an existing branch")] = False,
) -> None:
    """Recreate a deleted branch from a backup."""
    repo = get_repo(path)
    repo_name = repo.get_repo_identifier()

    try:
        backups = list_repo_backups(repo_name, strict=True)
        if not backups:
            fail(DeadbranchError(f"No backups found for repository '{repo_name}'"))
        selector = RestoreSelector(
            branch_name=branch,
            explicit_backup_file=from_backup,
            new_name=new_name,
            overwrite=force,
        )
        target = resolve(selector, backups, repo.list_local_branch_names())
        repo.create_branch(target.target_name, target.sha, force=force)
    except (DeadbranchError, GitError) as err:
        fail(err)

    console.print(
        f"[green]✓[/green] Restored branch [cyan]{escape(target.target_name)}[/cyan] "
        f"at [yellow]{target.sha[:7]}[/yellow] from {target.backup.filename}"
    )


def warn_unreadable_backups(repo_name: str) -> None:
    """Point out backup files that retention cannot remove because they don't parse."""
    unreadable = list_unreadable_backups(repo_name)
    if not unreadable:
        return
    console.print(
        f"[yellow]Skipped {len(unreadable)} unreadable backup file(s); they are never cleaned automatically. "
        "Check and remove them by hand:[/yellow]"
    )
    for path in unreadable:
        console.print(f"  [dim]{escape(str(path))}[/dim]")


@backup_app.command("clean")
def backup_clean(
    current: Annotated[bool, typer.Option("--current", help="Clean backups of the current repository")] = False,
    repo_name: Annotated[Optional[str], typer.Option("--repo", help="Clean backups of this repository")] = None,
    keep: Annotated[
        Optional[int], typer.Option("--keep", "-k", min=0, help="Number of backups to keep (default: from config or 10)")
    ] = None,
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Show what would be deleted without doing it")] = False,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt")] = False,
    path: PathOption = Path("."),
) -> None:
    """Delete old backups, keeping the most recent ones."""
    target = get_backup_repo_name(current, repo_name, path)
    if not target:
        fail(typer.BadParameter("Specify --current or --repo"))

    config = get_config()
    keep = config.backups.keep if keep is None else keep

    try:
        backups = list_repo_backups(target)
        warn_unreadable_backups(target)
        if not backups:
            console.print(f"No backups found for repository '{escape(target)}'")
            return
        to_remove = select_for_removal(backups, keep)
    except DeadbranchError as err:
        fail(err)

    if not to_remove:
        console.print(f"No old backups to clean (keeping {keep} most recent)")
        return

    table = create_backup_table(f"Backups to Delete for {escape(target)}")
    for backup in to_remove:
        table.add_row(backup.filename, backup.format_age(), str(backup.branch_count))
    console.print(table)

    if dry_run:
        console.print("[bold yellow]Dry run[/bold yellow] - no backups were deleted")
        return

    if not yes and not confirm(f"Delete {len(to_remove)} backup(s)?"):
        console.print("\n[yellow]Operation cancelled[/yellow] 🛑")
        return

    removed = prune(backups, keep)
    console.print(f"[green]Deleted {len(removed)} backup(s)[/green]")


@config_app.command("show")
def config_show() -> None:
    """Show current configuration."""
    config = get_config()
    path = get_config_path()

    table = Table(title="Configuration", show_header=True, header_style="bold", title_style="bold blue")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    table.add_row("general.default_days", str(config.general.default_days))
    table.add_row("branches.protected", escape(", ".join(config.branches.protected)) or "[dim](none)[/dim]")
    table.add_row(
        "branches.exclude_patterns", escape(", ".join(config.branches.exclude_patterns)) or "[dim](none)[/dim]"
    )
    table.add_row("branches.default_branch", escape(config.branches.default_branch or "") or "[dim](auto-detect)[/dim]")
    table.add_row("backups.keep", str(config.backups.keep))
    console.print(table)

    source = str(path) if path.exists() else f"{path} (not created, using defaults)"
    console.print(f"[dim]Config file: {escape(source)}[/dim]")


@config_app.command("set")
def config_set(
    key: Annotated[str, typer.Argument(help=f"Setting to change ({', '.join(SETTABLE_KEYS)})")],
    values: Annotated[list[str], typer.Argument(help="New value; list settings take several values")],
) -> None:
    """Change a setting in the config file."""
    try:
        set_config_value(key, values)
    except DeadbranchError as err:
        fail(err)
    console.print(f"[green]✓[/green] Set {escape(key)} = {escape(', '.join(values))}")


@config_app.command("init")
def config_init(
    force: Annotated[bool, typer.Option("--force", "-f", help="Overwrite an existing config file")] = False,
) -> None:
    """Create a config file with the default settings."""
    path = get_config_path()
    if path.exists() and not force:
        fail(DeadbranchError(f"Config file already exists: {path} (use --force to overwrite)"))
    write_default_config(path)
    console.print(f"[green]Created config file:[/green] {escape(str(path))}")


@config_app.command("edit")
def config_edit() -> None:
    """Open the config file in $EDITOR."""
    path = get_config_path()
    if not path.exists():
        write_default_config(path)

    typer.edit(filename=str(path))

    try:
        load_config_from_file(path)
    except DeadbranchError as err:
        fail(err)
    console.print("[green]Config file saved[/green]")


@config_app.command("reset")
def config_reset(
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt")] = False,
) -> None:
    """Reset configuration to defaults."""
    if not yes and not confirm("Reset configuration to defaults?"):
        console.print("Cancelled")
        return
    path = write_default_config()
    console.print(f"[green]Configuration reset to defaults[/green] ({escape(str(path))})")


if __name__ == "__main__":
    app()
