"""
Admin CLI for managing Kova projects and linked accounts.

Seeds and inspects the store the server reads from.
"""

import asyncio
import json
import os
import sys
import uuid

import click

from kova_common.models import Account, EnvironmentVariable, Project
from kova_persistence.sqlite_repository import SQLiteStore


def get_db_path() -> str:
    """Get the database path from environment variable or default."""
    return os.environ.get("KOVA_DB_PATH", "kova.db")


def get_store() -> SQLiteStore:
    """Get the store instance."""
    return SQLiteStore(get_db_path())


def run_async(coro):
    """Helper to run async functions in CLI commands."""
    return asyncio.run(coro)


def parse_env_pair(value: str) -> EnvironmentVariable:
    """Parse a KEY=VALUE option into an environment variable."""
    key, sep, env_value = value.partition("=")
    if not sep or not key:
        raise click.BadParameter(f"expected KEY=VALUE, got {value!r}")
    return EnvironmentVariable(key=key, value=env_value)


@click.group()
def cli():
    """Kova Admin - Manage projects and accounts."""
    pass


@cli.group()
def project():
    """Manage projects."""
    pass


@cli.group()
def account():
    """Manage linked accounts."""
    pass


# ============================================================================
# Project Commands
# ============================================================================


@project.command("create")
@click.option("--name", required=True, help="Project name")
@click.option("--user-id", required=True, help="Owner of the project")
@click.option("--repo-url", required=True, help="HTTPS clone URL of the repository")
@click.option("--domain", required=True, help="Domain the proxy routes to the service")
@click.option("--branch", default="main", show_default=True, help="Branch to deploy")
@click.option("--port", type=int, default=None, help="Container port of the app")
@click.option(
    "--env", "env_pairs", multiple=True, help="Build environment variable KEY=VALUE"
)
def project_create(
    name: str,
    user_id: str,
    repo_url: str,
    domain: str,
    branch: str,
    port: int | None,
    env_pairs: tuple[str, ...],
):
    """Create a new project."""
    try:
        env_variables = [parse_env_pair(pair) for pair in env_pairs]
    except click.BadParameter as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)

    async def create():
        store = get_store()
        await store.initialize()

        try:
            project_obj = Project(
                id=str(uuid.uuid4()),
                name=name,
                user_id=user_id,
                repository_url=repo_url,
                domain=domain,
                branch=branch,
                port=port,
                env_variables=env_variables,
            )
            await store.create_project(project_obj)

            click.echo("✓ Project created successfully")
            click.echo(f"  ID:     {project_obj.id}")
            click.echo(f"  Name:   {project_obj.name}")
            click.echo(f"  Domain: {project_obj.domain}")

        finally:
            await store.close()

    run_async(create())


@project.command("list")
@click.option("--user-id", default=None, help="Only list projects of this user")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def project_list(user_id: str | None, json_output: bool):
    """List projects."""

    async def list_projects():
        store = get_store()
        await store.initialize()

        try:
            projects = await store.list_projects(user_id)

            if json_output:
                click.echo(json.dumps([p.to_dict() for p in projects], indent=2))
                return

            if not projects:
                click.echo("No projects found.")
                return

            click.echo(f"\n{'ID':<38} {'Name':<20} {'Domain':<30} {'Status':<10}")
            click.echo("-" * 100)
            for p in projects:
                click.echo(
                    f"{p.id:<38} {p.name:<20} {p.domain:<30} "
                    f"{p.deployment_status.value:<10}"
                )
            click.echo()

        finally:
            await store.close()

    run_async(list_projects())


@project.command("get")
@click.argument("project_id")
def project_get(project_id: str):
    """Get project details by ID."""

    async def get_project():
        store = get_store()
        await store.initialize()

        try:
            project_obj = await store.get_project_by_id(project_id)
            if not project_obj:
                click.echo(f"Error: Project not found: {project_id}", err=True)
                sys.exit(1)

            click.echo("\nProject Details:")
            click.echo(f"  ID:         {project_obj.id}")
            click.echo(f"  Name:       {project_obj.name}")
            click.echo(f"  Owner:      {project_obj.user_id}")
            click.echo(f"  Repository: {project_obj.repository_url}")
            click.echo(f"  Branch:     {project_obj.branch}")
            click.echo(f"  Domain:     {project_obj.domain}")
            click.echo(f"  Status:     {project_obj.deployment_status.value}")
            for env in project_obj.env_variables:
                click.echo(f"  Env:        {env.key}={env.to_dict()['value']}")
            click.echo()

        finally:
            await store.close()

    run_async(get_project())


# ============================================================================
# Account Commands
# ============================================================================


@account.command("create")
@click.option("--user-id", required=True, help="Owner of the account")
@click.option("--github-username", required=True, help="GitHub username")
@click.option(
    "--token",
    required=True,
    envvar="KOVA_GITHUB_TOKEN",
    help="Access token used for cloning (or KOVA_GITHUB_TOKEN)",
)
def account_create(user_id: str, github_username: str, token: str):
    """Link a source-control account to a user."""

    async def create():
        store = get_store()
        await store.initialize()

        try:
            account_obj = Account(
                id=str(uuid.uuid4()),
                user_id=user_id,
                github_username=github_username,
                access_token=token,
            )
            await store.create_account(account_obj)

            click.echo("✓ Account linked successfully")
            click.echo(f"  ID:       {account_obj.id}")
            click.echo(f"  User:     {account_obj.user_id}")
            click.echo(f"  Username: {account_obj.github_username}")

        finally:
            await store.close()

    run_async(create())


@account.command("list")
@click.argument("user_id")
def account_list(user_id: str):
    """List the linked accounts of a user."""

    async def list_accounts():
        store = get_store()
        await store.initialize()

        try:
            accounts = await store.get_accounts_for_user(user_id)
            if not accounts:
                click.echo(f"No accounts found for user {user_id}.")
                return

            click.echo(f"\n{'ID':<38} {'Username':<30}")
            click.echo("-" * 70)
            for a in accounts:
                click.echo(f"{a.id:<38} {a.github_username:<30}")
            click.echo()

        finally:
            await store.close()

    run_async(list_accounts())


if __name__ == "__main__":
    cli()
