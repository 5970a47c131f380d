"""
SQLite implementation of the project and account stores.

Uses aiosqlite for async operations.
Can be easily replaced with PostgreSQL/MySQL implementations.
"""

from datetime import UTC, datetime

import aiosqlite

from kova_common.errors import ProjectNotFoundError
from kova_common.models import (
    Account,
    DeploymentStatus,
    EnvironmentVariable,
    Project,
)
from kova_common.repository import AccountStore, ProjectStore

_PROJECT_COLUMNS = (
    "id, name, user_id, repository_url, branch, domain, port, "
    "deployment_status, created_at, updated_at"
)


class SQLiteStore(ProjectStore, AccountStore):
    """
    SQLite-based store implementation.

    Uses a single database file with multiple tables:
    - projects: Stores deployable projects
    - env_variables: Ordered build environment of each project
    - accounts: Stores linked source-control accounts with access tokens
    """

    def __init__(self, db_path: str = "kova.db"):
        """
        Initialize the SQLite store.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get or create database connection."""
        if self._connection is None:
            self._connection = await aiosqlite.connect(self.db_path)
            # Enable foreign key constraints
            await self._connection.execute("PRAGMA foreign_keys = ON")
        return self._connection

    async def initialize(self) -> None:
        """
        Create database tables if they don't exist.

        Schema:
        - projects table: Project metadata and deployment status
        - env_variables table: Key/value pairs with position, foreign key to projects
        - accounts table: Linked accounts and access tokens per user
        """
        conn = await self._get_connection()

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS projects (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                user_id TEXT NOT NULL,
                repository_url TEXT NOT NULL,
                branch TEXT NOT NULL DEFAULT 'main',
                domain TEXT NOT NULL,
                port INTEGER,
                deployment_status TEXT NOT NULL DEFAULT 'pending',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_projects_user_id
            ON projects(user_id)
        """)

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS env_variables (
                project_id TEXT NOT NULL,
                position INTEGER NOT NULL,
                key TEXT NOT NULL,
                value TEXT NOT NULL,
                PRIMARY KEY (project_id, position),
                FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE
            )
        """)

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS accounts (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                github_username TEXT NOT NULL,
                access_token TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL
            )
        """)

        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_accounts_user_id
            ON accounts(user_id)
        """)

        await conn.commit()

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    # Project store

    async def create_project(self, project: Project) -> None:
        """
        Create a new project together with its environment variables.

        Args:
            project: Project object to persist
        """
        conn = await self._get_connection()

        await conn.execute(
            f"""
            INSERT INTO projects ({_PROJECT_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                project.id,
                project.name,
                project.user_id,
                project.repository_url,
                project.branch,
                project.domain,
                project.port,
                project.deployment_status.value,
                project.created_at.isoformat(),
                project.updated_at.isoformat(),
            ),
        )
        await conn.executemany(
            """
            INSERT INTO env_variables (project_id, position, key, value)
            VALUES (?, ?, ?, ?)
            """,
            [
                (project.id, position, env.key, env.value)
                for position, env in enumerate(project.env_variables)
            ],
        )
        await conn.commit()

    async def get_project_by_id(self, project_id: str) -> Project | None:
        """
        Retrieve a project with its environment variables.

        Args:
            project_id: ID of the project to retrieve

        Returns:
            Project object if found, None otherwise
        """
        conn = await self._get_connection()

        cursor = await conn.execute(
            f"SELECT {_PROJECT_COLUMNS} FROM projects WHERE id = ?",
            (project_id,),
        )
        row = await cursor.fetchone()

        if row is None:
            return None

        project = self._row_to_project(row)
        project.env_variables = await self._get_env_variables(project_id)
        return project

    async def update_deployment_status(
        self, project_id: str, status: DeploymentStatus
    ) -> None:
        """
        Update a project's deployment status.

        Args:
            project_id: ID of the project to update
            status: New deployment status

        Raises:
            ProjectNotFoundError: If no project has this ID
        """
        conn = await self._get_connection()

        cursor = await conn.execute(
            "UPDATE projects SET deployment_status = ?, updated_at = ? WHERE id = ?",
            (
                DeploymentStatus(status).value,
                datetime.now(UTC).isoformat(),
                project_id,
            ),
        )
        await conn.commit()

        if cursor.rowcount == 0:
            raise ProjectNotFoundError(project_id)

    async def list_projects(self, user_id: str | None = None) -> list[Project]:
        """
        List projects without their environment variables.

        Args:
            user_id: Optional owner to filter by

        Returns:
            List of Project objects ordered by creation time
        """
        conn = await self._get_connection()

        if user_id is None:
            cursor = await conn.execute(
                f"SELECT {_PROJECT_COLUMNS} FROM projects ORDER BY created_at"
            )
        else:
            cursor = await conn.execute(
                f"SELECT {_PROJECT_COLUMNS} FROM projects WHERE user_id = ? "
                "ORDER BY created_at",
                (user_id,),
            )

        rows = await cursor.fetchall()
        return [self._row_to_project(row) for row in rows]

    async def _get_env_variables(self, project_id: str) -> list[EnvironmentVariable]:
        conn = await self._get_connection()

        cursor = await conn.execute(
            """
            SELECT key, value
            FROM env_variables
            WHERE project_id = ?
            ORDER BY position
            """,
            (project_id,),
        )
        rows = await cursor.fetchall()
        return [EnvironmentVariable(key=key, value=value) for key, value in rows]

    @staticmethod
    def _row_to_project(row) -> Project:
        (
            project_id,
            name,
            user_id,
            repository_url,
            branch,
            domain,
            port,
            deployment_status,
            created_at_str,
            updated_at_str,
        ) = row
        return Project(
            id=project_id,
            name=name,
            user_id=user_id,
            repository_url=repository_url,
            branch=branch,
            domain=domain,
            port=port,
            deployment_status=DeploymentStatus(deployment_status),
            created_at=datetime.fromisoformat(created_at_str),
            updated_at=datetime.fromisoformat(updated_at_str),
        )

    # Account store

    async def create_account(self, account: Account) -> None:
        """
        Create a new account in the database.

        Args:
            account: Account object to persist
        """
        conn = await self._get_connection()

        await conn.execute(
            """
            INSERT INTO accounts (id, user_id, github_username, access_token, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                account.id,
                account.user_id,
                account.github_username,
                account.access_token,
                account.created_at.isoformat(),
            ),
        )
        await conn.commit()

    async def get_accounts_for_user(self, user_id: str) -> list[Account]:
        """
        List the accounts of a user with access tokens blanked out.

        Args:
            user_id: Owner of the accounts

        Returns:
            List of Account objects
        """
        accounts = await self.get_accounts_with_credentials_for_user(user_id)
        for account in accounts:
            account.access_token = ""
        return accounts

    async def get_accounts_with_credentials_for_user(
        self, user_id: str
    ) -> list[Account]:
        """
        List the accounts of a user including access tokens.

        Args:
            user_id: Owner of the accounts

        Returns:
            List of Account objects ordered by creation time
        """
        conn = await self._get_connection()

        cursor = await conn.execute(
            """
            SELECT id, user_id, github_username, access_token, created_at
            FROM accounts
            WHERE user_id = ?
            ORDER BY created_at
            """,
            (user_id,),
        )
        rows = await cursor.fetchall()

        accounts = []
        for row in rows:
            account_id, owner_id, github_username, access_token, created_at_str = row
            accounts.append(
                Account(
                    id=account_id,
                    user_id=owner_id,
                    github_username=github_username,
                    access_token=access_token,
                    created_at=datetime.fromisoformat(created_at_str),
                )
            )
        return accounts
