"""
Abstract store interfaces for project and account persistence.

This module defines the contract that any database implementation must follow,
allowing easy swapping between SQLite, PostgreSQL, etc. The build worker only
depends on these narrow interfaces.
"""

from abc import ABC, abstractmethod

from .models import Account, DeploymentStatus, Project


class ProjectStore(ABC):
    """
    Abstract base class for project storage operations.

    Implementations must provide async-safe access to project data
    and handle their own connection management.
    """

    @abstractmethod
    async def create_project(self, project: Project) -> None:
        """
        Create a new project in the database.

        Args:
            project: Project object to persist

        Raises:
            Exception: If project with same ID already exists
        """
        pass

    @abstractmethod
    async def get_project_by_id(self, project_id: str) -> Project | None:
        """
        Retrieve a project by its ID.

        Args:
            project_id: ID of the project to retrieve

        Returns:
            Project object if found, None otherwise
        """
        pass

    @abstractmethod
    async def update_deployment_status(
        self, project_id: str, status: DeploymentStatus
    ) -> None:
        """
        Update a project's deployment status.

        Args:
            project_id: ID of the project to update
            status: New deployment status

        Raises:
            ProjectNotFoundError: If project not found
        """
        pass

    @abstractmethod
    async def list_projects(self, user_id: str | None = None) -> list[Project]:
        """
        List projects, optionally restricted to one user.

        Args:
            user_id: Optional owner to filter by

        Returns:
            List of Project objects
        """
        pass

    @abstractmethod
    async def initialize(self) -> None:
        """
        Initialize the database (create tables, etc.).

        Called once at application startup.
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """
        Close database connections and cleanup resources.

        Called at application shutdown.
        """
        pass


class AccountStore(ABC):
    """Abstract base class for linked account storage operations."""

    @abstractmethod
    async def create_account(self, account: Account) -> None:
        """
        Create a new account in the database.

        Args:
            account: Account object to persist (including its access token)
        """
        pass

    @abstractmethod
    async def get_accounts_for_user(self, user_id: str) -> list[Account]:
        """
        List the accounts of a user without their access tokens.

        Args:
            user_id: Owner of the accounts

        Returns:
            List of Account objects with empty access_token
        """
        pass

    @abstractmethod
    async def get_accounts_with_credentials_for_user(
        self, user_id: str
    ) -> list[Account]:
        """
        List the accounts of a user including their access tokens.

        Args:
            user_id: Owner of the accounts

        Returns:
            List of Account objects with access_token populated
        """
        pass
