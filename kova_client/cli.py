import argparse
import json
import os
import sys

from .client import KovaClientError, deploy_project, get_project_status


def get_server_url() -> str:
    """
    Get the Kova server URL from environment variable or use default.

    Returns:
        Server URL string

    Environment variables:
    - KOVA_SERVER_URL: Custom server URL
    """
    return os.environ.get("KOVA_SERVER_URL", "http://localhost:8080")


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the Kova CLI."""
    parser = argparse.ArgumentParser(description="Kova CLI")
    subparsers = parser.add_subparsers(dest="command")

    # kova deploy PROJECT_ID
    deploy_parser = subparsers.add_parser("deploy", help="Queue a deployment")
    deploy_parser.add_argument("project_id", help="Project to deploy")

    # kova status PROJECT_ID [--json]
    status_parser = subparsers.add_parser(
        "status", help="Show the deployment status of a project"
    )
    status_parser.add_argument("project_id", help="Project to inspect")
    status_parser.add_argument(
        "--json", dest="json_output", action="store_true", help="Output as JSON"
    )

    args = parser.parse_args(argv)
    server_url = get_server_url()

    try:
        if args.command == "deploy":
            result = deploy_project(args.project_id, server_url)
            print(f"Deployment of {result['project_id']} queued")
            return 0

        if args.command == "status":
            project = get_project_status(args.project_id, server_url)
            if args.json_output:
                print(json.dumps(project, indent=2))
            else:
                print(f"{project['name']} ({project['domain']}): {project['deployment_status']}")
            return 0
    except KovaClientError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
