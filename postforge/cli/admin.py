"""CLI commands for operating a PostForge deployment."""

import argparse
import asyncio
import secrets
import sys

import structlog

logger = structlog.get_logger(__name__)


def generate_secrets() -> None:
    """Print fresh values for the secrets the API requires."""
    print(f"POSTFORGE_API_ACCESS_TOKEN_SECRET={secrets.token_urlsafe(48)}")
    print(f"POSTFORGE_API_REFRESH_TOKEN_SECRET={secrets.token_urlsafe(48)}")
    print(f"POSTFORGE_API_ENCRYPTION_KEY={secrets.token_hex(32)}")


async def list_users() -> None:
    """List all users in the database."""
    import postforge

    await postforge.configure()
    repo = await postforge.get_repository()

    try:
        rows = await repo.list_users()
    finally:
        await repo.close()

    if not rows:
        print("No users found")
        return

    print(f"{'ID':<6} {'Email':<36} {'Verified':<9} {'Created':<20} {'Last Login':<20}")
    print("-" * 95)
    for row in rows:
        verified_str = "Yes" if row["email_verified"] else "No"
        created_str = row["created_at"][:19] if row["created_at"] else "Unknown"
        last_login_str = row["last_login_at"][:19] if row["last_login_at"] else "Never"
        print(
            f"{row['id']:<6} {row['email']:<36} {verified_str:<9} "
            f"{created_str:<20} {last_login_str:<20}"
        )


async def revoke_sessions(email: str) -> bool:
    """
    Sign a user out of every session.

    Args:
        email: Account email (case-insensitive)

    Returns:
        True if the user exists, False otherwise
    """
    import postforge

    await postforge.configure()
    repo = await postforge.get_repository()

    try:
        user = await repo.find_user_by_email(email.strip().lower())
        if user is None:
            print(f"Error: User '{email}' not found", file=sys.stderr)
            return False
        count = await repo.delete_user_sessions(user["id"])
    finally:
        await repo.close()

    print(f"Revoked {count} session(s) for '{user['email']}'")
    logger.info("sessions_revoked_via_cli", user_id=user["id"], count=count)
    return True


async def purge_sessions() -> int:
    """Delete expired session rows. Returns the number removed."""
    import postforge

    await postforge.configure()
    repo = await postforge.get_repository()

    try:
        count = await repo.delete_expired_sessions()
    finally:
        await repo.close()

    print(f"Purged {count} expired session(s)")
    return count


def main() -> None:
    """Main entry point for admin CLI commands."""
    parser = argparse.ArgumentParser(
        prog="postforge-admin",
        description="PostForge administration commands",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser(
        "generate-secrets",
        help="Print new values for the required secrets",
        description="Generate token signing secrets and the API-key encryption key",
    )

    subparsers.add_parser(
        "list-users",
        help="List all users",
        description="Display all users in the database",
    )

    revoke_parser = subparsers.add_parser(
        "revoke-sessions",
        help="Sign a user out everywhere",
        description="Delete every refresh-token session of a user",
    )
    revoke_parser.add_argument(
        "--email",
        "-e",
        required=True,
        help="Email of the account",
    )

    subparsers.add_parser(
        "purge-sessions",
        help="Delete expired sessions",
        description="Remove session rows whose refresh token has expired",
    )

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.command == "generate-secrets":
        generate_secrets()
        sys.exit(0)
    elif args.command == "list-users":
        asyncio.run(list_users())
        sys.exit(0)
    elif args.command == "revoke-sessions":
        success = asyncio.run(revoke_sessions(args.email))
        sys.exit(0 if success else 1)
    elif args.command == "purge-sessions":
        asyncio.run(purge_sessions())
        sys.exit(0)


if __name__ == "__main__":
    main()
