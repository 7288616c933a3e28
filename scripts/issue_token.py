"""
Mint a caller identity token for local testing of the entitlement endpoints.

Usage:
    python scripts/issue_token.py <user_id> [--minutes 60]
"""
import argparse
from datetime import timedelta

from rockid.core.config import settings
from rockid.core.jwt import create_access_token


def main() -> None:
    parser = argparse.ArgumentParser(description="Issue an access token for a user id")
    parser.add_argument("user_id", help="User id to put in the token subject")
    parser.add_argument("--minutes", type=int, default=settings.ACCESS_TOKEN_EXPIRE_MINUTES, help="Token lifetime")
    args = parser.parse_args()

    if not settings.SECRET_KEY:
        parser.error("SECRET_KEY is not set")

    print(create_access_token(args.user_id, expires_delta=timedelta(minutes=args.minutes)))


if __name__ == "__main__":
    main()
