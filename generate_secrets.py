#!/usr/bin/env python3
"""
Generate secure secrets for CFB Pick'em
Run this script to generate SECRET_KEY and the ADMIN_TOKEN used by /admin
"""

import secrets


def generate_secrets():
    """Generate secure random keys for the application"""
    print("🔐 Generating secure secrets for CFB Pick'em...")
    print("=" * 50)

    print(f"SECRET_KEY={secrets.token_urlsafe(32)}")
    print(f"ADMIN_TOKEN={secrets.token_urlsafe(32)}")

    print("=" * 50)
    print("📝 Copy these values to your .env file")
    print("⚠️  Keep these secrets secure and never commit them to version control!")


if __name__ == "__main__":
    generate_secrets()
