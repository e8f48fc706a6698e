#!/usr/bin/env python3
"""
CLI tool for checking chatstream client configuration.
Validates client.yaml and prints the effective settings.
"""
import argparse
import sys

import yaml

from config_system.config_loader import ConfigLoader, ConfigValidationError


def validate_command(args):
    """Validate the client configuration file."""
    try:
        loader = ConfigLoader(args.config_root)
        loader.validate_all_configs()
        print("[OK] Client configuration is valid!")
        return True
    except ConfigValidationError as e:
        print(f"[ERROR] Configuration validation failed: {e}")
        return False


def show_command(args):
    """Print the effective configuration after environment overrides."""
    try:
        config = ConfigLoader(args.config_root).load_client_config()
        print(f"Chat endpoint: {config.chat_url}")
        print(yaml.safe_dump(config.model_dump(mode="json"), sort_keys=False), end="")
        return True
    except ConfigValidationError as e:
        print(f"[ERROR] Error loading config: {e}")
        return False


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="chatstream configuration CLI"
    )
    parser.add_argument(
        "--config-root",
        default="./config",
        help="Root directory for configuration files (default: ./config)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")
    subparsers.add_parser("validate", help="Validate client.yaml")
    subparsers.add_parser("show", help="Show the effective configuration")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        print("\nExamples:")
        print("  python cli_config.py validate")
        print("  python cli_config.py --config-root ./my-configs show")
        sys.exit(1)

    success = False
    if args.command == "validate":
        success = validate_command(args)
    elif args.command == "show":
        success = show_command(args)

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
