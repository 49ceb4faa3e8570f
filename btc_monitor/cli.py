"""CLI tool for LN Markets credential operations.

Usage:
    python -m btc_monitor.cli list-configs <email>
    python -m btc_monitor.cli test-config <email> <config-id>
"""

import asyncio
import sys

from btc_monitor.database import engine, create_db_and_tables
from btc_monitor.services.lnmarkets_client import check_credentials
from btc_monitor.services.storage import SQLStore
from btc_monitor.services.vault import CredentialVault
from btc_monitor.utils.logging import mask_secret, setup_logging


def _vault() -> CredentialVault:
    create_db_and_tables()
    return CredentialVault(SQLStore(engine))


def list_configs(email: str):
    """Print the user's configurations without secrets."""
    collection = _vault().retrieve(email)
    if not collection.configs:
        print("No LN Markets configurations.")
        return
    for config in collection.configs:
        default = " (default)" if config.id == collection.default_config_id else ""
        state = "active" if config.is_active else "inactive"
        print(
            f"{config.id}  {config.name}{default}  {config.credentials.network}  "
            f"{state}  key={mask_secret(config.credentials.key)}"
        )


def test_config(email: str, config_id: str):
    """Run the connectivity test for one stored configuration."""
    config = _vault().get(email, config_id)
    if config is None:
        print(f"Configuration '{config_id}' not found.")
        sys.exit(1)
    if not config.is_active:
        print(f"Configuration '{config.name}' is inactive.")
        sys.exit(1)

    result = asyncio.run(check_credentials(config.credentials))
    if result.success:
        print(f"OK: credentials for '{config.name}' are valid ({config.credentials.network}).")
    else:
        print(f"FAILED: {result.error}")
        sys.exit(1)


def main():
    setup_logging()
    if len(sys.argv) < 3:
        print("Usage: python -m btc_monitor.cli <command> <email> [config-id]")
        print("Commands: list-configs, test-config")
        sys.exit(1)

    command = sys.argv[1]
    if command == "list-configs":
        list_configs(sys.argv[2])
    elif command == "test-config" and len(sys.argv) >= 4:
        test_config(sys.argv[2], sys.argv[3])
    else:
        print(f"Unknown command or missing arguments: {command}")
        sys.exit(1)


if __name__ == "__main__":
    main()
