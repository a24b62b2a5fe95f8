"""Environment loading and validation.

Goals:
- Ensure `.env` is loaded at runtime (not just examples).
- Fail fast with clear guidance if `.env` is missing or incomplete.
- Never print secrets.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass

from dotenv import load_dotenv


@dataclass(frozen=True)
class EnvStatus:
    env_path: str
    env_example_path: str
    loaded: bool


REQUIRED_ENV_VARS = [
    "FLOWPAY_RPC_URL",
]

# Each group is all-or-nothing: a partial set is almost always a typo.
CREDENTIAL_GROUPS = {
    "on-chain execution": [
        "FLOWPAY_EXECUTION_PRIVATE_KEY",
        "FLOWPAY_INTENT_CONTRACT_ADDRESS",
    ],
    "off-ramp payout": [
        "FLOWPAY_PAYOUT_API_KEY",
        "FLOWPAY_PAYOUT_API_URL",
    ],
}


def load_env_or_exit(env_path: str = ".env", env_example_path: str = ".env.example") -> EnvStatus:
    """Load `.env` (if present) and validate required keys exist.

    This should be called at process start (CLI entrypoint). Unlike a missing
    variable, a missing `.env` file is fine when the environment is already
    populated (containers, systemd units).
    """
    loaded = False
    if os.path.exists(env_path):
        loaded = load_dotenv(dotenv_path=env_path, override=False)

    missing = [k for k in REQUIRED_ENV_VARS if not os.environ.get(k)]
    if missing:
        _print_env_incomplete(missing, env_path=env_path, env_example_path=env_example_path)
        raise SystemExit(2)

    for group, keys in CREDENTIAL_GROUPS.items():
        present = [k for k in keys if os.environ.get(k)]
        if present and len(present) != len(keys):
            _print_credentials_incomplete(group, keys, env_path=env_path)
            raise SystemExit(2)

    if not any(os.environ.get(k) for keys in CREDENTIAL_GROUPS.values() for k in keys):
        _print_no_backend_warning()

    return EnvStatus(env_path=env_path, env_example_path=env_example_path, loaded=loaded)


def _print_env_incomplete(missing: list[str], *, env_path: str, env_example_path: str) -> None:
    sys.stderr.write("\nERROR: environment is missing required variables.\n")
    sys.stderr.write(f"Checked: process environment and {env_path}\n")
    sys.stderr.write("Missing:\n")
    for k in missing:
        sys.stderr.write(f"  - {k}\n")
    if os.path.exists(env_example_path):
        sys.stderr.write(
            f"\nFound `{env_example_path}`. Create your `.env` by copying it:\n\n"
            f"  cp {env_example_path} {env_path}\n"
            f"  # then edit {env_path}\n"
        )
    sys.stderr.write("\n")


def _print_credentials_incomplete(group: str, keys: list[str], *, env_path: str) -> None:
    sys.stderr.write(f"\nERROR: Partial {group} credentials detected.\n")
    sys.stderr.write(f"File: {env_path}\n")
    sys.stderr.write("If you set any of these, you must set all of them:\n")
    for k in keys:
        sys.stderr.write(f"  - {k}\n")
    sys.stderr.write("\n")


def _print_no_backend_warning() -> None:
    sys.stderr.write("\nWARNING: No execution backend configured.\n")
    sys.stderr.write(
        "Intents will be evaluated, but every dispatch will fail until on-chain\n"
        "execution or off-ramp payout credentials are set.\n\n"
    )
