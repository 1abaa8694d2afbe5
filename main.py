# main.py
import argparse
import asyncio
import sys
from logger import get_logger
import config
from contribute import run_contribution
from diagnostics import check_configuration, check_gas_settings
from scheduler import EXIT_FAILURE, EXIT_SUCCESS, RunMode
from setup_wizard import offer_configuration_check, run_setup

logger = get_logger("Main", config.LOG_LEVEL)

ASCII_BANNER = r"""
    _  __     __ _    __  __   ____            _        _ _           _
   / \ \ \   / // \   \ \/ /  / ___|___  _ __ | |_ _ __(_) |__  _   _| |_ ___
  / _ \ \ \ / // _ \   \  /  | |   / _ \| '_ \| __| '__| | '_ \| | | | __/ _ \
 / ___ \ \ V // ___ \  /  \  | |__| (_) | | | | |_| |  | | |_) | |_| | ||  __/
/_/   \_\ \_//_/   \_\/_/\_\  \____\___/|_| |_|\__|_|  |_|_.__/ \__,_|\__\___|
"""


def print_banner() -> None:
    print(ASCII_BANNER)


def menu() -> None:
    print("Select an action:")
    print("1. Start contribution (wait for START_TIME)")
    print("2. Start contribution immediately")
    print("3. Check configuration")
    print("4. Check gas settings")
    print("5. Run setup")
    print("6. Exit")


async def run_command(command: str) -> int:
    """Runs one action and returns its exit code."""
    if command == "run":
        logger.info("Starting scheduled contribution...")
        return await run_contribution(RunMode.SCHEDULED)
    if command == "immediate":
        logger.info("Starting immediate contribution...")
        return await run_contribution(RunMode.IMMEDIATE)
    if command == "check":
        return EXIT_SUCCESS if await check_configuration() else EXIT_FAILURE
    if command == "gas":
        return EXIT_SUCCESS if await check_gas_settings() else EXIT_FAILURE
    if command == "setup":
        if not run_setup():
            return EXIT_SUCCESS
        return EXIT_SUCCESS if await offer_configuration_check() else EXIT_FAILURE
    raise ValueError(f"Unknown command: {command}")


MENU_COMMANDS = {"1": "run", "2": "immediate", "3": "check", "4": "gas", "5": "setup"}


async def main_loop() -> None:
    print_banner()
    while True:
        try:
            menu()
            choice = input("Enter action number: ").strip()
            if choice == "6":
                logger.info("Exiting...")
                sys.exit(0)
            command = MENU_COMMANDS.get(choice)
            if command is None:
                print("Invalid input, please try again.\n")
                continue
            code = await run_command(command)
            if command in ("run", "immediate"):
                sys.exit(code)
        except Exception as e:
            logger.error(f"Error in main loop: {e}")
            print("An error occurred, please restart the script.\n")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Submit AVAX contributions from a fleet of wallets.")
    parser.add_argument(
        "command",
        nargs="?",
        choices=["run", "immediate", "check", "gas", "setup"],
        help="action to run; without one an interactive menu is shown",
    )
    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = parse_args(argv)
    if args.command is None:
        asyncio.run(main_loop())
        return
    try:
        code = asyncio.run(run_command(args.command))
    except Exception as e:
        logger.critical(f"Fatal error: {e!r}")
        code = EXIT_FAILURE
    sys.exit(code)


if __name__ == "__main__":
    main()
