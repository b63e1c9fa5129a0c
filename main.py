import argparse
import sys

from examforge.cli.attempt_commands import handle_grade, handle_info, handle_take, register_attempt_commands
from examforge.cli.package_commands import handle_export, handle_serve, register_package_commands
from examforge.config import configure_logging, load_config

HANDLERS = {
    "info": handle_info,
    "take": handle_take,
    "grade": handle_grade,
    "export": handle_export,
    "serve": handle_serve,
}


def build_parser():
    parser = argparse.ArgumentParser(description="ExamForge CLI.")
    parser.add_argument("--config", default="config.yaml", help="Path to config.yaml.")
    subparsers = parser.add_subparsers(dest="command", required=True)
    register_attempt_commands(subparsers)
    register_package_commands(subparsers)
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    config = load_config(args.config)
    configure_logging(config)

    return HANDLERS[args.command](config, args) or 0


if __name__ == "__main__":
    sys.exit(main())
