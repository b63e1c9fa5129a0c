"""
Package export and preview server CLI commands.
"""

from examforge.cli import load_test_or_report
from examforge.package import write_package


def register_package_commands(subparsers):
    """Register export and serve subcommands."""

    # export
    p = subparsers.add_parser("export", help="Write a SCORM 2004 package zip for a test.")
    p.add_argument("test_file", help="Path to the test definition JSON.")
    p.add_argument("--output", type=str, help="Output zip path.")

    # serve
    p = subparsers.add_parser("serve", help="Serve a test through the local web player.")
    p.add_argument("test_file", help="Path to the test definition JSON.")
    p.add_argument("--host", type=str, help="Bind address (default from config).")
    p.add_argument("--port", type=int, help="Port (default from config).")
    p.add_argument("--debug", action="store_true", help="Run Flask in debug mode.")


def handle_export(config, args):
    """Build the package zip and print where it was written."""
    test = load_test_or_report(args.test_file)
    if test is None:
        return 1
    try:
        path = write_package(test, config, output_path=getattr(args, "output", None))
    except OSError as e:
        print(f"Error: Could not write package: {e}")
        return 1
    print(f"[OK] SCORM package saved to: {path}")
    print(f"   Questions per attempt: {test.total_questions}")
    return 0


def handle_serve(config, args):
    """Run the Flask development server for the preview player."""
    test = load_test_or_report(args.test_file)
    if test is None:
        return 1

    from examforge.web.app import create_app

    server_cfg = config.get("server", {})
    host = args.host or server_cfg.get("host", "127.0.0.1")
    port = args.port or server_cfg.get("port", 5000)

    app = create_app(config, test)
    print(f"Serving '{test.title}' on http://{host}:{port}/api/test")
    app.run(host=host, port=port, debug=getattr(args, "debug", False))
    return 0
