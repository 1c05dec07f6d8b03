# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""CLI entry point for Coderig."""

import argparse
import atexit
import json
import os
import sys

from . import __version__
from .context import background
from .errors import CoderigError, ConfigError, ParamError
from .tools.base import ToolResponse

# Services of the running process, shut down on exit
_services = None


def _cleanup_on_exit():
    """Stop shells and language servers."""
    global _services
    if _services is not None:
        services, _services = _services, None
        services.shutdown()


atexit.register(_cleanup_on_exit)


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="coderig",
        description="Coderig - tool execution core for a terminal coding agent",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  coderig -p "Where is the config file parsed?"
  echo '{"id": "1", "name": "ls", "input": {}}' | coderig --yes
  coderig -c ~/src/project -d

With no prompt, one JSON tool call per line is read from stdin:
  {"id": "call-1", "name": "view", "input": {"file_path": "main.py"}}
and each result envelope is printed as one JSON line.

Environment variables:
  ANTHROPIC_API_KEY, OPENAI_API_KEY, OPENROUTER_API_KEY
  CODERIG_LOG_LEVEL   Log level (debug, info, warn, error)
  CODERIG_DATA_DIR    Data directory
        """,
    )

    parser.add_argument(
        "--cwd",
        "-c",
        help="Working directory (default: current directory)",
    )

    parser.add_argument(
        "--debug",
        "-d",
        action="store_true",
        help="Enable debug logging",
    )

    parser.add_argument(
        "--config",
        help="Path to a .coderig.yaml file",
    )

    parser.add_argument(
        "--prompt",
        "-p",
        help="Run the coder agent once on this prompt and print the answer",
    )

    parser.add_argument(
        "--yes",
        "-y",
        action="store_true",
        help="Auto-approve every permission request",
    )

    parser.add_argument(
        "--version",
        "-v",
        action="version",
        version=f"Coderig {__version__}",
    )

    return parser.parse_args(argv)


def run_tool_loop(invoker, ctx, stdin=None, stdout=None):
    """Read JSON tool calls line by line and write JSON envelopes."""
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    for line in stdin:
        line = line.strip()
        if not line:
            continue
        try:
            envelope = invoker.invoke_json(ctx, line)
        except ParamError as error:
            envelope = ToolResponse.error(str(error))
        stdout.write(json.dumps(envelope.to_dict()) + "\n")
        stdout.flush()


def run_prompt(services, ctx, prompt):
    """Run the coder agent once and return its final answer."""
    from .agent import AgentRunner
    from .prompts import get_system_prompt
    from .tools.registry import ToolInvoker, build_coder_tools

    config = services.config
    agent_config = config.agent(config.default_agent)
    registry = build_coder_tools(services)
    runner = AgentRunner(
        client=services.client_factory(config.default_agent),
        invoker=ToolInvoker(registry),
        tool_definitions=registry.definitions(),
        system_prompt=get_system_prompt(config.default_agent, config),
        max_tokens=agent_config.max_tokens,
    )
    return runner.run(ctx, prompt)


def main(argv=None):
    """Main entry point."""
    global _services

    # Configure logging early, before anything else
    from .log_config import configure_logging, parse_log_level

    configure_logging()

    args = parse_arguments(argv)

    from .api_client import client_factory_for
    from .config import load_config
    from .tools.registry import Services, ToolInvoker, build_coder_tools
    from .ui import PermissionPrompt, Spinner, open_terminal, print_error, show_result_panel

    working_dir = os.path.abspath(args.cwd or os.getcwd())
    try:
        config = load_config(working_dir, debug=args.debug, config_path=args.config)
    except ConfigError as error:
        print_error(str(error))
        sys.exit(1)

    configure_logging(parse_log_level(config.log_level), config.data_path() / "logs")

    auto_approve = True if args.yes else None
    services = Services.create(config, client_factory_for(config), auto_approve=auto_approve)
    _services = services

    root = background()
    services.diagnostics.start_from_config(config, root)
    session = services.sessions.create(title="coderig")
    ctx, cancel = root.with_values(session_id=session.id).with_cancel()

    prompt = None
    terminal = None
    try:
        if not services.permissions.auto_approve:
            if not args.prompt and not sys.stdin.isatty():
                # stdin carries tool calls, so answers must come from the terminal
                terminal = open_terminal()
                if terminal is None:
                    raise ConfigError(
                        "permission prompts need a terminal when tool calls are piped in; use --yes"
                    )
            prompt = PermissionPrompt(services.permissions, input_stream=terminal)
            prompt.start()

        if args.prompt:
            # The spinner would redraw over permission panels
            if prompt is None:
                with Spinner("Working..."):
                    result = run_prompt(services, ctx, args.prompt)
            else:
                result = run_prompt(services, ctx, args.prompt)
            show_result_panel("Coderig", result.content)
        else:
            run_tool_loop(ToolInvoker(build_coder_tools(services)), ctx)
    except KeyboardInterrupt:
        cancel()
        print_error("Cancelled.")
        sys.exit(130)
    except CoderigError as error:
        print_error(str(error))
        sys.exit(1)
    finally:
        cancel()
        if prompt is not None:
            prompt.stop()
        if terminal is not None:
            terminal.close()
        _cleanup_on_exit()


if __name__ == "__main__":
    main()
