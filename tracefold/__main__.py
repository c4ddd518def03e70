from __future__ import annotations

import argparse
import builtins
import os
import runpy
import sys
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from loguru import logger

from tracefold.api import print_exception
from tracefold.config import RenderConfig, Style, get_default_config
from tracefold.errors import InvalidConfigurationError
from tracefold.hooks import excepthook_installed


@dataclass
class RunTarget:
    kind: str
    value: str
    argv: list[str]

    def describe(self) -> str:
        if self.kind == "module":
            return f"-m {self.value}"
        if self.kind == "command":
            return "-c <command>"
        return self.value


_RUNNER_FILES = frozenset({os.path.abspath(__file__), os.path.abspath(runpy.__file__)})


def _strip_runner_frames(exc: BaseException) -> BaseException:
    """Drop the leading traceback entries that belong to this runner and ``runpy``."""
    tb = exc.__traceback__
    while tb is not None and tb.tb_next is not None:
        filename = tb.tb_frame.f_code.co_filename
        if os.path.abspath(filename) not in _RUNNER_FILES:
            break
        tb = tb.tb_next
    return exc.with_traceback(tb)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tracefold",
        description=(
            "Run a Python program and render any uncaught exception as a folded exception tree.\n\n"
            "Examples:\n"
            "  python -m tracefold app.py --flag\n"
            "  python -m tracefold --style canonical -m mypkg.tool\n"
            "  python -m tracefold --show-ids -c 'raise ValueError(1)'"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-m", dest="module", help="Run a library module as a script")
    parser.add_argument("-c", dest="command", help="Run a program passed in as a string")
    parser.add_argument("--style", choices=[style.value for style in Style], help="Descriptor style")
    parser.add_argument(
        "--color",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Emit ANSI colours (default: TRACEFOLD_COLOR, else off)",
    )
    parser.add_argument("--no-fold", action="store_true", help="Print frames shared with the enclosing trace")
    parser.add_argument("--no-duplicates", action="store_true", help="Do not compress repeated frames")
    parser.add_argument("--max-duplicate-size", type=int, help="Largest repeating block to compress")
    parser.add_argument("--show-ids", action="store_true", help="Tag each exception with a number")
    parser.add_argument("--no-cache", action="store_true", help="Bypass the frame descriptor cache")
    parser.add_argument("--show-boot", action="store_true", help="Resolve standard-library frames fully")
    parser.add_argument(
        "--show-synthetic", action="store_true", help="Resolve lambdas, comprehensions and string code fully"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log tracefold's own diagnostics")
    parser.add_argument("target", nargs=argparse.REMAINDER, help="Script path followed by its arguments")
    return parser


def build_config(args: argparse.Namespace, base: RenderConfig | None = None) -> RenderConfig:
    config = RenderConfig.from_env(base=base if base is not None else get_default_config())
    changes: dict[str, Any] = {}
    if args.style is not None:
        changes["style"] = args.style
    if args.color is not None:
        changes["color_scheme_enabled"] = args.color
    if args.no_fold:
        changes["fold_enabled"] = False
    if args.no_duplicates:
        changes["check_duplicate_trace_enabled"] = False
    if args.max_duplicate_size is not None:
        changes["duplicate_trace_max_size"] = args.max_duplicate_size
    if args.show_ids:
        changes["throwable_id_visible"] = True
    if args.no_cache:
        changes["cache_enabled"] = False
    if args.show_boot:
        changes["boot_method_type_visible"] = True
    if args.show_synthetic:
        changes["synthesized_method_type_visible"] = True
    return config.replace(**changes) if changes else config


def resolve_target(parser: argparse.ArgumentParser, args: argparse.Namespace) -> RunTarget:
    rest = list(args.target)
    if args.module is not None and args.command is not None:
        parser.error("-m and -c are mutually exclusive")
    if args.module is not None:
        return RunTarget("module", args.module, [args.module, *rest])
    if args.command is not None:
        return RunTarget("command", args.command, ["-c", *rest])
    if not rest:
        parser.error("a script, -m module or -c command is required")
    return RunTarget("script", rest[0], rest)


def run_target(target: RunTarget) -> None:
    sys.argv = target.argv
    if target.kind == "module":
        runpy.run_module(target.value, run_name="__main__", alter_sys=True)
    elif target.kind == "command":
        code = compile(target.value, "<string>", "exec")
        exec(code, {"__name__": "__main__", "__builtins__": builtins})
    else:
        sys.path.insert(0, os.path.dirname(os.path.abspath(target.value)))
        runpy.run_path(target.value, run_name="__main__")


def _exit_code(exc: SystemExit) -> int:
    code = exc.code
    if code is None:
        return 0
    if isinstance(code, int):
        return code
    print(code, file=sys.stderr)
    return 1


def main(argv: Iterable[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if args.verbose else "WARNING")
    logger.enable("tracefold")

    try:
        config = build_config(args)
    except InvalidConfigurationError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2
    target = resolve_target(parser, args)
    logger.debug("running {} with {}", target.describe(), config)

    with excepthook_installed(config):
        try:
            run_target(target)
        except SystemExit as exc:
            return _exit_code(exc)
        except BaseException as exc:
            print_exception(_strip_runner_frames(exc), sys.stderr, config)
            return 130 if isinstance(exc, KeyboardInterrupt) else 1
        finally:
            sys.stdout.flush()
    return 0


if __name__ == "__main__":
    sys.exit(main())
