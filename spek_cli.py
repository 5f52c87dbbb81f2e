import asyncio
import dataclasses
import importlib.util
import logging
import sys
from pathlib import Path

from spek import Suite, SpecRunner, LoggingReporter, SpekError, load_config
from spek.spek_address import parse_target, node_at_line

USAGE = "usage: spek_cli.py <file>[<address>|:<line>] ... [-r|--random] [--seed N] [--config PATH]"


def load_suite(file_path: str) -> Suite:
    """Import a spec file; it must define a ``suite`` or a ``spec(suite)`` function."""
    p = Path(file_path)
    if not p.is_file():
        raise SpekError(f"file not found: {file_path}")
    module_spec = importlib.util.spec_from_file_location(f"spek_spec_{p.stem}", p)
    module = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(module)

    suite = getattr(module, "suite", None)
    if isinstance(suite, Suite):
        if suite.source is None:
            suite.source = str(p)
        return suite
    spec_fn = getattr(module, "spec", None)
    if callable(spec_fn):
        suite = Suite(source=str(p))
        suite.build(spec_fn)
        return suite
    raise SpekError(f"{file_path} defines neither a `suite` nor a `spec(suite)` function")


def parse_args(argv):
    targets, toggles, seed, config_path = [], 0, None, None
    args = list(argv)
    while args:
        arg = args.pop(0)
        if arg in ("-r", "--random"):
            # Each flag flips the default, so passing it twice restores it.
            toggles += 1
        elif arg == "--seed":
            if not args:
                raise SpekError("--seed needs a value")
            try:
                seed = int(args.pop(0))
            except ValueError:
                raise SpekError("--seed must be an integer")
        elif arg == "--config":
            if not args:
                raise SpekError("--config needs a path")
            config_path = args.pop(0)
        elif arg.startswith("-"):
            raise SpekError(f"unknown option {arg}")
        else:
            targets.append(parse_target(arg))
    if not targets:
        raise SpekError(USAGE)
    files = {t.file for t in targets}
    if len(files) != 1 or None in files:
        raise SpekError("all targets must name the same spec file")
    return targets, toggles, seed, config_path


async def main(argv=None) -> int:
    """Run one spec file and return the process exit status."""
    try:
        targets, toggles, seed, config_path = parse_args(sys.argv[1:] if argv is None else argv)
        config = load_config(config_path)
        for _ in range(toggles):
            config = config.toggled_random()
        if seed is not None:
            config = dataclasses.replace(config, seed=seed)
        logging.basicConfig(level=config.log_level, format="%(levelname)s %(name)s: %(message)s")

        file = targets[0].file
        suite = load_suite(file)
        only = []
        for t in targets:
            if t.line is not None:
                only.append(node_at_line(suite.root, t.line, file))
            elif t.address is not None:
                only.append(t.address)
    except SpekError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    runner = SpecRunner(suite, config, reporter=LoggingReporter())
    try:
        report = await runner.run(only or None)
    except SpekError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    finally:
        runner.cancel_abandoned()

    for result in report.results:
        print(f"{result.status:>8} {result.location} {result.description}")
    for result in report.results:
        if not result.ok:
            print(result.format_error(), file=sys.stderr)
    for error in report.context_errors:
        print(error.format_error(), file=sys.stderr)
    print(report.format_summary())
    return 0 if report.ok else 1


if __name__ == "__main__":
    try:
        raise SystemExit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nInterrupted.")
        raise SystemExit(130)
