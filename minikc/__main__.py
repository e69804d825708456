import argparse, asyncio, json, sys

from . import debug
from .errors import KernelClientError
from .kernelspec import discover
from .paths import default_search_paths
from .provider import launch_kernel


async def _list_kernels(args) -> int:
    kernels = await discover(default_search_paths())
    if args.json:
        rows = [dict(id=k.id, display_name=k.display_name, language=k.language, argv=k.full_argv, location=k.location,
            location_type=k.location_type.value) for k in kernels]
        print(json.dumps(rows, indent=2))
        return 0
    for k in kernels: print(f"{k.language}: {k.display_name}  ({k.binary})")
    return 0


async def _run_code(args) -> int:
    kernels = await discover(default_search_paths())
    spec = next((k for k in kernels if k.display_name == args.kernel), None) if args.kernel else None
    spec = spec or (kernels[0] if kernels else None)
    if spec is None:
        print("No Jupyter kernels were found on this machine", file=sys.stderr)
        return 1
    print(f"Found kernels: {', '.join(k.display_name for k in kernels)}. Using {spec.display_name}", file=sys.stderr)
    async with await launch_kernel(spec) as kernel:
        detach = kernel.process.connect_to_process_stdio()
        try:
            async def _exchange():
                async for msg in kernel.execute(args.code): print(f"{msg.msg_type}: {json.dumps(msg.content)}")

            done = asyncio.ensure_future(_exchange())
            exited = asyncio.ensure_future(kernel.process.wait())
            await asyncio.wait([done, exited], timeout=args.timeout, return_when=asyncio.FIRST_COMPLETED)
            if done.done():
                done.result()
                exited.cancel()
                return 0
            done.cancel()
            exited.cancel()
            err = kernel.process.exit.result() if kernel.process.exit.done() else None
            print(str(err) if err else f"No execute_reply within {args.timeout}s", file=sys.stderr)
            return 1
        finally: detach()


def main() -> None:
    parser = argparse.ArgumentParser(prog="minikc")
    sub = parser.add_subparsers(dest="command")
    p_list = sub.add_parser("list", help="List discovered kernel specs")
    p_list.add_argument("--json", action="store_true", help="Print specs as JSON")
    p_run = sub.add_parser("run", help="Launch a kernel and execute code")
    p_run.add_argument("code")
    p_run.add_argument("--kernel", help="Kernel display name (default: first found)")
    p_run.add_argument("--timeout", type=float, default=30.0)
    args = parser.parse_args(sys.argv[1:])
    debug.setup()
    if args.command is None: args.command, args.json = "list", False
    try: code = asyncio.run(_run_code(args) if args.command == "run" else _list_kernels(args))
    except KernelClientError as err: raise SystemExit(f"minikc: {err}")
    raise SystemExit(code)


if __name__ == "__main__":
    main()
