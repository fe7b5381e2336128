#!/usr/bin/env python3
"""Compile .proto files into a descriptor-set corpus for protodiff-check.

Usage:
    python scripts/generate_corpus.py -I protos -o corpus.pb protos/foo.proto protos/bar.proto

Prerequisites:
    pip install protodiff[corpus]

This script:
  1. Compiles the .proto files with grpc_tools.protoc (--include_imports)
  2. Writes a FileDescriptorSet listing every file in dependency order
  3. Prints the file names it contains
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent


def check_prerequisites(proto_files):
    for pf in proto_files:
        if not Path(pf).exists():
            print(f"ERROR: {pf} not found", file=sys.stderr)
            sys.exit(1)
    try:
        from grpc_tools import protoc  # noqa: F401
    except ImportError:
        print("ERROR: grpcio-tools not installed. Run: pip install grpcio-tools", file=sys.stderr)
        sys.exit(1)


def generate(include_dirs, proto_files, output):
    """Run protoc to write the descriptor set."""
    from grpc_tools import protoc

    # protoc needs the bundled well-known .proto files on the path as well
    import grpc_tools

    builtin = Path(grpc_tools.__file__).resolve().parent / "_proto"
    args = ["grpc_tools.protoc", f"--proto_path={builtin}"]
    args += [f"--proto_path={d}" for d in include_dirs]
    args += ["--include_imports", f"--descriptor_set_out={output}"]
    args += [str(pf) for pf in proto_files]

    ret = protoc.main(args)
    if ret != 0:
        print(f"ERROR: protoc exited with code {ret}", file=sys.stderr)
        sys.exit(ret)


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("protos", nargs="+", help=".proto files to compile")
    parser.add_argument("-I", "--proto-path", action="append", default=[], help="import search directory")
    parser.add_argument("-o", "--output", default=str(ROOT / "corpus.pb"), help="descriptor set to write")
    args = parser.parse_args()

    include_dirs = args.proto_path or ["."]
    check_prerequisites(args.protos)
    print(f"Compiling {len(args.protos)} proto file(s)")
    generate(include_dirs, args.protos, args.output)

    from protodiff import corpus

    docs = corpus.load(args.output)
    print(f"Wrote {len(docs)} files to {args.output}")
    for doc in docs:
        print(f"  {corpus.document_name(doc)}")


if __name__ == "__main__":
    main()
