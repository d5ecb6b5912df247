"""Run the closedloop service with uvicorn."""

import argparse

import uvicorn


def main() -> None:
    parser = argparse.ArgumentParser(prog="closedloop")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    args = parser.parse_args()

    uvicorn.run("closedloop.main:app", host=args.host, port=args.port, log_config=None)


if __name__ == "__main__":
    main()
