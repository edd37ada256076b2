from __future__ import annotations

import argparse

import uvicorn


def main() -> None:
  parser = argparse.ArgumentParser(prog="taskboard", description="Run the taskboard API")
  parser.add_argument("--host", default="0.0.0.0")
  parser.add_argument("--port", type=int, default=8000)
  parser.add_argument("--reload", action="store_true")
  args = parser.parse_args()
  # log_config=None keeps the handlers installed by setup_logging.
  uvicorn.run("taskboard.main:create_app", factory=True, host=args.host, port=args.port, reload=args.reload, log_config=None)


if __name__ == "__main__":
  main()
