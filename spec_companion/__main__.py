"""Run the spec companion API with uvicorn."""

import sys

import uvicorn

from spec_companion.config import ServerConfig


def main():
    config = ServerConfig.get_development_config() if "--reload" in sys.argv else ServerConfig.get_uvicorn_config()
    uvicorn.run("spec_companion.app:app", **config)


if __name__ == "__main__":
    main()
