from __future__ import annotations

import sys

from resilient_http.config_models import FetchConfig, RequestConfig, load_and_validate_config
from resilient_http.core.errors import ResilientHttpError
from resilient_http.core.factory import ComponentFactory
from resilient_http.utils.logging import get_logger, setup_logging

log = get_logger("resilient_http.main")


def load_config(target: str) -> FetchConfig:
    """
    Build a FetchConfig from a YAML file path or a bare URL.

    Args:
        target: Path to a YAML request file, or an http(s) URL.

    Returns:
        A validated FetchConfig.
    """
    if target.startswith(("http://", "https://")):
        return FetchConfig(request=RequestConfig(url=target))
    return load_and_validate_config(target)


def run_one(config: FetchConfig) -> int:
    """Execute a single request and print the outcome."""
    built = ComponentFactory(config).build()
    try:
        response = built.run()
    except ResilientHttpError as e:
        log.error("Request failed: %s", e)
        print("FAILED:", e)
        return 1
    finally:
        built.transport.close()

    print("DONE:", response.status_code, response.url)
    return 0 if response.ok else 1


def main() -> None:
    """Main entry point for resilient-fetch."""
    if len(sys.argv) < 2:
        print("Usage: resilient-fetch <url | configs/requests/<request>.yaml>")
        raise SystemExit(2)

    setup_logging("configs/logging.yaml")

    target = sys.argv[1]
    try:
        config = load_config(target)
    except (ValueError, FileNotFoundError) as e:
        print(f"Error: {e}")
        raise SystemExit(2)

    raise SystemExit(run_one(config))


if __name__ == "__main__":
    main()
