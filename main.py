#!/usr/bin/env python3
"""Entry point for one helper worker process."""

import sys
from typing import List, Tuple

from dotenv import load_dotenv

from helperapp.bootstrap import build_services
from helperapp.config import Config
from helperapp.worker import run


def _missing_settings(cfg: Config) -> List[Tuple[str, str]]:
    problems: List[Tuple[str, str]] = []
    if not cfg.TOKEN:
        problems.append(
            (
                "HELPERBOT_TOKEN",
                "HELPERBOT_TOKEN is not set; each worker needs its own bot token "
                "in the environment or .env file.",
            )
        )
    return problems


def main() -> None:
    load_dotenv()
    cfg = Config()
    services = build_services(cfg)
    logger = services.logger.getChild("main").bind(event_type="startup", category="startup")

    problems = _missing_settings(cfg)
    for env_var, message in problems:
        logger.error(
            message,
            extra={"stage": "validation", "error_type": "MissingSetting", "env_var": env_var},
        )
    if problems:
        sys.exit(1)

    logger.info(
        "Starting helper worker",
        extra={
            "stage": "run",
            "turn_timeout_seconds": cfg.TURN_TIMEOUT_SECONDS,
            "poll_interval_seconds": cfg.POLL_INTERVAL_SECONDS,
            "orphan_grace_seconds": cfg.ORPHAN_GRACE_SECONDS,
            "metrics_port": cfg.METRICS_PORT,
        },
    )
    run(cfg, services)


if __name__ == "__main__":
    main()
