"""
GitHub App installation token refresh sidecar.

Runs next to a main container, writing a fresh installation token to a shared tmpfs volume
every refresh interval (45 minutes by default; tokens live 1 hour). Tokens can be scoped to
the workspace's repositories via WORKSPACE_REPOS. The loop runs in a worker thread; the main
thread waits for SIGTERM/SIGINT and stops it cleanly. The last written token is left in place.
"""
import functools
import logging
import os
import signal
import sys
import threading

from token_sidecar.config import ConfigError, load_config
from token_sidecar.github_app import TokenGenerator
from token_sidecar.refresh import run
from token_sidecar.writer import TokenWriter

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(filename)s:%(lineno)d %(message)s"

SHUTDOWN_SIGNALS = {signal.SIGTERM, signal.SIGINT}

# How often the main thread checks whether the refresh loop has ended on its own
SIGNAL_POLL_SECONDS = 0.5


def configure_logging(level: str | None = None) -> None:
    level_name = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(
        format=LOG_FORMAT,
        stream=sys.stderr,
        level=getattr(logging, level_name, logging.INFO),
    )


def run_until_signalled(stop: threading.Event, target) -> None:
    """
    Run `target` in a worker thread while this thread waits for SIGTERM/SIGINT, then set
    `stop` and wait for the worker to finish. The signals are blocked and collected with
    sigtimedwait, so `stop` is only set from ordinary code, never from a signal handler.
    Re-raises anything `target` raised.
    """
    failure: list[Exception] = []

    def _worker():
        try:
            target()
        except Exception as e:  # re-raised below
            failure.append(e)

    previous = signal.pthread_sigmask(signal.SIG_BLOCK, SHUTDOWN_SIGNALS)
    try:
        # Started after blocking: the worker inherits the mask, so only sigtimedwait sees the signals
        worker = threading.Thread(target=_worker, name="token-refresh")
        worker.start()
        while worker.is_alive():
            info = signal.sigtimedwait(SHUTDOWN_SIGNALS, SIGNAL_POLL_SECONDS)
            if info is not None and not stop.is_set():
                logger.info("Received signal %s, shutting down gracefully...", signal.Signals(info.si_signo).name)
                stop.set()
        worker.join()
    finally:
        signal.pthread_sigmask(signal.SIG_SETMASK, previous)

    if failure:
        raise failure[0]


def main() -> None:
    configure_logging()
    logger.info("GitHub App token refresh sidecar starting...")

    try:
        config = load_config()
        generator = TokenGenerator(config)
    except ConfigError as e:
        logger.error("Failed to load configuration: %s", e)
        sys.exit(1)

    # Never log the private key or tokens
    logger.info("App ID: %d", config.app_id)
    logger.info("Installation ID: %d", config.installation_id)
    logger.info("Token path: %s", config.token_path)
    logger.info("Refresh interval: %gs", config.refresh_interval)
    if config.repositories:
        logger.info("Repository scoping enabled: %s", list(config.repositories))
    else:
        logger.warning(
            "No repository scoping configured - token will have access to all repos in installation"
        )

    writer = TokenWriter(config.token_path)
    stop = threading.Event()

    try:
        run_until_signalled(
            stop,
            functools.partial(
                run,
                stop,
                generator,
                writer,
                config.refresh_interval,
                publish_retry_delay=config.publish_retry_delay,
            ),
        )
    finally:
        generator.close()

    logger.info("Sidecar shut down successfully")


if __name__ == "__main__":
    main()
