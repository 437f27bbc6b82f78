"""
Token refresh loop: generate -> write -> wait, until the stop event is set.

Generation failures are retried with exponential backoff; write failures are retried on the
next iteration without a backoff wait (optionally after publish_retry_delay). Neither is fatal:
the loop only returns once `stop` is set. Every wait is stop.wait(), so a shutdown signal
ends a wait as soon as it arrives.
"""
import logging
import threading

from token_sidecar.backoff import Backoff
from token_sidecar.github_app import TokenGenerationError
from token_sidecar.writer import TokenWriteError

logger = logging.getLogger(__name__)


def run(
    stop: threading.Event,
    generator,
    writer,
    refresh_interval: float,
    backoff: Backoff | None = None,
    publish_retry_delay: float = 0.0,
) -> None:
    """
    Drive the refresh cycle until `stop` is set.

    generator.generate(stop) returns an InstallationToken or raises TokenGenerationError and
    gives up soon after `stop` is set; writer.write(token) raises TokenWriteError.
    Anything else propagates.
    """
    if backoff is None:
        backoff = Backoff()

    while not stop.is_set():
        try:
            token = generator.generate(stop)
        except TokenGenerationError as e:
            if stop.is_set():
                # Abandoned because of shutdown, not a failure
                return
            delay = backoff.current()
            logger.error("Failed to generate token: %s (retrying in %gs)", e, delay)
            if stop.wait(delay):
                return
            backoff.advance()
            continue

        backoff.reset()

        try:
            writer.write(token.token)
        except TokenWriteError as e:
            if publish_retry_delay > 0:
                logger.error("Failed to write token: %s (retrying in %gs)", e, publish_retry_delay)
                if stop.wait(publish_retry_delay):
                    return
            else:
                logger.error("Failed to write token: %s (retrying now)", e)
            continue

        if token.expires_at:
            logger.info("Token refreshed successfully (expires at %s)", token.expires_at)
        else:
            logger.info("Token refreshed successfully (expires in ~60 minutes)")

        if stop.wait(refresh_interval):
            return
